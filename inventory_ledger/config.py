from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Inventory Ledger"
    DATABASE_URL: str = "sqlite:///./inventory_ledger.db"

    SECRET_KEY: str = "change-me-in-production"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72

    # Legacy shared key for machine clients (X-API-Key header)
    API_KEY: str = "supersecretapikey"

    # Seeded on first start when the users table is empty
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    # Maintain a per-SKU secondary index instead of scanning every transaction
    TRANSACTION_INDEX: bool = False

    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
