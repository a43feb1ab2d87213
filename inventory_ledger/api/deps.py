from dataclasses import dataclass

from fastapi import Cookie, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from inventory_ledger.database import get_db
from inventory_ledger.services import auth_service
from inventory_ledger.services.audit_service import AuditEventType, AuditLogger
from inventory_ledger.services.inventory_service import InventoryService
from inventory_ledger.services.ledger_store import LedgerStore


@dataclass
class Actor:
    user_id: str
    username: str
    role: str
    auth_method: str  # jwt, api_key

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def get_ledger(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def get_inventory_service(store: LedgerStore = Depends(get_ledger)) -> InventoryService:
    return InventoryService(store)


def get_audit_logger(store: LedgerStore = Depends(get_ledger)) -> AuditLogger:
    return AuditLogger(store)


def get_current_actor(
    request: Request,
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
    token: str | None = Cookie(default=None, alias="token"),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
) -> Actor:
    """Dependency: resolve the caller from a bearer token, the token cookie or X-API-Key."""
    bearer = None
    if authorization and authorization.lower().startswith("bearer "):
        bearer = authorization[7:].strip()
    jwt_token = bearer or token

    if jwt_token:
        payload = auth_service.decode_token(jwt_token)
        if not payload:
            audit.log_event(
                AuditEventType.INVALID_TOKEN_USED,
                ip_address=client_ip(request),
                resource=request.url.path,
                success=False,
            )
            raise HTTPException(401, "Invalid or expired token")
        user = auth_service.get_user_by_id(db, payload.get("sub", ""))
        if not user or not user.active:
            raise HTTPException(401, "User not found or disabled")
        return Actor(user_id=user.id, username=user.username, role=user.role, auth_method="jwt")

    if x_api_key is not None:
        if not auth_service.check_api_key(x_api_key):
            audit.log_event(
                AuditEventType.UNAUTHORIZED_ACCESS_ATTEMPT,
                ip_address=client_ip(request),
                resource=request.url.path,
                success=False,
                error_message="Invalid API key",
            )
            raise HTTPException(401, "Unauthorized: Invalid API Key")
        return Actor(user_id="api-key", username=auth_service.API_KEY_ACTOR, role="staff", auth_method="api_key")

    raise HTTPException(401, "Not authenticated")


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(403, "Admin only")
    return actor
