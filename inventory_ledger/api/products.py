from fastapi import APIRouter, Depends, Request

from inventory_ledger.api.deps import Actor, client_ip, get_audit_logger, get_current_actor, get_inventory_service
from inventory_ledger.schemas.product import ProductCreate, ProductCreated, ProductDetails
from inventory_ledger.services.audit_service import AuditEventType, AuditLogger
from inventory_ledger.services.inventory_service import InventoryService

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductCreated, status_code=201)
def create_product(
    data: ProductCreate,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    result = service.add_product(data, actor=actor.username)
    audit.log_event(
        AuditEventType.PRODUCT_CREATED,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="product",
        resource_id=result.product.sku,
        action="create",
        additional_data={"initial_quantity": result.product.initial_quantity, "ledger_tx_id": result.proof.tx_id},
    )
    return result


@router.get("", response_model=list[ProductDetails])
def list_products(
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.list_products()


@router.get("/{sku}", response_model=ProductDetails)
def get_product(
    sku: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    details = service.get_product_details(sku)
    audit.log_event(
        AuditEventType.PRODUCT_ACCESSED,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="product",
        resource_id=sku,
        action="read",
    )
    return details
