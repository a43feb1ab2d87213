from fastapi import APIRouter, Depends, Query, Request

from inventory_ledger.api.deps import Actor, client_ip, get_audit_logger, get_current_actor, get_inventory_service
from inventory_ledger.schemas.product import SnapshotItem, TimeTravelResult
from inventory_ledger.schemas.transaction import HistoryEntry, TransactionCreate, TransactionRecorded
from inventory_ledger.services.audit_service import AuditEventType, AuditLogger
from inventory_ledger.services.inventory_service import InventoryService

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/transaction", response_model=TransactionRecorded, status_code=201)
def record_transaction(
    data: TransactionCreate,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    result = service.record_transaction(data.sku, data.type, data.quantity, data.reason, actor=actor.username)
    tx = result.transaction
    audit.log_event(
        AuditEventType.INVENTORY_TRANSACTION,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="inventory",
        resource_id=tx.sku,
        action=tx.type.value,
        additional_data={"transaction_id": tx.transaction_id, "quantity_change": tx.quantity_change},
    )
    return result


@router.get("/history/{sku}", response_model=list[HistoryEntry])
def history(
    sku: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    entries = service.get_history(sku)
    audit.log_event(
        AuditEventType.INVENTORY_QUERY,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="inventory",
        resource_id=sku,
        action="history",
    )
    return entries


@router.get("/snapshot", response_model=list[SnapshotItem])
def snapshot(
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
):
    return service.get_snapshot()


@router.get("/time-travel/{sku}", response_model=TimeTravelResult)
def time_travel(
    sku: str,
    request: Request,
    timestamp: str | None = Query(None, description="YYYY-MM-DDTHH:mm:ss.sssZ"),
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    result = service.time_travel(sku, timestamp)
    audit.log_event(
        AuditEventType.TIME_TRAVEL_QUERY,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="inventory",
        resource_id=sku,
        action="time_travel",
        additional_data={"target_timestamp": timestamp},
    )
    return result
