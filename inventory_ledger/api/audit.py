from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from inventory_ledger.api.deps import (
    Actor,
    client_ip,
    get_audit_logger,
    get_current_actor,
    get_inventory_service,
    get_ledger,
    require_admin,
)
from inventory_ledger.schemas.transaction import VerificationResult
from inventory_ledger.services.audit_service import AuditEvent, AuditEventType, AuditLogger, RiskLevel
from inventory_ledger.services.exceptions import ValidationError
from inventory_ledger.services.inventory_service import InventoryService
from inventory_ledger.services.ledger_store import LedgerStore
from inventory_ledger.timestamps import parse_timestamp

router = APIRouter(prefix="/audit", tags=["Audit"])


def _parse_bound(name: str, value: str | None):
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}. Use ISO 8601 format: YYYY-MM-DDTHH:mm:ss.sssZ") from None


@router.get("/verify/{transaction_id}", response_model=VerificationResult)
def verify_transaction(
    transaction_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: InventoryService = Depends(get_inventory_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    result = service.verify_transaction(transaction_id)
    audit.log_event(
        AuditEventType.TRANSACTION_VERIFIED if result.verified else AuditEventType.DATA_VERIFICATION_FAILED,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="transaction",
        resource_id=transaction_id,
        action="verify",
        success=result.verified,
        additional_data={"ledger_tx_id": result.proof.tx_id},
    )
    return result


@router.get("/events", response_model=list[AuditEvent])
def list_events(
    event_type: AuditEventType | None = None,
    user_id: str | None = None,
    risk_level: RiskLevel | None = None,
    success: bool | None = None,
    resource: str | None = None,
    ip_address: str | None = None,
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    admin: Actor = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return audit.list_events(
        event_type=event_type,
        user_id=user_id,
        risk_level=risk_level,
        success=success,
        resource=resource,
        ip_address=ip_address,
        since=_parse_bound("start_date", start_date),
        until=_parse_bound("end_date", end_date),
        limit=limit,
        offset=offset,
    )


@router.get("/events/export")
def export_events(
    event_type: AuditEventType | None = None,
    user_id: str | None = None,
    resource: str | None = None,
    ip_address: str | None = None,
    start_date: str | None = Query(None),
    end_date: str | None = Query(None),
    admin: Actor = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    events = audit.list_events(
        event_type=event_type,
        user_id=user_id,
        resource=resource,
        ip_address=ip_address,
        since=_parse_bound("start_date", start_date),
        until=_parse_bound("end_date", end_date),
        limit=None,
    )
    return StreamingResponse(
        iter([audit.export_csv(events)]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=audit_events.csv"},
    )


# Declared after /events/export so "export" is not taken for an id
@router.get("/events/{audit_id}", response_model=AuditEvent)
def get_event(
    audit_id: str,
    admin: Actor = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return audit.get_event(audit_id)


@router.get("/stats")
def stats(
    timeframe: str = "24h",
    admin: Actor = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return audit.stats(timeframe)


@router.get("/alerts", response_model=list[AuditEvent])
def alerts(
    limit: int = Query(50, ge=1, le=500),
    admin: Actor = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger),
):
    return audit.security_alerts(limit)


@router.get("/ledger/verify")
def verify_ledger(
    request: Request,
    admin: Actor = Depends(require_admin),
    store: LedgerStore = Depends(get_ledger),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Re-check the whole digest chain."""
    valid, checked = store.verify_chain()
    audit.log_event(
        AuditEventType.DATA_VERIFICATION_SUCCESS if valid else AuditEventType.DATA_VERIFICATION_FAILED,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="ledger",
        action="verify_chain",
        success=valid,
        additional_data={"entries_checked": checked},
    )
    return {"valid": valid, "entries_checked": checked}
