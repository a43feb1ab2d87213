from collections import Counter

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from inventory_ledger.api.deps import Actor, client_ip, get_audit_logger, require_admin
from inventory_ledger.database import get_db
from inventory_ledger.services import auth_service
from inventory_ledger.services.audit_service import AuditEventType, AuditLogger

router = APIRouter(prefix="/admin", tags=["Admin"])


def _user_status(user) -> str:
    if not user.active:
        return "disabled"
    if auth_service.is_locked(user):
        return "locked"
    return "active"


def build_dashboard(db: Session, audit: AuditLogger) -> dict:
    """User counts, the last day of audit stats and the newest security alerts."""
    users = auth_service.list_users(db)
    statuses = Counter(_user_status(u) for u in users)
    return {
        "summary": {
            "total_users": len(users),
            "active_users": statuses.get("active", 0),
        },
        "user_breakdown": {
            "by_role": dict(Counter(u.role for u in users)),
            "by_status": dict(statuses),
        },
        "audit_summary": audit.stats("24h"),
        "recent_alerts": [a.model_dump(mode="json") for a in audit.security_alerts(5)],
    }


@router.get("/dashboard")
def dashboard(
    request: Request,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    result = build_dashboard(db, audit)
    audit.log_event(
        AuditEventType.ADMIN_ACCESS,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="dashboard",
        action="view",
    )
    return result
