"""Audit trail kept in the ledger itself, under ``audit:<audit_id>`` keys."""
import csv
import io
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from enum import Enum as PyEnum

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as SchemaError

from inventory_ledger.services.exceptions import KeyNotFoundError, NotFoundError, StorageError
from inventory_ledger.services.ledger_store import LedgerStore, to_bytes
from inventory_ledger.timestamps import format_timestamp, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

AUDIT_PREFIX = "audit:"


class AuditEventType(str, PyEnum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_STATUS_CHANGED = "USER_STATUS_CHANGED"
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_ACCESSED = "PRODUCT_ACCESSED"
    INVENTORY_TRANSACTION = "INVENTORY_TRANSACTION"
    INVENTORY_QUERY = "INVENTORY_QUERY"
    TIME_TRAVEL_QUERY = "TIME_TRAVEL_QUERY"
    TRANSACTION_VERIFIED = "TRANSACTION_VERIFIED"
    DATA_VERIFICATION_SUCCESS = "DATA_VERIFICATION_SUCCESS"
    DATA_VERIFICATION_FAILED = "DATA_VERIFICATION_FAILED"
    ADMIN_ACCESS = "ADMIN_ACCESS"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    INVALID_TOKEN_USED = "INVALID_TOKEN_USED"


class RiskLevel(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_CRITICAL = {AuditEventType.DATA_VERIFICATION_FAILED}
_HIGH = {
    AuditEventType.LOGIN_FAILED,
    AuditEventType.UNAUTHORIZED_ACCESS_ATTEMPT,
    AuditEventType.SUSPICIOUS_ACTIVITY,
    AuditEventType.INVALID_TOKEN_USED,
}
_MEDIUM = {
    AuditEventType.USER_CREATED,
    AuditEventType.USER_UPDATED,
    AuditEventType.USER_STATUS_CHANGED,
    AuditEventType.PASSWORD_CHANGED,
}

TIMEFRAMES = {"1h": timedelta(hours=1), "24h": timedelta(days=1), "7d": timedelta(days=7), "30d": timedelta(days=30)}

CSV_COLUMNS = [
    "audit_id", "event_type", "timestamp", "risk_level", "user_id", "username", "ip_address",
    "resource", "resource_id", "action", "success", "error_message",
]


def risk_level_for(event_type: AuditEventType) -> RiskLevel:
    if event_type in _CRITICAL:
        return RiskLevel.CRITICAL
    if event_type in _HIGH:
        return RiskLevel.HIGH
    if event_type in _MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class AuditEvent(BaseModel):
    audit_id: str
    event_type: AuditEventType
    timestamp: str
    risk_level: RiskLevel
    user_id: str = "SYSTEM"
    username: str = "system"
    ip_address: str = ""
    resource: str = ""
    resource_id: str = ""
    action: str = ""
    success: bool = True
    error_message: str = ""
    additional_data: dict = {}

    @field_validator("timestamp")
    @classmethod
    def check_timestamp(cls, v):
        parse_timestamp(v)
        return v


class AuditLogger:
    def __init__(self, store: LedgerStore, clock=utcnow):
        self.store = store
        self.clock = clock

    def log_event(
        self,
        event_type: AuditEventType,
        *,
        user_id: str = "SYSTEM",
        username: str = "system",
        ip_address: str = "",
        resource: str = "",
        resource_id: str = "",
        action: str = "",
        success: bool = True,
        error_message: str = "",
        additional_data: dict | None = None,
    ) -> AuditEvent | None:
        """Append one audit event. Returns None if it could not be written."""
        event = AuditEvent(
            audit_id=str(uuid.uuid4()),
            event_type=event_type,
            timestamp=format_timestamp(self.clock()),
            risk_level=risk_level_for(event_type),
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            resource=resource,
            resource_id=resource_id,
            action=action,
            success=success,
            error_message=error_message,
            additional_data=additional_data or {},
        )
        try:
            self.store.put(f"{AUDIT_PREFIX}{event.audit_id}", to_bytes(event.model_dump(mode="json")))
        except StorageError as e:
            logger.error("Failed to log audit event %s: %s", event_type.value, e)
            return None
        if event.risk_level is RiskLevel.CRITICAL:
            logger.warning("CRITICAL audit event %s by %s on %s", event_type.value, username, resource or "-")
        return event

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for record in self.store.scan(AUDIT_PREFIX):
            try:
                events.append(AuditEvent.model_validate_json(record.value))
            except SchemaError as e:
                logger.warning("Skipping malformed audit record %s: %s", record.key, e)
        return events

    def list_events(
        self,
        event_type: AuditEventType | None = None,
        user_id: str | None = None,
        risk_level: RiskLevel | None = None,
        success: bool | None = None,
        resource: str | None = None,
        ip_address: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Newest first. ``limit=None`` returns every match."""
        matched = []
        for event in self._all_events():
            if event_type is not None and event.event_type != event_type:
                continue
            if user_id is not None and event.user_id != user_id:
                continue
            if risk_level is not None and event.risk_level != risk_level:
                continue
            if success is not None and event.success != success:
                continue
            if resource is not None and event.resource != resource:
                continue
            if ip_address is not None and event.ip_address != ip_address:
                continue
            instant = parse_timestamp(event.timestamp)
            if since is not None and instant < since:
                continue
            if until is not None and instant > until:
                continue
            matched.append(event)
        matched.sort(key=lambda e: (e.timestamp, e.audit_id), reverse=True)
        if limit is None:
            return matched[offset:]
        return matched[offset:offset + limit]

    def get_event(self, audit_id: str) -> AuditEvent:
        try:
            record = self.store.get(f"{AUDIT_PREFIX}{audit_id}")
        except KeyNotFoundError:
            raise NotFoundError(f"Audit event '{audit_id}' not found.") from None
        try:
            return AuditEvent.model_validate_json(record.value)
        except SchemaError as e:
            raise StorageError(f"Stored audit event '{audit_id}' is unreadable") from e

    def security_alerts(self, limit: int = 50) -> list[AuditEvent]:
        events = [e for e in self._all_events() if e.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)]
        events.sort(key=lambda e: (e.timestamp, e.audit_id), reverse=True)
        return events[:limit]

    def stats(self, timeframe: str = "24h") -> dict:
        now = self.clock()
        window = TIMEFRAMES.get(timeframe, TIMEFRAMES["24h"])
        events = self.list_events(since=now - window, until=now, limit=None)

        users = Counter(e.username for e in events if e.username != "system")
        resources = Counter(e.resource for e in events if e.resource)
        return {
            "timeframe": timeframe if timeframe in TIMEFRAMES else "24h",
            "total_events": len(events),
            "successful_events": sum(1 for e in events if e.success),
            "failed_events": sum(1 for e in events if not e.success),
            "unique_users": len({e.user_id for e in events}),
            "events_by_type": dict(Counter(e.event_type.value for e in events)),
            "events_by_risk_level": dict(Counter(e.risk_level.value for e in events)),
            "top_users": [{"user": u, "count": c} for u, c in users.most_common(10)],
            "top_resources": [{"resource": r, "count": c} for r, c in resources.most_common(10)],
        }

    def export_csv(self, events: list[AuditEvent]) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(CSV_COLUMNS)
        for event in events:
            row = event.model_dump(mode="json")
            writer.writerow([row[col] for col in CSV_COLUMNS])
        return buf.getvalue()
