from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from inventory_ledger.api.deps import Actor, client_ip, get_audit_logger, get_current_actor, require_admin
from inventory_ledger.database import get_db
from inventory_ledger.models.user import User
from inventory_ledger.services import auth_service
from inventory_ledger.services.audit_service import AuditEventType, AuditLogger

router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    username: str
    display_name: str
    role: str
    active: bool = True
    created_at: str = ""
    last_login_at: str | None = None
    failed_login_attempts: int = 0
    locked_until: str | None = None


class CreateUserRequest(BaseModel):
    username: str
    password: str
    display_name: str = ""
    role: str = "staff"


class UpdateUserRequest(BaseModel):
    display_name: str | None = None
    role: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""


def _user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id, username=user.username, display_name=user.display_name,
        role=user.role, active=user.active,
        created_at=user.created_at.isoformat() if user.created_at else "",
        last_login_at=user.last_login_at.isoformat() if user.last_login_at else None,
        failed_login_attempts=user.failed_login_attempts or 0,
        locked_until=user.locked_until.isoformat() if user.locked_until else None,
    )


@router.post("/login")
def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    already_locked = False
    try:
        user = auth_service.authenticate(db, data.username, data.password)
        error = "Invalid username or password"
    except auth_service.AccountLockedError as e:
        user, error, already_locked = None, str(e), True
    if not user:
        audit.log_event(
            AuditEventType.LOGIN_FAILED,
            username=data.username,
            ip_address=client_ip(request),
            resource="auth",
            action="login",
            success=False,
            error_message=error,
        )
        target = None if already_locked else auth_service.get_user_by_username(db, data.username)
        if target is not None and auth_service.is_locked(target):
            audit.log_event(
                AuditEventType.SUSPICIOUS_ACTIVITY,
                user_id=target.id,
                username=target.username,
                ip_address=client_ip(request),
                resource="auth",
                action="account_locked",
                success=False,
                error_message=f"Locked after {auth_service.MAX_FAILED_LOGINS} failed logins",
            )
        raise HTTPException(401, error)
    token = auth_service.create_access_token(user.id, user.username, user.role)
    response.set_cookie("token", token, httponly=True, samesite="lax", max_age=3600 * 72)
    audit.log_event(
        AuditEventType.LOGIN_SUCCESS,
        user_id=user.id,
        username=user.username,
        ip_address=client_ip(request),
        resource="auth",
        action="login",
    )
    return {"token": token, "token_type": "bearer", "user": _user_out(user)}


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    actor: Actor = Depends(get_current_actor),
    audit: AuditLogger = Depends(get_audit_logger),
):
    response.delete_cookie("token")
    audit.log_event(
        AuditEventType.LOGOUT,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="auth",
        action="logout",
    )
    return {"ok": True}


@router.get("/me")
def me(actor: Actor = Depends(get_current_actor)):
    return {"user_id": actor.user_id, "username": actor.username, "role": actor.role, "auth_method": actor.auth_method}


@router.get("/users", response_model=list[UserOut])
def list_users(admin: Actor = Depends(require_admin), db: Session = Depends(get_db)):
    return [_user_out(u) for u in auth_service.list_users(db)]


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(
    user_id: str,
    request: Request,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    target = auth_service.get_user_by_id(db, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    audit.log_event(
        AuditEventType.ADMIN_ACCESS,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="user",
        resource_id=user_id,
        action="read",
    )
    return _user_out(target)


@router.post("/users", response_model=UserOut, status_code=201)
def create_user(
    data: CreateUserRequest,
    request: Request,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    try:
        u = auth_service.create_user(db, data.username, data.password, data.display_name, data.role)
    except ValueError as e:
        raise HTTPException(400, str(e))
    audit.log_event(
        AuditEventType.USER_CREATED,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="user",
        resource_id=u.id,
        action="create",
        additional_data={"username": u.username, "role": u.role},
    )
    return _user_out(u)


@router.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: str,
    data: UpdateUserRequest,
    request: Request,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    target = auth_service.get_user_by_id(db, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    old_values = {"display_name": target.display_name, "role": target.role}
    try:
        target = auth_service.update_user(db, target, display_name=data.display_name, role=data.role)
    except ValueError as e:
        raise HTTPException(400, str(e))
    audit.log_event(
        AuditEventType.USER_UPDATED,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="user",
        resource_id=target.id,
        action="update",
        additional_data={"old_values": old_values, "new_values": {"display_name": target.display_name, "role": target.role}},
    )
    return _user_out(target)


@router.patch("/users/{user_id}/active")
def toggle_user_active(
    user_id: str,
    request: Request,
    admin: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    target = auth_service.get_user_by_id(db, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    if target.id == admin.user_id:
        raise HTTPException(400, "Cannot disable yourself")
    target = auth_service.set_active(db, target, not target.active)
    audit.log_event(
        AuditEventType.USER_STATUS_CHANGED,
        user_id=admin.user_id,
        username=admin.username,
        ip_address=client_ip(request),
        resource="user",
        resource_id=target.id,
        action="enable" if target.active else "disable",
    )
    return {"id": target.id, "active": target.active}


@router.post("/change-password")
def change_own_password(
    data: ChangePasswordRequest,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
):
    user = auth_service.get_user_by_id(db, actor.user_id)
    if not user:
        raise HTTPException(400, "Only user accounts have a password")
    try:
        auth_service.change_password(db, user, data.current_password, data.new_password)
    except ValueError as e:
        raise HTTPException(400, str(e))
    audit.log_event(
        AuditEventType.PASSWORD_CHANGED,
        user_id=actor.user_id,
        username=actor.username,
        ip_address=client_ip(request),
        resource="user",
        resource_id=actor.user_id,
        action="change_password",
    )
    return {"ok": True}
