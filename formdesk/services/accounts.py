"""Account creation and updates, shared by /auth/register and /users."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from formdesk.core.errors import ConflictError, NotFoundError, ValidationError
from formdesk.core.rbac import Action, Principal, Target, enforce
from formdesk.core.security import hash_password
from formdesk.db.models.user import MODULES, Role, User, UserStatus

logger = logging.getLogger("formdesk.accounts")

DEFAULT_PASSWORD = "password123"

# request field -> column
_PROFILE_FIELDS = {"name": "name", "email": "email", "address": "address", "city": "city"}
_RESTRICTED_FIELDS = {"employeeId": "employee_id", "vendorId": "vendor_id"}


def parse_role(value) -> Role | None:
    if value is None:
        return None
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid role \"{value}\"")


def parse_module_permissions(value) -> dict[str, bool]:
    if not isinstance(value, dict) or not all(isinstance(value.get(m), bool) for m in MODULES):
        raise ValidationError(
            "Invalid module permissions structure. Must be { users: boolean, forms: boolean }"
        )
    return {m: value[m] for m in MODULES}


def normalize_email(email) -> str:
    e = str(email or "").strip().lower()
    if not e or "@" not in e:
        raise ValidationError("A valid email is required")
    return e


def get_active_user(db: Session, user_id: int) -> User:
    u = db.get(User, user_id)
    if u is None or u.status == UserStatus.DELETED:
        raise NotFoundError("User not found")
    return u


def _blank_to_none(value) -> str | None:
    value = str(value or "").strip()
    return value or None


def _restricted_touched(data: dict, current: User | None = None) -> set[str]:
    """Restricted columns this request would actually change."""
    fields = set()
    for key, col in _RESTRICTED_FIELDS.items():
        if data.get(key) is None:
            continue
        # a blank id on a new account sets nothing
        if current is None and not str(data[key]).strip():
            continue
        if current is None or str(data[key]).strip() != (getattr(current, col) or ""):
            fields.add(col)
    perms = data.get("modulePermissions")
    if perms is not None and (current is None or perms != current.module_permissions):
        fields.add("module_permissions")
    return fields


def create_account(db: Session, principal: Principal, data: dict) -> User:
    """Create a user. Only a SuperAdmin may create admins or set restricted fields."""
    role = parse_role(data.get("role")) or Role.USER
    enforce(principal, Action.CREATE_USER, Target.for_user(None, new_role=role, fields=_restricted_touched(data)))

    email = normalize_email(data.get("email"))
    if db.query(User.id).filter(User.email == email).first():
        raise ConflictError("User already exists")

    perms = None
    if data.get("modulePermissions") is not None:
        if role != Role.ADMIN:
            raise ValidationError("Module permissions can only be set for admin users")
        perms = parse_module_permissions(data["modulePermissions"])

    u = User(
        email=email,
        password_hash=hash_password(data.get("password") or DEFAULT_PASSWORD),
        name=str(data.get("name") or "").strip(),
        role=role,
        employee_id=_blank_to_none(data.get("employeeId")),
        vendor_id=_blank_to_none(data.get("vendorId")),
        status=UserStatus.ACTIVE,
    )
    u.module_permissions = perms
    db.add(u)
    db.commit()
    logger.info("User %s created by %s with role %s", u.id, principal.id, role.value)
    return u


def update_account(db: Session, principal: Principal, user_id: int, data: dict) -> User:
    u = get_active_user(db, user_id)
    new_role = parse_role(data.get("role"))
    if new_role == u.role:
        new_role = None
    enforce(
        principal,
        Action.UPDATE_USER,
        Target.for_user(u, new_role=new_role, fields=_restricted_touched(data, u)),
    )

    for key, col in _PROFILE_FIELDS.items():
        if key in data and data[key] is not None:
            value = normalize_email(data[key]) if key == "email" else str(data[key]).strip()
            if key == "email" and value != u.email:
                if db.query(User.id).filter(User.email == value, User.id != u.id).first():
                    raise ConflictError("User already exists")
            setattr(u, col, value)
    for key, col in _RESTRICTED_FIELDS.items():
        if data.get(key) is not None:
            setattr(u, col, str(data[key]).strip())

    if new_role is not None:
        u.role = new_role
    if data.get("modulePermissions") is not None:
        if u.role != Role.ADMIN:
            raise ValidationError("Module permissions can only be set for admin users")
        u.module_permissions = parse_module_permissions(data["modulePermissions"])
    elif u.role != Role.ADMIN:
        u.module_permissions = None

    db.commit()
    logger.info("User %s updated by %s", u.id, principal.id)
    return u


def delete_account(db: Session, principal: Principal, user_id: int) -> None:
    u = get_active_user(db, user_id)
    enforce(principal, Action.DELETE_USER, Target.for_user(u))
    u.status = UserStatus.DELETED
    db.commit()
    logger.info("User %s soft-deleted by %s", u.id, principal.id)


def update_profile(db: Session, user: User, data: dict) -> User:
    """Self-service: address and city only."""
    enforce(Principal.from_user(user), Action.UPDATE_PROFILE)
    for key in ("address", "city"):
        if data.get(key) is not None:
            setattr(user, key, str(data[key]).strip())
    db.commit()
    return user
