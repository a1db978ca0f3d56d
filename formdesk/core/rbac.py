from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional

from formdesk.core.errors import ReadOnlyError, UnauthorizedError, error_for_status
from formdesk.db.models.form import FormStatus
from formdesk.db.models.user import Role


def require(condition: bool, msg: str = "Forbidden", status_code: int = 403) -> None:
    """Small helper used across routers.

    Defaults to 403 (permission denied). For validation errors or not-found cases,
    pass `status_code=400/404`.
    """
    if not condition:
        raise error_for_status(status_code, msg)


class Outcome(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"
    # may view, may not change; callers render a non-editable view
    READ_ONLY = "read_only"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @property
    def denied(self) -> bool:
        return self.outcome == Outcome.DENY

    @property
    def read_only(self) -> bool:
        return self.outcome == Outcome.READ_ONLY


ALLOW = Decision(Outcome.ALLOW)


def deny(reason: str) -> Decision:
    return Decision(Outcome.DENY, reason)


def read_only(reason: str) -> Decision:
    return Decision(Outcome.READ_ONLY, reason)


class Action(str, enum.Enum):
    # user portal
    SUBMIT_RESPONSE = "response.submit"
    EDIT_RESPONSE = "response.edit"
    VIEW_OWN_RESPONSES = "response.view_own"
    # any authenticated principal
    VIEW_PROFILE = "profile.view"
    UPDATE_PROFILE = "profile.update"
    VIEW_FORM = "form.view"
    # admin portal, "forms" module
    CREATE_FORM = "form.create"
    UPDATE_FORM = "form.update"
    DELETE_FORM = "form.delete"
    VIEW_FORM_RESPONSES = "form.view_responses"
    # admin portal, "users" module
    LIST_USERS = "user.list"
    VIEW_USER = "user.view"
    CREATE_USER = "user.create"
    UPDATE_USER = "user.update"
    DELETE_USER = "user.delete"
    VIEW_USER_ACTIVITY = "user.view_activity"
    # admin portal, no module gate
    VIEW_SETTINGS = "settings.view"
    UPDATE_SETTINGS = "settings.update"
    VIEW_ADMIN_ANALYTICS = "analytics.admin"


USER_PORTAL_ACTIONS = frozenset({Action.SUBMIT_RESPONSE, Action.EDIT_RESPONSE, Action.VIEW_OWN_RESPONSES})

# admin-portal action -> module it is gated on (None: any admin)
ADMIN_PORTAL_ACTIONS: dict[Action, Optional[str]] = {
    Action.CREATE_FORM: "forms",
    Action.UPDATE_FORM: "forms",
    Action.DELETE_FORM: "forms",
    Action.VIEW_FORM_RESPONSES: "forms",
    Action.LIST_USERS: "users",
    Action.VIEW_USER: "users",
    Action.CREATE_USER: "users",
    Action.UPDATE_USER: "users",
    Action.DELETE_USER: "users",
    Action.VIEW_USER_ACTIVITY: "users",
    Action.VIEW_SETTINGS: None,
    Action.UPDATE_SETTINGS: None,
    Action.VIEW_ADMIN_ANALYTICS: None,
}

FORM_OWNER_ACTIONS = frozenset({Action.UPDATE_FORM, Action.DELETE_FORM})
ACCOUNT_ACTIONS = frozenset({Action.VIEW_USER, Action.UPDATE_USER, Action.DELETE_USER})
ROLE_ASSIGNING_ACTIONS = frozenset({Action.CREATE_USER, Action.UPDATE_USER})
SUPERADMIN_ONLY_FIELDS = frozenset({"employee_id", "vendor_id", "module_permissions"})

ADMIN_ROLES = (Role.ADMIN, Role.SUPERADMIN)


@dataclass(frozen=True)
class Principal:
    """The acting user as the resolver sees it."""

    id: Optional[int] = None
    role: Optional[Role] = None
    module_permissions: Optional[dict] = None

    @classmethod
    def from_user(cls, user) -> "Principal":
        if user is None:
            return ANONYMOUS
        return cls(id=user.id, role=user.role, module_permissions=user.module_permissions)

    @property
    def authenticated(self) -> bool:
        return self.id is not None and self.role is not None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_superadmin(self) -> bool:
        return self.role == Role.SUPERADMIN

    def has_module(self, module: str) -> bool:
        if self.role == Role.SUPERADMIN:
            return True
        if self.role == Role.ADMIN:
            return bool((self.module_permissions or {}).get(module))
        return False


ANONYMOUS = Principal()


@dataclass(frozen=True)
class Target:
    """What the action is applied to.

    owner_id: form creator, or the target account's id for user actions.
    role: the target account's current role.
    new_role / fields: the role being assigned and the fields being written.
    """

    owner_id: Optional[int] = None
    role: Optional[Role] = None
    new_role: Optional[Role] = None
    fields: frozenset = frozenset()

    @classmethod
    def for_form(cls, form) -> "Target":
        return cls(owner_id=form.created_by)

    @classmethod
    def for_user(cls, user=None, *, new_role: Optional[Role] = None, fields=()) -> "Target":
        return cls(
            owner_id=user.id if user is not None else None,
            role=user.role if user is not None else None,
            new_role=new_role,
            fields=frozenset(fields),
        )


Rule = Callable[[Principal, Action, Target], Optional[Decision]]


def _authenticated(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    if not p.authenticated:
        return deny("Not authenticated")
    return None


def _portal_separation(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    if action in USER_PORTAL_ACTIONS and p.is_admin:
        return deny("This action is only available in the user portal")
    if action in ADMIN_PORTAL_ACTIONS and not p.is_admin:
        return deny("Admin access required")
    return None


def _form_ownership(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    if action not in FORM_OWNER_ACTIONS or p.is_superadmin:
        return None
    if t.owner_id is None or t.owner_id != p.id:
        return deny("Only the form creator can change this form")
    return None


def _module_gate(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    module = ADMIN_PORTAL_ACTIONS.get(action)
    if module is None or p.has_module(module):
        return None
    return deny(f"Missing '{module}' module permission")


def _self_protection(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    if action not in ACCOUNT_ACTIONS or t.role is None:
        return None
    if p.role == Role.SUPERADMIN and t.role == Role.SUPERADMIN and t.owner_id != p.id:
        return read_only("SuperAdmin accounts cannot be changed by another SuperAdmin")
    if p.role == Role.ADMIN and t.role in ADMIN_ROLES:
        return read_only("Admins cannot change Admin or SuperAdmin accounts")
    return None


def _restricted_fields(p: Principal, action: Action, t: Target) -> Optional[Decision]:
    if action not in ROLE_ASSIGNING_ACTIONS:
        return None
    if t.new_role == Role.SUPERADMIN:
        return deny("The SuperAdmin role cannot be assigned")
    if p.is_superadmin:
        return None
    if t.new_role == Role.ADMIN:
        return deny("Only a SuperAdmin can assign the Admin role")
    restricted = sorted(SUPERADMIN_ONLY_FIELDS & set(t.fields))
    if restricted:
        return deny(f"Only a SuperAdmin can change: {', '.join(restricted)}")
    return None


# Order matters: first terminal outcome wins. Self-protection precedes the
# field restrictions (the more specific rule takes precedence).
RULES: tuple[Rule, ...] = (
    _authenticated,
    _portal_separation,
    _form_ownership,
    _module_gate,
    _self_protection,
    _restricted_fields,
)


def can_act(principal: Principal, action: Action, target: Optional[Target] = None) -> Decision:
    """Resolve (principal, action, target) to exactly one of allow / deny / read-only."""
    target = target or Target()
    for rule in RULES:
        decision = rule(principal, action, target)
        if decision is not None:
            return decision
    return ALLOW


def enforce(principal: Principal, action: Action, target: Optional[Target] = None) -> Decision:
    """can_act, raising for anything but allow (401 / 403 / 403 read-only)."""
    decision = can_act(principal, action, target)
    if decision.allowed:
        return decision
    if decision.read_only:
        raise ReadOnlyError(decision.reason)
    if not principal.authenticated:
        raise UnauthorizedError(decision.reason)
    raise error_for_status(403, decision.reason)


def can_view_form(principal: Principal, form) -> bool:
    """Published forms are visible to everyone; other states only to the creator."""
    if form is None or form.status == FormStatus.DELETED:
        return False
    if form.status == FormStatus.PUBLISHED:
        return True
    return principal.is_superadmin or form.created_by == principal.id
