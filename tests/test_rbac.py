from __future__ import annotations

import itertools
from types import SimpleNamespace

import pytest

from formdesk.core.errors import ForbiddenError, ReadOnlyError, UnauthorizedError
from formdesk.core.rbac import (
    ANONYMOUS,
    Action,
    Outcome,
    Principal,
    Target,
    USER_PORTAL_ACTIONS,
    can_act,
    can_view_form,
    enforce,
)
from formdesk.db.models.form import FormStatus
from formdesk.db.models.user import Role

USER = Principal(id=1, role=Role.USER)
ADMIN_FORMS = Principal(id=2, role=Role.ADMIN, module_permissions={"users": False, "forms": True})
ADMIN_USERS = Principal(id=3, role=Role.ADMIN, module_permissions={"users": True, "forms": False})
ADMIN_NONE = Principal(id=4, role=Role.ADMIN, module_permissions=None)
SUPER = Principal(id=5, role=Role.SUPERADMIN)
OTHER_SUPER_ID = 6


def _account(id_, role):
    return SimpleNamespace(id=id_, role=role)


def test_anonymous_is_denied_everything():
    for action in Action:
        assert can_act(ANONYMOUS, action).outcome == Outcome.DENY


def test_admin_forms_only_cannot_list_users_but_can_create_forms():
    assert can_act(ADMIN_FORMS, Action.LIST_USERS).denied
    assert can_act(ADMIN_FORMS, Action.CREATE_FORM).allowed


def test_superadmin_editing_other_superadmin_is_read_only():
    target = Target.for_user(_account(OTHER_SUPER_ID, Role.SUPERADMIN), fields={"name"})
    decision = can_act(SUPER, Action.UPDATE_USER, target)
    assert decision.outcome == Outcome.READ_ONLY
    assert not decision.allowed and not decision.denied


def test_superadmin_editing_self_is_allowed():
    target = Target.for_user(_account(SUPER.id, Role.SUPERADMIN), fields={"name"})
    assert can_act(SUPER, Action.UPDATE_USER, target).allowed


def test_admin_on_admin_or_superadmin_is_read_only():
    for role in (Role.ADMIN, Role.SUPERADMIN):
        target = Target.for_user(_account(99, role))
        assert can_act(ADMIN_USERS, Action.UPDATE_USER, target).read_only
        assert can_act(ADMIN_USERS, Action.DELETE_USER, target).read_only
        assert can_act(ADMIN_USERS, Action.VIEW_USER, target).read_only


def test_self_protection_wins_over_restricted_fields():
    target = Target.for_user(_account(99, Role.ADMIN), new_role=Role.SUPERADMIN, fields={"employee_id"})
    assert can_act(ADMIN_USERS, Action.UPDATE_USER, target).read_only


def test_user_portal_actions_denied_for_admins():
    for action in USER_PORTAL_ACTIONS:
        assert can_act(SUPER, action).denied
        assert can_act(ADMIN_FORMS, action).denied
        assert can_act(USER, action).allowed


def test_admin_portal_actions_denied_for_users():
    for action in (Action.CREATE_FORM, Action.LIST_USERS, Action.VIEW_SETTINGS, Action.VIEW_ADMIN_ANALYTICS):
        assert can_act(USER, action).denied


def test_form_ownership():
    mine = Target(owner_id=ADMIN_FORMS.id)
    theirs = Target(owner_id=999)
    assert can_act(ADMIN_FORMS, Action.UPDATE_FORM, mine).allowed
    assert can_act(ADMIN_FORMS, Action.UPDATE_FORM, theirs).denied
    assert can_act(ADMIN_FORMS, Action.DELETE_FORM, theirs).denied
    assert can_act(SUPER, Action.DELETE_FORM, theirs).allowed


def test_module_gate_without_permissions():
    assert can_act(ADMIN_NONE, Action.CREATE_FORM).denied
    assert can_act(ADMIN_NONE, Action.LIST_USERS).denied
    # no module attached
    assert can_act(ADMIN_NONE, Action.VIEW_SETTINGS).allowed
    assert can_act(ADMIN_NONE, Action.UPDATE_SETTINGS).allowed


def test_restricted_fields_and_roles():
    plain_user = _account(50, Role.USER)
    assert can_act(ADMIN_USERS, Action.CREATE_USER, Target.for_user(new_role=Role.USER)).allowed
    assert can_act(ADMIN_USERS, Action.CREATE_USER, Target.for_user(new_role=Role.ADMIN)).denied
    assert can_act(SUPER, Action.CREATE_USER, Target.for_user(new_role=Role.ADMIN)).allowed
    assert can_act(SUPER, Action.CREATE_USER, Target.for_user(new_role=Role.SUPERADMIN)).denied
    for field in ("employee_id", "vendor_id", "module_permissions"):
        target = Target.for_user(plain_user, fields={field})
        assert can_act(ADMIN_USERS, Action.UPDATE_USER, target).denied
        assert can_act(SUPER, Action.UPDATE_USER, target).allowed
    assert can_act(ADMIN_USERS, Action.UPDATE_USER, Target.for_user(plain_user, fields={"name", "city"})).allowed


def test_every_tuple_resolves_to_exactly_one_outcome():
    principals = [ANONYMOUS, USER, ADMIN_FORMS, ADMIN_USERS, ADMIN_NONE, SUPER]
    targets = [Target(), Target(owner_id=2), Target(owner_id=999)]
    for role in Role:
        for new_role in (None, *Role):
            targets.append(Target.for_user(_account(77, role), new_role=new_role, fields={"employee_id"}))
            targets.append(Target.for_user(_account(5, role), new_role=new_role))
    for p, action, t in itertools.product(principals, Action, targets):
        decision = can_act(p, action, t)
        flags = [decision.allowed, decision.denied, decision.read_only]
        assert flags.count(True) == 1, (p, action, t)


def test_enforce_raises_matching_errors():
    with pytest.raises(UnauthorizedError):
        enforce(ANONYMOUS, Action.VIEW_FORM)
    with pytest.raises(ForbiddenError) as exc:
        enforce(USER, Action.LIST_USERS)
    assert not isinstance(exc.value, ReadOnlyError)
    with pytest.raises(ReadOnlyError) as exc:
        enforce(SUPER, Action.DELETE_USER, Target.for_user(_account(OTHER_SUPER_ID, Role.SUPERADMIN)))
    assert exc.value.to_dict()["readOnly"] is True
    assert enforce(USER, Action.SUBMIT_RESPONSE).allowed


@pytest.mark.parametrize(
    "status, owner_sees, other_sees",
    [
        (FormStatus.PUBLISHED, True, True),
        (FormStatus.DRAFT, True, False),
        (FormStatus.UNPUBLISHED, True, False),
        (FormStatus.ARCHIVED, True, False),
        (FormStatus.DELETED, False, False),
    ],
)
def test_can_view_form(status, owner_sees, other_sees):
    form = SimpleNamespace(status=status, created_by=ADMIN_FORMS.id)
    assert can_view_form(ADMIN_FORMS, form) is owner_sees
    assert can_view_form(USER, form) is other_sees
