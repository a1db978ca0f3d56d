import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import CHOICE_QUESTION, PASSWORD_HASH, TEXT_QUESTION
from formdesk.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from formdesk.db.base import Base
from formdesk.db.models.form import Form, FormStatus
from formdesk.db.models.form_response import FormResponse, SheetSyncStatus
from formdesk.db.models.user import Role, User, UserStatus
from formdesk.services.sheets import SyncError
from formdesk.services.submission import SubmissionService

SHEET = "https://docs.google.com/spreadsheets/d/sheet123/edit"
ANSWERS = {"q_name": "Ada", "q_color": "Red"}


@pytest.fixture
def owner(make_user):
    return make_user(Role.ADMIN, modules={"users": False, "forms": True})


@pytest.fixture
def respondent(make_user):
    return make_user(Role.USER)


def _stored(db, response_id) -> FormResponse:
    db.expire_all()
    return db.get(FormResponse, response_id)


@pytest.mark.parametrize(
    "status", [FormStatus.DRAFT, FormStatus.UNPUBLISHED, FormStatus.ARCHIVED, FormStatus.DELETED]
)
def test_only_published_forms_accept_new_responses(db, owner, respondent, make_form, status):
    form = make_form(owner, status=status)
    with pytest.raises(NotFoundError):
        SubmissionService(db).submit(form.id, respondent, ANSWERS)
    assert db.query(FormResponse).count() == 0


def test_missing_form_is_not_found(db, respondent):
    with pytest.raises(NotFoundError):
        SubmissionService(db).submit(12345, respondent, ANSWERS)


def test_submit_persists_and_counts(db, owner, respondent, make_form):
    form = make_form(owner, redirect_url="https://example.com/thanks")
    result = SubmissionService(db).submit(form.id, respondent, ANSWERS)

    stored = _stored(db, result.response.id)
    assert stored.answers == ANSWERS
    assert stored.user_id == respondent.id
    assert stored.user_metadata["email"] == respondent.email
    assert stored.sheet_sync_status == SheetSyncStatus.SKIPPED
    assert result.redirect_url == "https://example.com/thanks"
    assert db.get(Form, form.id).response_count == 1


def test_second_submission_by_same_user_conflicts(db, owner, respondent, make_form):
    form = make_form(owner)
    service = SubmissionService(db)
    service.submit(form.id, respondent, ANSWERS)
    with pytest.raises(ConflictError):
        service.submit(form.id, respondent, ANSWERS)



def test_concurrent_submits_by_same_user_store_one_response(tmp_path, monkeypatch):
    # separate connections on a file database, so the two writers really race
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with Session() as setup:
        owner = User(email="owner@example.com", name="Owner", password_hash=PASSWORD_HASH, role=Role.ADMIN,
                     status=UserStatus.ACTIVE)
        user = User(email="ada@example.com", name="Ada", password_hash=PASSWORD_HASH, role=Role.USER,
                    status=UserStatus.ACTIVE)
        setup.add_all([owner, user])
        setup.commit()
        form = Form(title="Survey", description="", status=FormStatus.PUBLISHED, created_by=owner.id,
                    allow_edit_response=False, response_count=0, google_sheet_url=SHEET)
        form.questions = [dict(TEXT_QUESTION), dict(CHOICE_QUESTION)]
        setup.add(form)
        setup.commit()

    # both requests pass the duplicate check before either one inserts
    barrier = threading.Barrier(2)
    already_submitted = SubmissionService._already_submitted

    def racing_check(self, form_id, user_id):
        found = already_submitted(self, form_id, user_id)
        barrier.wait(timeout=5)
        return found

    monkeypatch.setattr(SubmissionService, "_already_submitted", racing_check)
    sheets = MagicMock()
    sheets.append.return_value = 2

    def submit():
        with Session() as session:
            try:
                SubmissionService(session, sheets).submit(form.id, user, ANSWERS)
            except ConflictError:
                return "conflict"
            return "stored"

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(submit) for _ in range(2)]
        outcomes = sorted(f.result(timeout=30) for f in futures)

    assert outcomes == ["conflict", "stored"]
    assert sheets.append.call_count == 1
    with Session() as check:
        assert check.query(FormResponse).count() == 1
        assert check.get(Form, form.id).response_count == 1
    engine.dispose()

def test_admins_cannot_submit(db, owner, make_user, make_form):
    form = make_form(owner)
    with pytest.raises(ForbiddenError):
        SubmissionService(db).submit(form.id, make_user(Role.SUPERADMIN), ANSWERS)


def test_validation_errors_are_all_reported_and_nothing_is_stored(db, owner, respondent, make_form):
    form = make_form(owner)
    with pytest.raises(ValidationError) as exc:
        SubmissionService(db).submit(form.id, respondent, {"q_name": "x" * 256, "q_color": "Green"})
    assert len(exc.value.errors) == 2
    assert db.query(FormResponse).count() == 0


def test_sync_failure_never_loses_the_response(db, owner, respondent, make_form):
    form = make_form(owner, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.side_effect = SyncError("quota exceeded")

    result = SubmissionService(db, sheets).submit(form.id, respondent, ANSWERS)

    stored = _stored(db, result.response.id)
    assert stored.answers == ANSWERS
    assert stored.google_sheet_row_number is None
    assert stored.sheet_sync_status == SheetSyncStatus.FAILED
    assert stored.sheet_sync_error == "quota exceeded"
    assert stored.sheet_sync_attempts == 1


def test_unexpected_sync_exception_is_swallowed(db, owner, respondent, make_form):
    form = make_form(owner, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.side_effect = RuntimeError("socket closed")

    result = SubmissionService(db, sheets).submit(form.id, respondent, ANSWERS)

    assert _stored(db, result.response.id).sheet_sync_status == SheetSyncStatus.FAILED


def test_sync_timeout_is_treated_as_failure(db, owner, respondent, make_form):
    form = make_form(owner, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.side_effect = lambda *a, **kw: time.sleep(0.5) or 3

    started = time.monotonic()
    result = SubmissionService(db, sheets, sync_timeout=0.05).submit(form.id, respondent, ANSWERS)

    assert time.monotonic() - started < 0.5
    stored = _stored(db, result.response.id)
    assert stored.google_sheet_row_number is None
    assert stored.sheet_sync_status == SheetSyncStatus.FAILED


def test_successful_sync_stores_row_pointer(db, owner, respondent, make_form):
    form = make_form(owner, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.return_value = 5

    result = SubmissionService(db, sheets).submit(form.id, respondent, ANSWERS)

    stored = _stored(db, result.response.id)
    assert stored.google_sheet_row_number == 5
    assert stored.sheet_sync_status == SheetSyncStatus.SYNCED
    url, row, headers = sheets.append.call_args.args
    assert url == SHEET
    assert row == [str(respondent.id), respondent.name, respondent.email, "Ada", "Red"]
    assert headers == ["ID", "NAME", "EMAIL", "Name", "Favourite colour"]


def test_update_requires_edits_enabled_even_for_the_submitter(db, owner, respondent, make_form):
    form = make_form(owner, allow_edit_response=False)
    result = SubmissionService(db).submit(form.id, respondent, ANSWERS)
    with pytest.raises(ForbiddenError):
        SubmissionService(db).update(result.response.id, respondent, {"q_name": "Bea", "q_color": "Blue"})


def test_update_by_someone_else_is_forbidden(db, owner, respondent, make_user, make_form):
    form = make_form(owner, allow_edit_response=True)
    result = SubmissionService(db).submit(form.id, respondent, ANSWERS)
    with pytest.raises(ForbiddenError):
        SubmissionService(db).update(result.response.id, make_user(Role.USER), ANSWERS)


def test_update_missing_response_is_not_found(db, respondent):
    with pytest.raises(NotFoundError):
        SubmissionService(db).update(999, respondent, ANSWERS)


def test_update_without_pointer_skips_sync(db, owner, respondent, make_form):
    form = make_form(owner, allow_edit_response=True, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.side_effect = SyncError("down")
    service = SubmissionService(db, sheets)
    result = service.submit(form.id, respondent, ANSWERS)

    service.update(result.response.id, respondent, {"q_name": "Bea", "q_color": "Blue"})

    sheets.update.assert_not_called()
    assert sheets.append.call_count == 1
    stored = _stored(db, result.response.id)
    assert stored.answers == {"q_name": "Bea", "q_color": "Blue"}
    assert stored.sheet_sync_status == SheetSyncStatus.SKIPPED


def test_update_with_pointer_rewrites_that_row(db, owner, respondent, make_form):
    form = make_form(owner, allow_edit_response=True, google_sheet_url=SHEET)
    sheets = MagicMock()
    sheets.append.return_value = 4
    service = SubmissionService(db, sheets)
    result = service.submit(form.id, respondent, ANSWERS)

    service.update(result.response.id, respondent, {"answers": {"q_name": "Bea", "q_color": "Blue"}})

    url, pointer, row, _ = sheets.update.call_args.args
    assert (url, pointer) == (SHEET, 4)
    assert row[-2:] == ["Bea", "Blue"]
    assert _stored(db, result.response.id).sheet_sync_status == SheetSyncStatus.SYNCED
