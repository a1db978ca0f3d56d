"""JSON shapes returned by the API (camelCase, as the web client expects)."""
from __future__ import annotations

from formdesk.db.models.form import Form
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.user import User
from formdesk.utils.dates import iso


def user_out(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "role": u.role.value,
        "roleLabel": u.role_label,
        "modulePermissions": u.module_permissions,
        "address": u.address,
        "city": u.city,
        "employeeId": u.employee_id,
        "vendorId": u.vendor_id,
        "status": u.status.value,
        "lastHeartbeat": iso(u.last_heartbeat),
        "createdAt": iso(u.created_at),
        "updatedAt": iso(u.updated_at),
    }


def form_out(f: Form, with_questions: bool = True) -> dict:
    out = {
        "id": f.id,
        "title": f.title,
        "description": f.description or "",
        "status": f.status.value,
        "allowEditResponse": bool(f.allow_edit_response),
        "googleSheetUrl": f.google_sheet_url,
        "redirectUrl": f.redirect_url,
        "createdBy": f.created_by,
        "responseCount": f.response_count or 0,
        "createdAt": iso(f.created_at),
        "updatedAt": iso(f.updated_at),
    }
    if with_questions:
        out["questions"] = f.questions
    return out


def response_out(r: FormResponse, form: Form | None = None) -> dict:
    out = {
        "id": r.id,
        "formId": r.form_id,
        "userId": r.user_id,
        "answers": r.answers,
        "userMetadata": r.user_metadata,
        "googleSheetRowNumber": r.google_sheet_row_number,
        "sheetSyncStatus": r.sheet_sync_status.value if r.sheet_sync_status else None,
        "sheetSyncError": r.sheet_sync_error,
        "submittedAt": iso(r.submitted_at),
        "updatedAt": iso(r.updated_at),
    }
    if form is not None:
        out["form"] = {
            "id": form.id,
            "title": form.title,
            "allowEditResponse": bool(form.allow_edit_response),
        }
    return out
