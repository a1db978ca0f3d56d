"""Google Sheets sync adapter.

Rows are written as [user id, user name, user email, answer_q1, answer_q2, ...]
following the form's question order at sync time; the header row is rewritten
to match. Rows written before a question reorder are not realigned.
"""
from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from functools import lru_cache
from typing import Callable, Optional, TypeVar

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from formdesk.core.config import settings

logger = logging.getLogger("formdesk.sheets")

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SHEET_NAME = "Sheet1"
FIXED_HEADERS = ["ID", "NAME", "EMAIL"]

_SHEET_ID_RE = re.compile(r"/d/([a-zA-Z0-9-_]+)")
_ROW_RE = re.compile(r"[A-Z]+(\d+)")

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sheets-sync")


class SyncError(Exception):
    """Any failure talking to the external sheet (network, auth, quota, timeout)."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


def sheet_id_from_url(sheet_ref: str) -> str:
    m = _SHEET_ID_RE.search(sheet_ref or "")
    return m.group(1) if m else (sheet_ref or "").strip()


def header_row(questions: list[dict]) -> list[str]:
    return FIXED_HEADERS + [str(q.get("title") or "").strip() for q in questions]


def _cell(answer) -> str:
    if isinstance(answer, list):
        return ", ".join(str(a) for a in answer)
    if answer is None:
        return ""
    return str(answer)


def build_row(user_metadata: dict, questions: list[dict], answers: dict) -> list[str]:
    return [
        str(user_metadata.get("id", "Anonymous")),
        str(user_metadata.get("name", "Anonymous")),
        str(user_metadata.get("email", "Anonymous")),
    ] + [_cell(answers.get(q.get("id"))) for q in questions]


def parse_row_pointer(updated_range: str | None) -> int:
    """'Sheet1!A5:F5' -> 5."""
    tail = (updated_range or "").split("!")[-1]
    m = _ROW_RE.search(tail)
    if not m:
        raise SyncError(f"Could not determine row number after append ({updated_range!r})")
    return int(m.group(1))


def run_with_timeout(fn: Callable[..., T], timeout: float, *args, **kwargs) -> T:
    """Run a sheet call on the sync pool, giving up after `timeout` seconds.

    On timeout the worker keeps running until its socket timeout fires; the
    caller treats the call as failed either way.
    """
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise SyncError(f"Sheet call timed out after {timeout:g}s")


class SheetsClient:
    def __init__(self, credentials_info: dict, timeout: float = 5.0):
        self._credentials = service_account.Credentials.from_service_account_info(credentials_info, scopes=SCOPES)
        self.timeout = timeout

    def _service(self):
        # httplib2 is not thread-safe: one transport per call.
        http = google_auth_httplib2.AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=self.timeout))
        return build("sheets", "v4", http=http, cache_discovery=False)

    @staticmethod
    def _execute(request) -> dict:
        try:
            return request.execute(num_retries=0) or {}
        except HttpError as exc:
            raise SyncError(f"Sheets API error: {exc.reason or exc}", status=int(exc.resp.status))
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            raise SyncError(f"Sheets API unreachable: {exc}")

    def _ensure_headers(self, spreadsheet_id: str, headers: list[str]) -> None:
        values = self._service().spreadsheets().values()
        current = self._execute(values.get(spreadsheetId=spreadsheet_id, range=f"{SHEET_NAME}!1:1"))
        existing = (current.get("values") or [[]])[0]
        if existing != headers:
            self._execute(
                values.update(
                    spreadsheetId=spreadsheet_id,
                    range=f"{SHEET_NAME}!1:1",
                    valueInputOption="RAW",
                    body={"values": [headers]},
                )
            )

    def append(self, sheet_ref: str, row: list[str], headers: list[str] | None = None) -> int:
        spreadsheet_id = sheet_id_from_url(sheet_ref)
        if headers:
            self._ensure_headers(spreadsheet_id, headers)
        resp = self._execute(
            self._service().spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range=f"{SHEET_NAME}!A1",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [row]},
            )
        )
        return parse_row_pointer((resp.get("updates") or {}).get("updatedRange"))

    def update(self, sheet_ref: str, row_pointer: int, row: list[str], headers: list[str] | None = None) -> None:
        spreadsheet_id = sheet_id_from_url(sheet_ref)
        if headers:
            self._ensure_headers(spreadsheet_id, headers)
        self._execute(
            self._service().spreadsheets().values().update(
                spreadsheetId=spreadsheet_id,
                range=f"{SHEET_NAME}!A{int(row_pointer)}",
                valueInputOption="RAW",
                body={"values": [row]},
            )
        )

    def validate_and_initialize(self, sheet_ref: str) -> dict:
        """Check the service account can open the sheet and seed the ID/NAME/EMAIL header."""
        spreadsheet_id = sheet_id_from_url(sheet_ref)
        try:
            metadata = self._execute(self._service().spreadsheets().get(spreadsheetId=spreadsheet_id))
            values = self._service().spreadsheets().values()
            current = self._execute(values.get(spreadsheetId=spreadsheet_id, range=f"{SHEET_NAME}!1:1"))
            existing = (current.get("values") or [[]])[0]
            initialized = all(
                i < len(existing) and str(existing[i]).upper() == h for i, h in enumerate(FIXED_HEADERS)
            )
            if not initialized:
                self._execute(
                    values.update(
                        spreadsheetId=spreadsheet_id,
                        range=f"{SHEET_NAME}!A1:C1",
                        valueInputOption="RAW",
                        body={"values": [FIXED_HEADERS]},
                    )
                )
        except SyncError as exc:
            if exc.status in (401, 403):
                logger.warning("Sheet validation: permission denied for %s", sheet_ref)
                raise SyncError(
                    "Service account does not have access to this sheet. "
                    "Please share it with the service account email.",
                    status=exc.status,
                )
            if exc.status == 404:
                logger.warning("Sheet validation: not found %s", sheet_ref)
                raise SyncError("Spreadsheet not found. Please check the URL.", status=404)
            logger.error("Sheet validation unexpected error: %s", exc)
            raise
        title = (metadata.get("properties") or {}).get("title") or "Untitled Sheet"
        return {"title": title, "sheetId": spreadsheet_id}


@lru_cache(maxsize=1)
def _client_from_settings() -> Optional[SheetsClient]:
    raw = (settings.GOOGLE_SERVICE_ACCOUNT_JSON or "").strip()
    if not raw:
        logger.info("GOOGLE_SERVICE_ACCOUNT_JSON not set; sheet sync disabled")
        return None
    try:
        info = json.loads(raw)
        return SheetsClient(info, timeout=settings.SHEETS_SYNC_TIMEOUT_SECONDS)
    except (ValueError, GoogleAuthError) as exc:
        logger.error("Invalid GOOGLE_SERVICE_ACCOUNT_JSON, sheet sync disabled: %s", exc)
        return None


def get_sheets_client() -> Optional[SheetsClient]:
    """FastAPI dependency; None when sync is not configured."""
    return _client_from_settings()
