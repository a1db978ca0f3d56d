import time
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from formdesk.services.sheets import (
    FIXED_HEADERS,
    SheetsClient,
    SyncError,
    build_row,
    header_row,
    parse_row_pointer,
    run_with_timeout,
    sheet_id_from_url,
)

QUESTIONS = [{"id": "a", "title": "Name"}, {"id": "b", "title": "Pets"}, {"id": "c", "title": "Age"}]


def _http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "nope"}}')


def _client():
    client = SheetsClient.__new__(SheetsClient)
    client.timeout = 1.0
    service = MagicMock()
    client._service = lambda: service
    return client, service


def test_sheet_id_from_url():
    url = "https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0"
    assert sheet_id_from_url(url) == "1AbC-d_9"
    assert sheet_id_from_url(" bare-id ") == "bare-id"


def test_row_follows_question_order():
    row = build_row({"id": "7", "name": "Ada", "email": "ada@example.com"}, QUESTIONS, {"b": ["Cat", "Dog"], "a": "Ada"})
    assert row == ["7", "Ada", "ada@example.com", "Ada", "Cat, Dog", ""]
    assert header_row(QUESTIONS) == FIXED_HEADERS + ["Name", "Pets", "Age"]


def test_parse_row_pointer():
    assert parse_row_pointer("Sheet1!A5:F5") == 5
    assert parse_row_pointer("'My Sheet'!A12:C12") == 12
    with pytest.raises(SyncError):
        parse_row_pointer(None)


def test_run_with_timeout_gives_up():
    with pytest.raises(SyncError):
        run_with_timeout(time.sleep, 0.05, 1.0)


def test_run_with_timeout_passes_result_and_errors():
    assert run_with_timeout(lambda x: x * 2, 1.0, 21) == 42

    def boom():
        raise SyncError("quota")

    with pytest.raises(SyncError, match="quota"):
        run_with_timeout(boom, 1.0)


def test_append_returns_row_pointer_and_rewrites_stale_header():
    client, service = _client()
    values = service.spreadsheets.return_value.values.return_value
    values.get.return_value.execute.return_value = {"values": [["ID", "NAME", "EMAIL", "Old title"]]}
    values.append.return_value.execute.return_value = {"updates": {"updatedRange": "Sheet1!A7:F7"}}

    pointer = client.append("sheet-id", ["1", "n", "e", "x"], header_row(QUESTIONS))

    assert pointer == 7
    values.update.assert_called_once()
    assert values.update.call_args.kwargs["body"] == {"values": [header_row(QUESTIONS)]}
    assert values.append.call_args.kwargs["spreadsheetId"] == "sheet-id"


def test_update_targets_the_pointer_row():
    client, service = _client()
    values = service.spreadsheets.return_value.values.return_value
    client.update("sheet-id", 9, ["1", "n", "e"])
    assert values.update.call_args.kwargs["range"] == "Sheet1!A9"


def test_http_errors_become_sync_errors():
    client, service = _client()
    values = service.spreadsheets.return_value.values.return_value
    values.append.return_value.execute.side_effect = _http_error(429)
    with pytest.raises(SyncError) as exc:
        client.append("sheet-id", ["x"])
    assert exc.value.status == 429


@pytest.mark.parametrize(
    "status, message",
    [(403, "does not have access"), (404, "Spreadsheet not found")],
)
def test_validate_and_initialize_explains_failures(status, message):
    client, service = _client()
    service.spreadsheets.return_value.get.return_value.execute.side_effect = _http_error(status)
    with pytest.raises(SyncError, match=message):
        client.validate_and_initialize("https://docs.google.com/spreadsheets/d/abc/edit")


def test_validate_and_initialize_seeds_headers():
    client, service = _client()
    service.spreadsheets.return_value.get.return_value.execute.return_value = {"properties": {"title": "Leads"}}
    values = service.spreadsheets.return_value.values.return_value
    values.get.return_value.execute.return_value = {}

    info = client.validate_and_initialize("https://docs.google.com/spreadsheets/d/abc/edit")

    assert info == {"title": "Leads", "sheetId": "abc"}
    assert values.update.call_args.kwargs["body"] == {"values": [FIXED_HEADERS]}
