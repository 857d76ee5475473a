import pytest

from config import Config
from row_builder import SHEET_HEADERS


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else str(payload)

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """
    Stand-in for requests.Session.

    `handler(url, payload)` returns a FakeResponse or raises; every call is
    recorded in `calls`.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return self.handler(url, json)


class QueueSession(FakeSession):
    """Answers calls in order from a list of responses/exceptions"""

    def __init__(self, responses):
        self.responses = list(responses)
        super().__init__(self._next)

    def _next(self, url, payload):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify_admin(self, subject, body, df_attachment=None, attachment_filename=None):
        self.messages.append({
            "subject": subject,
            "body": body,
            "df_attachment": df_attachment,
            "attachment_filename": attachment_filename,
        })
        return True

    @property
    def subjects(self):
        return [message["subject"] for message in self.messages]


class FakeSink:
    """In-memory sheet: a list of rows, row 1 first"""

    def __init__(self, rows=None, fail_on_append=None, fail_on_header=None, fail_on_read=None):
        self.rows = [list(row) for row in (rows or [])]
        self.append_calls = []
        self.fail_on_append = fail_on_append
        self.fail_on_header = fail_on_header
        self.fail_on_read = fail_on_read

    def last_row_index(self):
        if self.fail_on_read is not None:
            raise self.fail_on_read
        return len(self.rows)

    def read_column(self, col_index, start_row, num_rows):
        selected = self.rows[start_row - 1:start_row - 1 + num_rows]
        return [row[col_index] if col_index < len(row) else '' for row in selected]

    def read_header(self):
        return list(self.rows[0]) if self.rows else []

    def append_rows(self, rows):
        if self.fail_on_append is not None:
            raise self.fail_on_append
        self.append_calls.append([list(row) for row in rows])
        start_row = len(self.rows) + 1
        self.rows.extend(list(row) for row in rows)
        return start_row

    def append_if_empty(self, header):
        if self.fail_on_header is not None:
            raise self.fail_on_header
        if self.rows:
            return False
        self.rows.append(list(header))
        return True


@pytest.fixture
def config():
    return Config(
        install_name="acme",
        geo="na",
        access_token="secret-token",
        spreadsheet_id="sheet-key",
        sheet_name="Timesheets",
        admin_email="admin@example.com",
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def headers():
    return list(SHEET_HEADERS)


def make_timesheet(ts_id, is_leave=False, **overrides):
    """Raw Deputy Timesheet object with sensible defaults"""
    record = {
        "Id": ts_id,
        "IsLeave": is_leave,
        "Date": "2025-06-03T00:00:00-04:00",
        "EmployeeObject": {"Id": 42, "DisplayName": "Jane Doe"},
        "StartTimeLocalized": "2025-06-03T09:00:00-04:00",
        "EndTimeLocalized": "2025-06-03T17:30:00-04:00",
        "TotalTime": 8,
        "Cost": 160.5,
        "EmployeeComment": "",
        "SupervisorComment": "",
        "_DPMetaData": {
            "OperationalUnitInfo": {"OperationalUnitName": "Front Desk", "CompanyName": "Main Street"}
        },
        "Slots": [],
    }
    record.update(overrides)
    return record
