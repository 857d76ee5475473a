"""
Spreadsheet sinks for synced timesheet rows.

Two backends share one small handle interface:
    last_row_index(), read_column(), read_header(), append_rows(), append_if_empty()

GoogleSheetSink writes to a Google Sheet tab through gspread,
WorkbookSink writes to a local .xlsx file through openpyxl.

Opening problems surface as SinkNotFoundError, reads as SinkReadError and
writes as SinkWriteError, so the run can report them to the admin.
"""
import logging
import zipfile
from typing import List

import gspread
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from openpyxl import load_workbook
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

from errors import SinkNotFoundError, SinkReadError, SinkWriteError
from tools import rows_to_dataframe

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

GSHEETS_ERRORS = (gspread.exceptions.APIError, requests.exceptions.RequestException, GoogleAuthError)


def _client(credentials_file):
    creds = Credentials.from_service_account_file(credentials_file, scopes=SCOPES)
    return gspread.authorize(creds)


class GoogleSheetSink:
    def __init__(self, worksheet):
        self.ws = worksheet

    @classmethod
    def open(cls, spreadsheet_id, sheet_name, credentials_file="credentials.json"):
        try:
            client = _client(credentials_file)
        except OSError as e:
            raise SinkNotFoundError(f'ERROR: Credentials file "{credentials_file}" could not be read: {e}') from e
        except (ValueError, GoogleAuthError) as e:
            raise SinkNotFoundError(f'ERROR: Credentials file "{credentials_file}" is not a valid service account key: {e}') from e

        try:
            spreadsheet = client.open_by_key(spreadsheet_id)
            worksheet = spreadsheet.worksheet(sheet_name)
        except gspread.WorksheetNotFound:
            raise SinkNotFoundError(f'ERROR: Sheet "{sheet_name}" not found.')
        except gspread.SpreadsheetNotFound:
            raise SinkNotFoundError(f'ERROR: Spreadsheet "{spreadsheet_id}" not found.')
        except GSHEETS_ERRORS as e:
            raise SinkNotFoundError(f'ERROR: Spreadsheet "{spreadsheet_id}" could not be opened: {e}') from e
        return cls(worksheet)

    def last_row_index(self):
        try:
            return len(self.ws.get_all_values())
        except GSHEETS_ERRORS as e:
            raise SinkReadError(f"Error reading Google Sheet: {e}") from e

    def read_column(self, col_index, start_row, num_rows):
        try:
            values = self.ws.col_values(col_index + 1)
        except GSHEETS_ERRORS as e:
            raise SinkReadError(f"Error reading column {col_index + 1} of Google Sheet: {e}") from e
        return values[start_row - 1:start_row - 1 + num_rows]

    def read_header(self):
        try:
            return self.ws.row_values(1)
        except GSHEETS_ERRORS as e:
            raise SinkReadError(f"Error reading Google Sheet header: {e}") from e

    def append_rows(self, rows):
        try:
            start_row = self.last_row_index() + 1
        except SinkReadError as e:
            raise SinkWriteError(f"Error locating the append position: {e}", rows) from e

        end_row = start_row + len(rows) - 1
        try:
            if self.ws.row_count < end_row:
                self.ws.add_rows(end_row - self.ws.row_count)
            self.ws.update(
                range_name=f"A{start_row}",
                values=rows,
                value_input_option="USER_ENTERED"
            )
        except GSHEETS_ERRORS as e:
            raise SinkWriteError(f"Error writing to Google Sheet: {e}", rows) from e
        return start_row

    def append_if_empty(self, header):
        if self.last_row_index() > 0:
            return False
        try:
            self.ws.update(range_name="A1", values=[list(header)])
        except GSHEETS_ERRORS as e:
            raise SinkWriteError(f"Error writing header to Google Sheet: {e}") from e
        return True


class WorkbookSink:
    def __init__(self, workbook, worksheet, path):
        self.wb = workbook
        self.ws = worksheet
        self.path = path

    @classmethod
    def open(cls, path, sheet_name):
        try:
            workbook = load_workbook(path)
        except FileNotFoundError:
            raise SinkNotFoundError(f'ERROR: Workbook "{path}" not found.')
        except (OSError, InvalidFileException, zipfile.BadZipFile) as e:
            raise SinkNotFoundError(f'ERROR: Workbook "{path}" could not be opened: {e}') from e
        if sheet_name not in workbook.sheetnames:
            raise SinkNotFoundError(f'ERROR: Sheet "{sheet_name}" not found.')
        return cls(workbook, workbook[sheet_name], path)

    def last_row_index(self):
        last = 0
        for row_number, row in enumerate(self.ws.iter_rows(values_only=True), start=1):
            if any(value not in (None, '') for value in row):
                last = row_number
        return last

    def read_column(self, col_index, start_row, num_rows):
        if num_rows <= 0:
            return []
        cells = self.ws.iter_rows(
            min_row=start_row,
            max_row=start_row + num_rows - 1,
            min_col=col_index + 1,
            max_col=col_index + 1,
            values_only=True
        )
        return ['' if row[0] is None else row[0] for row in cells]

    def read_header(self):
        header = [cell.value for cell in self.ws[1]]
        while header and header[-1] is None:
            header.pop()
        return header

    def _write(self, start_row, rows):
        for offset, row in enumerate(rows):
            for col, value in enumerate(row, start=1):
                self.ws.cell(row=start_row + offset, column=col, value=value)
        self.wb.save(self.path)

    def append_rows(self, rows):
        start_row = self.last_row_index() + 1
        try:
            self._write(start_row, rows)
        except (OSError, ValueError, IllegalCharacterError) as e:
            raise SinkWriteError(f"Error writing to workbook {self.path}: {e}", rows) from e
        return start_row

    def append_if_empty(self, header):
        if self.last_row_index() > 0:
            return False
        try:
            self._write(1, [list(header)])
        except (OSError, ValueError, IllegalCharacterError) as e:
            raise SinkWriteError(f"Error writing header to workbook {self.path}: {e}") from e
        return True


def open_sink(config):
    """Open the configured sink, raising SinkNotFoundError when the target is missing"""
    if config.sink_backend == "xlsx":
        return WorkbookSink.open(config.spreadsheet_id, config.sheet_name)
    return GoogleSheetSink.open(config.spreadsheet_id, config.sheet_name, config.google_credentials_file)


def _key(value):
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def get_existing_ids(sink, id_column_index):
    """Set of ids already in the key column, header row skipped"""
    last_row = sink.last_row_index()
    if last_row < 2:
        return set()

    values = sink.read_column(id_column_index, 2, last_row - 1)
    return {_key(value) for value in values if value not in (None, '')}


def ensure_header(sink, headers: List[str]):
    """
    Write the header row into an empty sink. An existing header is never
    overwritten, only checked.
    """
    if sink.append_if_empty(headers):
        logger.info("Appended header row to empty sheet.")
        return True

    current = sink.read_header()
    if len(current) < len(headers):
        logger.warning("Existing headers in sheet are shorter than expected. Expected %s columns, found %s.",
                       len(headers), len(current))

    compared = min(len(headers), len(current))
    if any(headers[i] != current[i] for i in range(compared)):
        logger.warning("Sheet headers do not seem to match expected headers. Expected (start): %s... Actual (start): %s...",
                       ", ".join(headers[:3]), ", ".join(str(value) for value in current[:3]))
    return False


def filter_new_rows(rows, headers, existing_ids, id_column_index):
    """Rows whose key is not in existing_ids, in their original order"""
    if not rows:
        return []

    df = rows_to_dataframe(rows, headers)
    keys = df.iloc[:, id_column_index].map(_key)
    is_duplicate = keys.isin(list(existing_ids))

    for duplicate_id in keys[is_duplicate]:
        logger.info("Skipping duplicate Timesheet ID: %s", duplicate_id)

    return [row for row, duplicate in zip(rows, is_duplicate.tolist()) if not duplicate]


def append_new_rows(sink, rows, existing_ids, id_column_index, headers):
    """
    Append rows not yet present in the sink as one bulk write.

    Returns:
        Number of rows appended
    """
    new_rows = filter_new_rows(rows, headers, existing_ids, id_column_index)
    if not new_rows:
        logger.info("No new timesheet entries to append.")
        return 0

    sink.append_rows(new_rows)
    logger.info("Successfully appended %s new timesheet entries.", len(new_rows))
    return len(new_rows)
