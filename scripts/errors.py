"""
Exception types for the Deputy timesheet sync
"""


class DeputySyncError(Exception):
    """Base class for all sync failures"""


class ConfigError(DeputySyncError):
    """One or more required settings are missing or invalid"""


class RemoteError(DeputySyncError):
    """Deputy API answered with a non-success status"""

    def __init__(self, status_code, body, search=None):
        self.status_code = status_code
        self.body = body
        self.search = search
        super().__init__(f"Deputy API Error: {status_code}. Response: {body}")


class TransportError(DeputySyncError):
    """The HTTP call itself failed (timeout, DNS, connection reset...)"""


class SinkNotFoundError(DeputySyncError):
    """Target spreadsheet or tab does not exist or cannot be opened"""


class SinkReadError(DeputySyncError):
    """Reading existing rows from the sink failed"""


class SinkWriteError(DeputySyncError):
    """Bulk append to the sink failed"""

    def __init__(self, message, rows=None):
        self.rows = rows or []
        super().__init__(message)
