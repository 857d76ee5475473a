"""
Configuration module for Deputy Timesheet Sync
Centralizes all configuration settings and environment variables
"""
import os
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError

# (field name, environment variable) pairs that must be set for a run
REQUIRED_SETTINGS = [
    ("install_name", "DEPUTY_INSTALL"),
    ("geo", "DEPUTY_GEO"),
    ("access_token", "DEPUTY_ACCESS_TOKEN"),
    ("spreadsheet_id", "SPREADSHEET_ID"),
    ("sheet_name", "SHEET_NAME"),
    ("admin_email", "ADMIN_EMAIL_FOR_NOTIFICATIONS"),
]

SINK_BACKENDS = ("gsheets", "xlsx")


@dataclass
class Config:
    """Configuration settings for timesheet sync"""
    # Deputy API Configuration
    install_name: str
    geo: str
    access_token: str

    # Sink Configuration
    spreadsheet_id: str
    sheet_name: str

    # Notifications
    admin_email: str

    auth_type: str = "Bearer"
    timesheet_id_column_index: int = 0
    sink_backend: str = "gsheets"
    google_credentials_file: str = "credentials.json"

    # Email Configuration
    gmail_email: Optional[str] = None
    gmail_app_password: Optional[str] = None

    # Retry Configuration (0 = first attempt only)
    max_retries: int = 0
    retry_delay: int = 2

    # Timeout Configuration
    request_timeout: int = 30

    # Scheduling
    timezone: str = "America/New_York"
    first_run_date: date = date(2025, 6, 4)

    @classmethod
    def from_env(cls, environ=None):
        """Load configuration from environment variables"""
        if environ is None:
            load_dotenv()
            environ = os.environ

        missing = [env_name for _, env_name in REQUIRED_SETTINGS if not environ.get(env_name)]
        if missing:
            raise ConfigError(
                "ERROR: One or more required settings are not set: " + ", ".join(missing)
            )

        sink_backend = environ.get("SINK_BACKEND", "gsheets").strip().lower()
        if sink_backend not in SINK_BACKENDS:
            raise ConfigError(f"ERROR: SINK_BACKEND must be one of {SINK_BACKENDS}, got '{sink_backend}'")

        return cls(
            install_name=environ["DEPUTY_INSTALL"],
            geo=environ["DEPUTY_GEO"],
            access_token=environ["DEPUTY_ACCESS_TOKEN"],
            auth_type=environ.get("DEPUTY_AUTH_TYPE") or "Bearer",
            spreadsheet_id=environ["SPREADSHEET_ID"],
            sheet_name=environ["SHEET_NAME"],
            timesheet_id_column_index=_int_setting(environ, "TIMESHEET_ID_COLUMN_INDEX", 0),
            admin_email=environ["ADMIN_EMAIL_FOR_NOTIFICATIONS"],
            sink_backend=sink_backend,
            google_credentials_file=environ.get("GOOGLE_CREDENTIALS_FILE") or "credentials.json",
            gmail_email=environ.get("GMAIL_EMAIL"),
            gmail_app_password=environ.get("GMAIL_APP_PASSWORD"),
            max_retries=_int_setting(environ, "MAX_RETRIES", 0),
            retry_delay=_int_setting(environ, "RETRY_DELAY", 2),
            request_timeout=_int_setting(environ, "REQUEST_TIMEOUT", 30),
            timezone=environ.get("SYNC_TIMEZONE") or "America/New_York",
            first_run_date=_date_setting(environ, "FIRST_RUN_DATE", date(2025, 6, 4)),
        )

    @property
    def api_base_url(self):
        return f"https://{self.install_name}.{self.geo}.deputy.com/api/v1"

    def resource_query_url(self, resource):
        """QUERY endpoint for a Deputy resource, e.g. Timesheet or LeaveRule"""
        return f"{self.api_base_url}/resource/{resource}/QUERY"

    @property
    def headers(self):
        """Get HTTP headers for API requests"""
        return {
            "Authorization": f"{self.auth_type} {self.access_token}",
            "Content-Type": "application/json"
        }

    def validate_email_config(self):
        """Check if email configuration is valid"""
        if not self.admin_email:
            return False, "ADMIN_EMAIL_FOR_NOTIFICATIONS not configured"
        if not self.gmail_email:
            return False, "GMAIL_EMAIL not configured"
        if not self.gmail_app_password:
            return False, "GMAIL_APP_PASSWORD not configured"
        return True, "Email configuration valid"


def _int_setting(environ, name, default):
    raw = environ.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"ERROR: {name} must be an integer, got '{raw}'")


def _date_setting(environ, name, default):
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return datetime.strptime(raw.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ConfigError(f"ERROR: {name} must be YYYY-MM-DD, got '{raw}'")
