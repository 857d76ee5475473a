import html
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage

import pandas as pd

logger = logging.getLogger(__name__)

GMAIL_SMTP_HOST = "smtp.gmail.com"
GMAIL_SMTP_PORT = 465


def format_api_date(api_date_str):
    """
    Format an API date string to the sheet date format.

    Args:
        api_date_str: String like "2025-05-21T00:00:00-04:00" or "2025-05-21"

    Returns:
        "05/21/2025", or '' when the value is empty
    """
    if not api_date_str:
        return ''

    date_string = str(api_date_str).strip()
    try:
        # Calendar date as written by Deputy, the offset is not applied
        date_part = date_string.replace('T', ' ').split(' ')[0]
        return datetime.strptime(date_part, '%Y-%m-%d').strftime('%m/%d/%Y')
    except ValueError as e:
        logger.warning("Error formatting date string: %s. Error: %s", api_date_str, e)
        return date_string


def format_api_time(api_time_str):
    """
    Format an API localized timestamp to "HH:MM:SS".

    Accepts both "2025-05-21T06:43:00-04:00" and "2025-05-21 06:43:00".
    """
    if not api_time_str:
        return ''

    time_string = str(api_time_str).strip()
    if 'T' in time_string:
        time_part = time_string.split('T', 1)[1]
    elif ' ' in time_string:
        time_part = time_string.split(' ', 1)[1]
    else:
        logger.warning("Error formatting time string: %s. No time portion found", api_time_str)
        return time_string
    return time_part[:8]


def format_duration(total_seconds):
    """
    Format a duration in seconds to "H:MM:SS" (no leading zero on hours).
    """
    if total_seconds is None:
        return '0:00:00'
    try:
        total_seconds = float(total_seconds)
    except (TypeError, ValueError):
        return '0:00:00'
    # half-up, so 0.5s shows as 0:00:01
    total_seconds = int(total_seconds + 0.5) if total_seconds > 0 else 0

    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def to_number(value, default=0):
    """Coerce an API numeric field, falling back to default"""
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def send_gmail(
    to_emails,
    subject,
    body_html,
    sender_email,
    app_password,
    df_attachment=None,
    attachment_filename=None
):
    """
    Send an HTML email through Gmail SMTP, optionally attaching a DataFrame as CSV

    Args:
        to_emails: List of recipient addresses
        subject: Email subject
        body_html: HTML body
        sender_email: Gmail account used to send
        app_password: Gmail app password for that account
        df_attachment: Optional DataFrame attached as CSV
        attachment_filename: File name for the attachment
    """
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender_email
    message["To"] = ", ".join(to_emails)
    message.set_content("This message requires an HTML capable email client.")
    message.add_alternative(body_html, subtype="html")

    if df_attachment is not None and len(df_attachment) > 0:
        filename = attachment_filename or f"attachment_{datetime.now().strftime('%Y%m%d')}.csv"
        message.add_attachment(
            df_attachment.to_csv(index=False).encode("utf-8"),
            maintype="text",
            subtype="csv",
            filename=filename
        )

    with smtplib.SMTP_SSL(GMAIL_SMTP_HOST, GMAIL_SMTP_PORT) as server:
        server.login(sender_email, app_password)
        server.send_message(message)


def text_to_html(body):
    """Wrap a plain-text notification body for the HTML email part"""
    escaped = html.escape(str(body), quote=False)
    return f"<html><body><pre style=\"font-family: Arial, sans-serif;\">{escaped}</pre></body></html>"


class EmailNotifier:
    """
    Best-effort admin notification.
    Sending problems are logged, never raised to the caller.
    """

    def __init__(self, admin_email, gmail_email=None, gmail_app_password=None, sender=send_gmail):
        self.admin_email = admin_email
        self.gmail_email = gmail_email
        self.gmail_app_password = gmail_app_password
        self.sender = sender

    @classmethod
    def from_config(cls, config, sender=send_gmail):
        return cls(config.admin_email, config.gmail_email, config.gmail_app_password, sender=sender)

    @classmethod
    def from_env(cls, environ, sender=send_gmail):
        """Used when the full configuration could not be loaded"""
        return cls(
            environ.get("ADMIN_EMAIL_FOR_NOTIFICATIONS"),
            environ.get("GMAIL_EMAIL"),
            environ.get("GMAIL_APP_PASSWORD"),
            sender=sender
        )

    def send(self, address, subject, body, df_attachment=None, attachment_filename=None):
        if not address:
            logger.warning("No admin address configured, notification '%s' not sent", subject)
            return False
        if not self.gmail_email or not self.gmail_app_password:
            logger.warning("GMAIL_EMAIL/GMAIL_APP_PASSWORD not configured, notification '%s' not sent", subject)
            return False

        try:
            self.sender(
                to_emails=[address],
                subject=subject,
                body_html=text_to_html(body),
                sender_email=self.gmail_email,
                app_password=self.gmail_app_password,
                df_attachment=df_attachment,
                attachment_filename=attachment_filename
            )
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send notification '%s' to %s: %s", subject, address, e)
            return False

        logger.info("Notification '%s' sent to %s", subject, address)
        return True

    def notify_admin(self, subject, body, df_attachment=None, attachment_filename=None):
        return self.send(self.admin_email, subject, body, df_attachment, attachment_filename)


def rows_to_dataframe(rows, headers):
    """DataFrame view of sheet rows, used for CSV attachments and filtering"""
    return pd.DataFrame(list(rows), columns=list(headers))
