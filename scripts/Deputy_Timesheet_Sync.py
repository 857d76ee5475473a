import argparse
import logging
import os
import sys
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import Config
from deputy_api import (
    TIMESHEET_JOIN,
    TIMESHEET_RESOURCE,
    DeputyClient,
    LeaveRuleCache,
    build_search,
    condition,
    fetch_approved_timesheets,
)
from errors import ConfigError, DeputySyncError, SinkNotFoundError, SinkReadError, SinkWriteError
from row_builder import SHEET_HEADERS, build_row
from sheets import append_new_rows, ensure_header, filter_new_rows, get_existing_ids, open_sink
from timesheet_models import parse_timesheet
from tools import EmailNotifier, rows_to_dataframe

logger = logging.getLogger(__name__)

PAY_PERIOD_DAYS = 14
SCHEDULE_INTERVAL_DAYS = 14


@dataclass
class PayPeriod:
    start_date: str
    end_date: str


@dataclass
class SyncResult:
    pay_period: PayPeriod
    fetched: int = 0
    candidate_rows: int = 0
    appended: int = 0
    header_written: bool = False
    dry_run: bool = False


def calculate_pay_period(now) -> PayPeriod:
    """
    Pay period (Monday to Sunday, 14 days) ending on the Sunday on or before `now`.

    On the scheduled Wednesday run that Sunday is 3 days back, which keeps the
    old "run date minus 3 days" behaviour while staying correct on other days.

    Args:
        now: date or datetime of the run, in the caller's local calendar

    Returns:
        PayPeriod with 'start_date' and 'end_date' (YYYY-MM-DD format)
    """
    run_date = now.date() if isinstance(now, datetime) else now
    # weekday(): Monday=0 ... Sunday=6, shifted so Sunday=0
    days_since_sunday = (run_date.weekday() + 1) % 7

    period_sunday = run_date - timedelta(days=days_since_sunday)
    period_monday = period_sunday - timedelta(days=PAY_PERIOD_DAYS - 1)

    return PayPeriod(
        start_date=period_monday.strftime('%Y-%m-%d'),
        end_date=period_sunday.strftime('%Y-%m-%d')
    )


def is_scheduled_run_date(today, first_run_date: date) -> bool:
    """True on first_run_date and every 14 days after it"""
    run_date = today.date() if isinstance(today, datetime) else today
    days_diff = (run_date - first_run_date).days
    return days_diff >= 0 and days_diff % SCHEDULE_INTERVAL_DAYS == 0


def run_sync(now, config, client=None, sink=None, notifier=None, dry_run=False, sink_opener=open_sink):
    """
    One sync pass: fetch approved timesheets for the pay period and append
    the ones the sheet does not have yet.

    All reads and row building happen before the single write at the end.
    """
    notifier = notifier or EmailNotifier.from_config(config)
    client = client or DeputyClient(config, notifier=notifier)

    pay_period = calculate_pay_period(now)
    result = SyncResult(pay_period=pay_period, dry_run=dry_run)
    logger.info("Pay period: %s to %s", pay_period.start_date, pay_period.end_date)

    leave_rules = LeaveRuleCache(client)
    leave_rules.load()

    raw_timesheets = fetch_approved_timesheets(client, pay_period)
    result.fetched = len(raw_timesheets)
    if not raw_timesheets:
        logger.info("No approved timesheets found for the specified period.")
        return result

    rows = [build_row(parse_timesheet(raw), leave_rules) for raw in raw_timesheets]
    result.candidate_rows = len(rows)

    if sink is None:
        try:
            sink = sink_opener(config)
        except SinkNotFoundError as e:
            logger.error("%s", e)
            notifier.notify_admin("Deputy Sync Error - Sheet Not Found", str(e))
            raise

    try:
        existing_ids = get_existing_ids(sink, config.timesheet_id_column_index)
    except SinkReadError as e:
        logger.error("%s", e)
        notifier.notify_admin("Deputy Sync Error - Sheet Read Failure", str(e))
        raise
    logger.info("Found %s existing Timesheet IDs for deduplication.", len(existing_ids))

    new_rows = filter_new_rows(rows, SHEET_HEADERS, existing_ids, config.timesheet_id_column_index)
    if dry_run:
        logger.info("Dry run: %s new rows would be appended: %s",
                    len(new_rows), ", ".join(str(row[0]) for row in new_rows))
        return result

    try:
        result.header_written = ensure_header(sink, SHEET_HEADERS)
        result.appended = append_new_rows(
            sink,
            new_rows,
            existing_ids,
            config.timesheet_id_column_index,
            SHEET_HEADERS
        )
    except SinkReadError as e:
        logger.error("%s", e)
        notifier.notify_admin("Deputy Sync Error - Sheet Read Failure", str(e))
        raise
    except SinkWriteError as e:
        logger.error("%s", e)
        # a failed header write leaves every new row unwritten
        unwritten = e.rows or new_rows
        attachment = rows_to_dataframe(unwritten, SHEET_HEADERS) if unwritten else None
        notifier.notify_admin(
            "Deputy Sync Error - Sheet Write Failure",
            f"{e}\n\nRows not written: {len(unwritten)}",
            df_attachment=attachment,
            attachment_filename=f"unwritten_rows_{datetime.now().strftime('%Y%m%d')}.csv"
        )
        raise

    return result


def run_biweekly_check(now, config, **kwargs) -> Optional[SyncResult]:
    """Run the sync only on the bi-weekly schedule anchored at config.first_run_date"""
    days_since = ((now.date() if isinstance(now, datetime) else now) - config.first_run_date).days
    logger.info("Bi-weekly check: First run date: %s. Days since: %s.", config.first_run_date, days_since)

    if not is_scheduled_run_date(now, config.first_run_date):
        logger.info("Skipping run: Not a scheduled bi-weekly run date.")
        return None

    logger.info("This is an active run date. Proceeding with data fetch.")
    return run_sync(now, config, **kwargs)


def debug_comments(config, target_date, client=None):
    """
    Print every comment field of all timesheets on target_date, approved or not.
    Used to find which field carries the manager's comment.
    """
    client = client or DeputyClient(config)
    search = build_search(condition("Date", "eq", target_date))
    result = client.fetch_all_pages(TIMESHEET_RESOURCE, search, join=TIMESHEET_JOIN, notify_errors=False)

    if not result.ok:
        print(f"DEBUG: API Error: {result.error}")
        return []
    if not result.records:
        print("DEBUG: No timesheets found for this date.")
        return []

    print(f"---------- DEBUGGING COMMENTS FOR {len(result.records)} TIMESHEETS ON {target_date} ----------")
    for index, ts in enumerate(result.records, start=1):
        employee_name = (ts.get('EmployeeObject') or {}).get('DisplayName', 'N/A')
        print(f"--- Record #{index} | Timesheet ID: {ts.get('Id')} | Employee: {employee_name} ---")
        print(f"SupervisorComment: {ts.get('SupervisorComment')}")
        print(f"EmployeeComment: {ts.get('EmployeeComment')}")
        if ts.get('IsLeave') and ts.get('Leave'):
            print(f"Leave Comment: {ts['Leave'].get('Comment')}")
            print(f"Leave ApprovalComment: {ts['Leave'].get('ApprovalComment')}")
    return result.records


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync approved Deputy timesheets into a spreadsheet.")
    parser.add_argument("--date", help="Run as if today were this date (YYYY-MM-DD)")
    parser.add_argument("--biweekly-check", action="store_true",
                        help="Only sync on the 14-day schedule anchored at FIRST_RUN_DATE")
    parser.add_argument("--dry-run", action="store_true", help="Build rows but do not write to the sheet")
    parser.add_argument("--debug-comments", metavar="DATE",
                        help="Print all comment fields for timesheets on DATE (YYYY-MM-DD) and exit")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main execution function.
    """
    args = parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    print("=" * 70)
    print("Deputy Timesheet Sync")
    print("=" * 70)
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    try:
        config = Config.from_env()
    except ConfigError as e:
        logger.error("%s", e)
        EmailNotifier.from_env(os.environ).notify_admin("Deputy Sync Configuration Error", str(e))
        return 1

    email_ok, email_reason = config.validate_email_config()
    if not email_ok:
        print(f"WARNING: {email_reason}. Error emails will be disabled.")

    if args.debug_comments:
        debug_comments(config, args.debug_comments)
        return 0

    if args.date:
        try:
            now = datetime.strptime(args.date, '%Y-%m-%d').replace(tzinfo=ZoneInfo(config.timezone))
        except ValueError:
            print(f"ERROR: --date must be YYYY-MM-DD, got '{args.date}'")
            return 2
    else:
        now = datetime.now(ZoneInfo(config.timezone))

    try:
        if args.biweekly_check:
            result = run_biweekly_check(now, config, dry_run=args.dry_run)
        else:
            result = run_sync(now, config, dry_run=args.dry_run)
    except DeputySyncError as e:
        print("\n" + "=" * 70)
        print("ERROR!")
        print("=" * 70)
        print(f"Sync failed: {e}")
        print("\nTroubleshooting tips:")
        print("- Check DEPUTY_INSTALL, DEPUTY_GEO and DEPUTY_ACCESS_TOKEN")
        print("- Verify SPREADSHEET_ID and SHEET_NAME point at an existing tab")
        print("- Check that the service account can edit the spreadsheet")
        return 1

    print("\n" + "=" * 70)
    print("SYNC COMPLETE!")
    print("=" * 70)
    if result is None:
        print("Not a scheduled run date, nothing synced.")
    else:
        print(f"Pay period: {result.pay_period.start_date} to {result.pay_period.end_date}")
        print(f"Approved timesheets fetched: {result.fetched}")
        print(f"New rows appended: {result.appended}{' (dry run)' if result.dry_run else ''}")
    print(f"Finished at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
