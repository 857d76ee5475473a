"""
Deputy resource QUERY client.

Handles paging over ``/api/v1/resource/<Resource>/QUERY``, the LeaveRule lookup
table and the two approval-filter timesheet fetches that feed each sync run.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from errors import RemoteError, TransportError

logger = logging.getLogger(__name__)

MAX_RECORDS_PER_CALL = 500

TIMESHEET_RESOURCE = "Timesheet"
LEAVE_RULE_RESOURCE = "LeaveRule"
TIMESHEET_JOIN = ["EmployeeObject", "Leave", "LeaveRuleObject"]
TIMESHEET_SORT = {"Date": "asc", "StartTimeLocalized": "asc"}

# TimeApprover value Deputy uses for leave approved by the system
SYSTEM_APPROVER_ID = -2

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def condition(field_name, op, data):
    """One predicate of a QUERY search object"""
    if op not in ("ge", "le", "eq", "gt"):
        raise ValueError(f"Unsupported search type '{op}'")
    return {"field": field_name, "type": op, "data": data}


def build_search(*conditions):
    """Number predicates s1, s2, ... as Deputy expects. They are AND-ed."""
    return {f"s{index}": cond for index, cond in enumerate(conditions, start=1)}


def manual_approval_search(start_date, end_date):
    return build_search(
        condition("Date", "ge", start_date),
        condition("Date", "le", end_date),
        condition("TimeApprover", "gt", 0),
    )


def leave_approval_search(start_date, end_date):
    return build_search(
        condition("Date", "ge", start_date),
        condition("Date", "le", end_date),
        condition("TimeApprover", "eq", SYSTEM_APPROVER_ID),
    )


@dataclass
class FetchResult:
    """Records gathered by one paged fetch. On failure ``records`` is partial."""
    records: List[Dict] = field(default_factory=list)
    error: Optional[Exception] = None
    pages: int = 0

    @property
    def ok(self):
        return self.error is None


class DeputyClient:
    """
    Paged access to Deputy resources.
    Errors are reported to the admin and returned in the FetchResult, never raised.
    """

    def __init__(self, config, session=None, notifier=None, sleep=time.sleep):
        self.config = config
        self.session = session or requests.Session()
        self.notifier = notifier
        self.sleep = sleep

    def _notify(self, subject, body):
        if self.notifier is not None:
            self.notifier.notify_admin(subject, body)

    def _post(self, url, payload):
        """
        POST one QUERY page. Retries 429/5xx/timeouts up to config.max_retries
        times with a linear backoff, then raises RemoteError or TransportError.
        """
        retry_count = 0
        while True:
            try:
                response = self.session.post(
                    url,
                    headers=self.config.headers,
                    json=payload,
                    timeout=self.config.request_timeout
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if retry_count < self.config.max_retries:
                    wait_time = self.config.retry_delay * (retry_count + 1)
                    logger.warning("Connection problem (%s), retrying in %ss (%s/%s)",
                                   e, wait_time, retry_count + 1, self.config.max_retries)
                    self.sleep(wait_time)
                    retry_count += 1
                    continue
                raise TransportError(f"Exception during API call: {e}") from e
            except requests.exceptions.RequestException as e:
                raise TransportError(f"Exception during API call: {e}") from e

            if response.status_code in RETRYABLE_STATUS_CODES and retry_count < self.config.max_retries:
                wait_time = self.config.retry_delay * (retry_count + 1)
                logger.warning("Deputy returned %s, retrying in %ss (%s/%s)",
                               response.status_code, wait_time, retry_count + 1, self.config.max_retries)
                self.sleep(wait_time)
                retry_count += 1
                continue

            if not 200 <= response.status_code < 300:
                raise RemoteError(response.status_code, response.text, payload.get("search"))

            try:
                return response.json()
            except ValueError as e:
                raise TransportError(f"Deputy returned a non-JSON body: {e}") from e

    def fetch_all_pages(self, resource, search, join=None, sort=None,
                        page_size=MAX_RECORDS_PER_CALL, notify_errors=True):
        """
        Fetch every record of ``resource`` matching ``search``.

        Pages advance by ``start`` until a page comes back shorter than
        ``page_size`` or the body is not a list.

        Returns:
            FetchResult with all records, or the partial set plus the error
        """
        url = self.config.resource_query_url(resource)
        result = FetchResult()
        start = 0

        while True:
            payload = {"search": search, "max": page_size, "start": start}
            if join:
                payload["join"] = list(join)
            if sort:
                payload["sort"] = dict(sort)

            logger.info("Fetching %s with filter: %s. Start: %s", resource, json.dumps(search), start)
            try:
                data = self._post(url, payload)
            except RemoteError as e:
                logger.error("Deputy API Error: %s. Filter: %s. Response: %s",
                             e.status_code, json.dumps(search), e.body)
                if notify_errors:
                    self._notify(
                        "Deputy Sync API Error",
                        f"Deputy API Error: {e.status_code}. Resource: {resource}. "
                        f"Filter: {json.dumps(search)}. Response: {e.body}"
                    )
                result.error = e
                return result
            except TransportError as e:
                logger.error("%s", e)
                if notify_errors:
                    self._notify("Deputy Sync Script Error", str(e))
                result.error = e
                return result

            if not isinstance(data, list):
                logger.warning("%s response was not a list, stopping. Body: %s", resource, str(data)[:500])
                return result

            result.records.extend(data)
            result.pages += 1
            logger.info("  Downloaded page %s: %s records", result.pages, len(data))

            if len(data) < page_size:
                return result
            start += len(data)


class LeaveRuleCache:
    """LeaveRule id -> name table, loaded once per run"""

    def __init__(self, client):
        self.client = client
        self.rules: Dict[int, str] = {}

    def load(self):
        logger.info("Fetching all leave rules from Deputy...")
        result = self.client.fetch_all_pages(
            LEAVE_RULE_RESOURCE,
            search={},
            sort={"Name": "asc"},
            notify_errors=False
        )
        if not result.ok:
            logger.warning("Could not load leave rules (%s). Leave types will show placeholders.", result.error)
            self.rules = {}
            return self.rules

        self.rules = {
            rule["Id"]: rule["Name"]
            for rule in result.records
            if isinstance(rule, dict) and rule.get("Id") and rule.get("Name")
        }
        logger.info("Finished fetching leave rules. Total rules mapped: %s", len(self.rules))
        return self.rules

    def __contains__(self, rule_id):
        return rule_id in self.rules

    def lookup(self, rule_id):
        if not rule_id:
            return ""
        if rule_id in self.rules:
            return self.rules[rule_id]
        logger.info("LeaveRule Name for ID %s not found in pre-fetched map.", rule_id)
        return f"Unknown Rule ID ({rule_id})"


def fetch_approved_timesheets(client, pay_period):
    """
    Fetch manually approved shifts and system-approved leave for the pay period.

    Returns:
        Raw Deputy timesheets, unique by Id and sorted by Id ascending
    """
    logger.info("Querying Deputy Timesheets for dates: %s to %s", pay_period.start_date, pay_period.end_date)

    fetches = [
        ("manual", manual_approval_search(pay_period.start_date, pay_period.end_date)),
        ("leave", leave_approval_search(pay_period.start_date, pay_period.end_date)),
    ]

    timesheets_by_id = {}
    counts = {}
    for label, search in fetches:
        result = client.fetch_all_pages(
            TIMESHEET_RESOURCE,
            search=search,
            join=TIMESHEET_JOIN,
            sort=TIMESHEET_SORT
        )
        if not result.ok:
            logger.warning("The %s approval fetch failed and contributes no records", label)
            counts[label] = 0
            continue

        counts[label] = len(result.records)
        for timesheet in result.records:
            if not isinstance(timesheet, dict) or timesheet.get("Id") is None:
                logger.warning("Skipping timesheet without Id: %s", str(timesheet)[:200])
                continue
            timesheets_by_id[timesheet["Id"]] = timesheet

    merged = [timesheets_by_id[ts_id] for ts_id in sorted(timesheets_by_id)]
    logger.info("Total unique approved timesheets fetched: %s (%s manual, %s leave)",
                len(merged), counts.get("manual", 0), counts.get("leave", 0))
    return merged
