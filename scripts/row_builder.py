"""
Turn typed Deputy timesheets into fixed-width sheet rows.
"""
import logging

from timesheet_models import LeaveRecord, RegularShift
from tools import format_api_date, format_api_time, format_duration

logger = logging.getLogger(__name__)

SHEET_HEADERS = [
    "TimeSheet ID",
    "Employee Id",
    "Employee Name",
    "Date",
    "Start",
    "End",
    "Mealbreak",
    "Total Hours",
    "Total Cost",
    "Employee Comment",
    "Area Name",
    "Location Name",
    "Leave",
    "Manager's Comment",
]

MEAL_BREAK_TYPE = "B"
MEAL_BREAK_NAME = "Meal Break"
LEAVE_RULE_MISSING = "Leave (Rule Name Missing)"
NO_MEALBREAK = "0:00:00"


def calculate_mealbreak_seconds(slots):
    """Total seconds of all meal-break slots. Other slot types are ignored."""
    total = 0
    for slot in slots or []:
        if slot.type_code != MEAL_BREAK_TYPE or slot.type_name != MEAL_BREAK_NAME:
            continue
        if slot.unix_start is None or slot.unix_end is None:
            continue
        total += slot.unix_end - slot.unix_start
    return total


def resolve_leave_type(record, leave_rules):
    """
    Name of the leave rule for a leave record.

    A known rule id wins, then the name Deputy embedded in LeaveRuleObject,
    then the cache placeholder for an unknown id.
    """
    rule_id = record.leave_rule_id
    if rule_id and rule_id in leave_rules:
        return leave_rules.lookup(rule_id)
    if record.leave_rule_name:
        return record.leave_rule_name
    if rule_id:
        return leave_rules.lookup(rule_id)
    return LEAVE_RULE_MISSING


def resolve_leave_times(record):
    """
    (start, end, hours) for a leave record.

    Pay line for this timesheet first, then the leave's own start/end,
    then TotalHours of the leave, then TotalTime of the timesheet.
    """
    start_time, end_time, hours = '', '', 0.0
    leave = record.leave

    if leave is not None:
        pay_line = next((line for line in leave.pay_lines if line.timesheet_id == record.id), None)
        if pay_line is not None:
            start_time = format_api_time(pay_line.start_time)
            end_time = format_api_time(pay_line.end_time)
            hours = pay_line.hours or 0.0

        if not start_time:
            start_time = format_api_time(leave.start_time)
        if not end_time:
            end_time = format_api_time(leave.end_time)
        if not hours:
            hours = leave.total_hours or 0.0

    if not hours:
        hours = record.total_hours or 0.0

    return start_time, end_time, hours


def _employee_fields(record):
    employee = record.employee
    if employee is None:
        return '', ''
    employee_id = str(employee.id) if employee.id is not None else ''
    return employee_id, employee.display_name or ''


def build_leave_row(record, leave_rules):
    employee_id, employee_name = _employee_fields(record)
    start_time, end_time, hours = resolve_leave_times(record)
    leave_comment = (record.leave.comment if record.leave else '') or record.employee_comment or ''

    return [
        str(record.id),
        employee_id,
        employee_name,
        format_api_date(record.date),
        start_time,
        end_time,
        NO_MEALBREAK,
        hours,
        record.cost or 0,
        leave_comment,
        '',
        record.company_name or '',
        resolve_leave_type(record, leave_rules),
        record.supervisor_comment or '',
    ]


def build_shift_row(record):
    employee_id, employee_name = _employee_fields(record)

    return [
        str(record.id),
        employee_id,
        employee_name,
        format_api_date(record.date),
        format_api_time(record.start_time),
        format_api_time(record.end_time),
        format_duration(calculate_mealbreak_seconds(record.slots)),
        record.total_hours or 0,
        record.cost or 0,
        record.employee_comment or '',
        record.unit_name or '',
        record.company_name or '',
        '',
        record.supervisor_comment or '',
    ]


def build_row(record, leave_rules):
    """One sheet row (len(SHEET_HEADERS) values) for a typed timesheet"""
    if isinstance(record, LeaveRecord):
        logger.debug("Processing Leave Timesheet ID: %s", record.id)
        return build_leave_row(record, leave_rules)
    if isinstance(record, RegularShift):
        logger.debug("Processing Regular Timesheet ID: %s", record.id)
        return build_shift_row(record)
    raise TypeError(f"Unsupported timesheet type: {type(record).__name__}")
