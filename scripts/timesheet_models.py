"""
Typed views of Deputy Timesheet records.

Deputy returns one loosely-typed Timesheet object whose ``IsLeave`` flag decides
which fields carry data. ``parse_timesheet`` turns it into either a
``RegularShift`` or a ``LeaveRecord`` so row building can branch exhaustively.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union

from tools import to_number


@dataclass
class Employee:
    id: Optional[int] = None
    display_name: str = ''


@dataclass
class Slot:
    type_code: str = ''
    type_name: str = ''
    unix_start: Optional[float] = None
    unix_end: Optional[float] = None


@dataclass
class LeavePayLine:
    timesheet_id: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    hours: float = 0.0


@dataclass
class LeaveDetail:
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    total_hours: float = 0.0
    comment: str = ''
    pay_lines: List[LeavePayLine] = field(default_factory=list)


@dataclass
class TimesheetRecord:
    id: int
    date: Optional[str] = None
    employee: Optional[Employee] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    total_hours: float = 0.0
    cost: float = 0.0
    employee_comment: str = ''
    supervisor_comment: str = ''
    unit_name: str = ''
    company_name: str = ''


@dataclass
class RegularShift(TimesheetRecord):
    slots: List[Slot] = field(default_factory=list)


@dataclass
class LeaveRecord(TimesheetRecord):
    leave_rule_id: Optional[int] = None
    leave_rule_name: Optional[str] = None
    leave: Optional[LeaveDetail] = None


Timesheet = Union[RegularShift, LeaveRecord]


def _unix(value):
    # Slot bounds only count when Deputy sent real numbers
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _parse_employee(raw):
    if not isinstance(raw, dict):
        return None
    return Employee(id=raw.get('Id'), display_name=raw.get('DisplayName') or '')


def _parse_slots(raw_slots):
    if not isinstance(raw_slots, list):
        return []
    return [
        Slot(
            type_code=slot.get('strType') or '',
            type_name=slot.get('strTypeName') or '',
            unix_start=_unix(slot.get('intUnixStart')),
            unix_end=_unix(slot.get('intUnixEnd')),
        )
        for slot in raw_slots
        if isinstance(slot, dict)
    ]


def _parse_leave(raw_leave):
    if not isinstance(raw_leave, dict):
        return None

    pay_lines = []
    for line in raw_leave.get('LeavePayLineArray') or []:
        if not isinstance(line, dict):
            continue
        pay_lines.append(LeavePayLine(
            timesheet_id=line.get('TimesheetId'),
            start_time=line.get('StartTimeLocalized'),
            end_time=line.get('EndTimeLocalized'),
            hours=to_number(line.get('Hours'), 0.0),
        ))

    return LeaveDetail(
        start_time=raw_leave.get('StartTimeLocalized'),
        end_time=raw_leave.get('EndTimeLocalized'),
        total_hours=to_number(raw_leave.get('TotalHours'), 0.0),
        comment=raw_leave.get('Comment') or '',
        pay_lines=pay_lines,
    )


def parse_timesheet(raw) -> Timesheet:
    """Build the typed record for one Deputy Timesheet object"""
    meta = raw.get('_DPMetaData') or {}
    unit_info = meta.get('OperationalUnitInfo') or {}

    common = dict(
        id=raw['Id'],
        date=raw.get('Date'),
        employee=_parse_employee(raw.get('EmployeeObject')),
        start_time=raw.get('StartTimeLocalized'),
        end_time=raw.get('EndTimeLocalized'),
        total_hours=to_number(raw.get('TotalTime'), 0.0),
        cost=to_number(raw.get('Cost'), 0.0),
        employee_comment=raw.get('EmployeeComment') or '',
        supervisor_comment=raw.get('SupervisorComment') or '',
        unit_name=unit_info.get('OperationalUnitName') or '',
        company_name=unit_info.get('CompanyName') or '',
    )

    if raw.get('IsLeave'):
        rule_object = raw.get('LeaveRuleObject') or {}
        return LeaveRecord(
            leave_rule_id=raw.get('LeaveRule') or None,
            leave_rule_name=rule_object.get('Name') or None,
            leave=_parse_leave(raw.get('Leave')),
            **common
        )

    return RegularShift(slots=_parse_slots(raw.get('Slots')), **common)
