# classes/scheduler.py
import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from classes.errors import InvalidInput
from classes.holiday_calendar import HolidayCalendar
from classes.models import CalculationResult, RiskTableRow, Task
from classes.settings import MAX_SCHEDULE_DAYS

logger = logging.getLogger("planner_schedule")

# (lowest totalDays, highest totalDays or None for open-ended, risk days)
RISK_BRACKETS: List[Tuple[int, Optional[int], int]] = [
    (2, 2, 1),
    (3, 7, 2),
    (8, 12, 3),
    (13, 17, 4),
    (18, 22, 5),
    (23, 27, 6),
    (28, 30, 7),
    (31, None, 7),
]


def risk_table() -> List[RiskTableRow]:
    rows = []
    for low, high, risk in RISK_BRACKETS:
        if high is None:
            label = f"{low}+"
        elif low == high:
            label = str(low)
        else:
            label = f"{low}-{high}"
        rows.append(RiskTableRow(total_days=label, risk_days=risk))
    return rows


def calculate_risk_days(total_days: int) -> int:
    """
    Contingency buffer for a given critical-path length.

    A total of exactly 2 days has its own bracket; 0 and 1 day carry no risk.
    """
    for low, high, risk in RISK_BRACKETS:
        if total_days >= low and (high is None or total_days <= high):
            return risk
    return 0


def calculate_story_points(total_days: int) -> int:
    # half of the total, rounded half up (5 days -> 3 points); exact for any int
    return (max(total_days, 0) + 1) // 2


def effective_days(task: Task) -> int:
    if task.days <= 0:
        if task.days < 0:
            logger.warning("Task %r has negative days (%d); counted as 0", task.title, task.days)
        return 0
    return task.days


def split_tasks(tasks: Iterable[Task]) -> Tuple[List[Task], "OrderedDict[str, List[Task]]"]:
    """Split into sequential tasks and parallel groups keyed by label, keeping input order."""
    sequential: List[Task] = []
    groups: "OrderedDict[str, List[Task]]" = OrderedDict()
    for task in tasks:
        label = task.group_label
        if label is None:
            sequential.append(task)
        else:
            groups.setdefault(label, []).append(task)
    return sequential, groups


def calculate_total_days(tasks: Iterable[Task]) -> int:
    sequential, groups = split_tasks(tasks)
    total = sum(effective_days(t) for t in sequential)
    for members in groups.values():
        total += max(effective_days(t) for t in members)
    return total


def calculate_team_distribution(tasks: Iterable[Task]) -> Dict[str, int]:
    distribution: Dict[str, int] = {}
    for task in tasks:
        distribution[task.team] = distribution.get(task.team, 0) + effective_days(task)
    return distribution


def parse_start_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise InvalidInput("startDate is required")
    try:
        # accept full ISO timestamps, keep the calendar date only
        return date.fromisoformat(text[:10])
    except ValueError:
        raise InvalidInput(f"Invalid startDate: {value!r}")


def calculate_end_date(start: date, total_with_risks: int, calendar: HolidayCalendar,
                       limit: int = MAX_SCHEDULE_DAYS) -> date:
    """
    Walk forward from `start` until `total_with_risks` working days are counted.

    The start date itself counts as the first working day when it is one.
    Schedules longer than `limit` working days, or running past the last
    representable date, raise InvalidInput.
    """
    if total_with_risks > limit:
        raise InvalidInput(
            f"Schedule of {total_with_risks} working days exceeds the limit of {limit}"
        )
    current = start
    counted = 1 if calendar.is_working_day(current) else 0
    try:
        while counted < total_with_risks:
            current += timedelta(days=1)
            if calendar.is_working_day(current):
                counted += 1
    except OverflowError:
        raise InvalidInput(f"Schedule starting {start.isoformat()} runs past the last supported date")
    return current


def compute_schedule(tasks: Iterable[Task], start_date, calendar: HolidayCalendar) -> CalculationResult:
    task_list = list(tasks)
    start = parse_start_date(start_date)

    total_days = calculate_total_days(task_list)
    risk_days = calculate_risk_days(total_days)
    total_with_risks = total_days + risk_days

    return CalculationResult(
        total_days=total_days,
        story_points=calculate_story_points(total_days),
        risk_days=risk_days,
        total_with_risks=total_with_risks,
        end_date=calculate_end_date(start, total_with_risks, calendar),
        team_distribution=calculate_team_distribution(task_list),
    )
