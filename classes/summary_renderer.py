# classes/summary_renderer.py
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List

from classes.models import CalculationResult, Task
from classes.scheduler import effective_days, parse_start_date, split_tasks


def _format_date(value) -> str:
    day = parse_start_date(value)
    return f"{day.strftime('%B')} {day.day}, {day.year}"


def _days_label(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


def _team_title(team: str) -> str:
    return team[:1].upper() + team[1:] if team else "Unassigned"


def team_percentage(days: int, total_days: int) -> int:
    if total_days <= 0:
        return 0
    return int((Decimal(days) * 100 / Decimal(total_days)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def render_summary(
    portfolio_name: str,
    tasks: Iterable[Task],
    calculations: CalculationResult,
    start_date,
) -> str:
    """
    Render a portfolio as Jira wiki markup ready to paste into an issue.

    Sections: header with timeline and totals, task breakdown (sequential
    tasks by team, then each parallel group), totals table, team allocation.
    """
    task_list = list(tasks)
    sequential, groups = split_tasks(task_list)
    start_text = _format_date(start_date)
    end_text = _format_date(calculations.end_date)

    by_team: Dict[str, List[Task]] = {}
    for task in sequential:
        by_team.setdefault(task.team, []).append(task)

    lines: List[str] = [f"h1. {portfolio_name}", ""]
    lines.append(f"*Project timeline:* {start_text} - {end_text}")
    lines.append(
        f"*Development time:* {_days_label(calculations.total_days)} "
        f"({calculations.story_points} story points)"
    )
    lines.append(
        f"*Including risks:* {_days_label(calculations.total_with_risks)} "
        f"(+{_days_label(calculations.risk_days)} of risk)"
    )
    lines.append("")
    lines.append("h2. Task breakdown")
    lines.append("")

    if by_team:
        lines.append("h3. Sequential tasks")
        lines.append("")
        for team, team_tasks in by_team.items():
            team_days = sum(effective_days(t) for t in team_tasks)
            lines.append(f"h4. Team {_team_title(team)} ({_days_label(team_days)})")
            lines.append("")
            for task in team_tasks:
                lines.append(f"* *{task.title}* - {task.description}")
                lines.append(f"  _Estimate: {_days_label(effective_days(task))}_")
            lines.append("")

    if groups:
        lines.append("h3. Parallel task groups")
        lines.append("")
        for label, members in groups.items():
            effective = max(effective_days(t) for t in members)
            workload = sum(effective_days(t) for t in members)
            lines.append(
                f'h4. Group "{label}" ({_days_label(effective)} effective, '
                f"{_days_label(workload)} total workload)"
            )
            lines.append(
                "_These tasks run in parallel; the timeline uses the longest of them_"
            )
            lines.append("")
            for task in members:
                lines.append(f"* *{task.title}* ({task.team}) - {task.description}")
                lines.append(f"  _Estimate: {_days_label(effective_days(task))}_")
            lines.append("")

    lines.append("h2. Project summary")
    lines.append("")
    lines.append("|| Metric || Value ||")
    lines.append(f"| Start date | {start_text} |")
    lines.append(f"| End date | {end_text} |")
    lines.append(f"| Working days | {calculations.total_days} |")
    lines.append(f"| Risk days | +{calculations.risk_days} |")
    lines.append(f"| Total duration | {_days_label(calculations.total_with_risks)} |")
    lines.append(f"| Story points | {calculations.story_points} |")
    lines.append("")

    lines.append("h2. Team allocation")
    lines.append("")
    lines.append("|| Team || Days || Share ||")
    for team, days in calculations.team_distribution.items():
        percent = team_percentage(days, calculations.total_days)
        lines.append(f"| {_team_title(team)} | {days} | {percent}% |")

    return "\n".join(lines) + "\n"
