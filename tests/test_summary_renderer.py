"""Tests for the Jira-markup portfolio summary."""

from datetime import date

from classes.models import CalculationResult
from classes.scheduler import compute_schedule
from classes.summary_renderer import render_summary, team_percentage


def _render(tasks, calendar, name="Checkout revamp", start="2025-10-17"):
    result = compute_schedule(tasks, start, calendar)
    return render_summary(name, tasks, result, start), result


def test_header_and_totals(make_task, calendar):
    text, result = _render([make_task(days=3)], calendar)

    assert text.startswith("h1. Checkout revamp\n")
    assert "*Project timeline:* October 17, 2025 - October 23, 2025" in text
    assert "*Development time:* 3 days (2 story points)" in text
    assert "*Including risks:* 5 days (+2 days of risk)" in text
    assert "| Start date | October 17, 2025 |" in text
    assert "| End date | October 23, 2025 |" in text
    assert "| Working days | 3 |" in text
    assert "| Risk days | +2 |" in text
    assert "| Total duration | 5 days |" in text
    assert "| Story points | 2 |" in text


def test_sequential_tasks_grouped_by_team(make_task, calendar):
    tasks = [
        make_task(title="Schema", team="backend", days=2, description="Add tables"),
        make_task(title="Form", team="frontend", days=1, description="New form"),
        make_task(title="Endpoint", team="backend", days=1, description="REST"),
    ]
    text, _ = _render(tasks, calendar)

    assert "h3. Sequential tasks" in text
    assert "h4. Team Backend (3 days)" in text
    assert "h4. Team Frontend (1 day)" in text
    assert "* *Schema* - Add tables\n  _Estimate: 2 days_" in text
    assert "* *Form* - New form\n  _Estimate: 1 day_" in text
    assert text.index("Schema") < text.index("Endpoint") < text.index("Team Frontend")
    assert "h3. Parallel task groups" not in text


def test_parallel_group_shows_effective_and_total(make_task, calendar):
    tasks = [
        make_task(title="API", team="backend", days=3, group="Sprint 1"),
        make_task(title="UI", team="frontend", days=5, group="Sprint 1"),
        make_task(title="Tests", team="qa", days=2, group="Sprint 1"),
    ]
    text, _ = _render(tasks, calendar)

    assert "h3. Sequential tasks" not in text
    assert 'h4. Group "Sprint 1" (5 days effective, 10 days total workload)' in text
    assert "* *UI* (frontend) - \n  _Estimate: 5 days_" in text


def test_team_allocation_percentages(make_task, calendar):
    tasks = [
        make_task(team="backend", days=2),
        make_task(team="frontend", days=1),
    ]
    text, _ = _render(tasks, calendar)

    assert "|| Team || Days || Share ||" in text
    assert "| Backend | 2 | 67% |" in text
    assert "| Frontend | 1 | 33% |" in text


def test_zero_total_days_renders_zero_percent(calendar):
    result = CalculationResult(
        total_days=0,
        story_points=0,
        risk_days=0,
        total_with_risks=0,
        end_date=date(2025, 10, 17),
        team_distribution={"backend": 0},
    )
    text = render_summary("Empty", [], result, "2025-10-17")

    assert "| Backend | 0 | 0% |" in text
    assert "| Working days | 0 |" in text


def test_empty_portfolio(calendar):
    text, _ = _render([], calendar, name="Nothing yet")
    assert "h1. Nothing yet" in text
    assert "h2. Team allocation" in text


def test_team_percentage_rounding():
    assert team_percentage(1, 8) == 13
    assert team_percentage(1, 3) == 33
    assert team_percentage(5, 0) == 0
