# classes/task_validation.py
from typing import Iterable, List

from classes.models import Task, TaskValidationIssue
from classes.settings import MAX_DAYS_PER_TASK


def validate_tasks(tasks: Iterable[Task], max_days: int = MAX_DAYS_PER_TASK) -> List[TaskValidationIssue]:
    """
    Save-time checks for a task list. The calculator itself stays lenient;
    these are the rules a task must pass before it is persisted.
    """
    issues: List[TaskValidationIssue] = []
    for index, task in enumerate(tasks):
        if not task.title.strip():
            issues.append(TaskValidationIssue(index=index, field="title", message="Title is required"))
        elif len(task.title) > 100:
            issues.append(TaskValidationIssue(index=index, field="title", message="Title must be at most 100 characters"))
        if not task.team.strip():
            issues.append(TaskValidationIssue(index=index, field="team", message="Team is required"))
        if task.days < 1:
            issues.append(TaskValidationIssue(index=index, field="days", message="Days must be at least 1"))
        elif task.days > max_days:
            issues.append(
                TaskValidationIssue(index=index, field="days", message=f"Days must be at most {max_days}")
            )
        if task.parallel_group and len(task.parallel_group) > 50:
            issues.append(
                TaskValidationIssue(index=index, field="parallelGroup", message="Parallel group must be at most 50 characters")
            )
    return issues
