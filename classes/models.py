# classes/models.py
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger("planner_schedule")


class CamelModel(BaseModel):
    # wire format is camelCase, attributes stay snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Task(CamelModel):
    title: str = ""
    description: str = ""
    team: str = ""
    days: int = 0
    parallel_group: Optional[str] = None
    order_index: int = 0

    @field_validator("days", mode="before")
    @classmethod
    def _lenient_days(cls, value: Any) -> int:
        # half-filled forms send "" or "abc" while the user is typing
        if value is None or isinstance(value, bool):
            return 0
        if isinstance(value, int):
            return value
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            logger.warning("Non-numeric task days %r treated as 0", value)
            return 0

    @field_validator("order_index", mode="before")
    @classmethod
    def _lenient_order(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @property
    def group_label(self) -> Optional[str]:
        """The parallel group label, or None when the task is sequential."""
        if self.parallel_group and self.parallel_group.strip():
            return self.parallel_group
        return None


class CalculationResult(CamelModel):
    total_days: int
    story_points: int
    risk_days: int
    total_with_risks: int
    end_date: date
    team_distribution: Dict[str, int] = Field(default_factory=dict)


class RiskTableRow(CamelModel):
    total_days: str
    risk_days: int


class CalculateRequest(CamelModel):
    tasks: List[Task] = Field(default_factory=list)
    start_date: str


class SummaryRequest(CalculateRequest):
    portfolio_name: str = ""


class SummaryResponse(CamelModel):
    summary: str
    calculations: CalculationResult


class ValidateTasksRequest(CamelModel):
    tasks: List[Task] = Field(default_factory=list)


class TaskValidationIssue(CamelModel):
    index: int
    field: str
    message: str


class ChannelMessage(BaseModel):
    """Inbound channel frame. Only `type` is mandatory; the rest depends on it."""

    model_config = ConfigDict(extra="allow")

    type: str
    portfolioId: Optional[str] = None
    taskId: Optional[str] = None
    fieldId: Optional[str] = None
    userId: Optional[str] = None
    username: Optional[str] = None
    value: Any = None
    data: Any = None

    @field_validator("portfolioId", "taskId", "fieldId", "userId", "username", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)
