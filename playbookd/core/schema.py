from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Status(str, Enum):
    """Lifecycle state of a playbook. ``archived`` is terminal."""

    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Read a naive timestamp as UTC so stored times always compare."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Step(BaseModel):
    order: int
    action: str
    tool: str | None = None
    tool_args: dict[str, Any] | None = None
    expected: str | None = None
    fallback: str | None = None
    notes: str | None = None
    optional: bool = False


class StepResult(BaseModel):
    step_order: int
    outcome: Outcome
    output: str | None = None
    error: str | None = None
    duration: str | None = None


class Reflection(BaseModel):
    what_worked: list[str] = Field(default_factory=list)
    what_failed: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    should_update: bool = False


class Lesson(BaseModel):
    id: str
    content: str
    learned_from: str = ""
    learned_at: datetime = Field(default_factory=utcnow)
    applies: str = "general"
    confidence: float = 0.5

    @field_validator("learned_at")
    @classmethod
    def _learned_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Playbook(BaseModel):
    """A learned procedure an agent can follow.

    ``success_rate`` and ``confidence`` are derived from the outcome counters
    and must only be written through ``scoring.update_stats``.
    """

    id: str = ""
    name: str
    slug: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    steps: list[Step] = Field(default_factory=list)
    version: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    confidence: float = 0.0
    status: Status = Status.DRAFT
    lessons: list[Lesson] = Field(default_factory=list)
    embedding: list[float] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_used_at: datetime | None = None
    created_by: str = ""

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        # set semantics, first occurrence wins
        return list(dict.fromkeys(tags))

    @field_validator("created_at", "updated_at", "last_used_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def total_executions(self) -> int:
        return self.success_count + self.failure_count


class ExecutionRecord(BaseModel):
    id: str = ""
    playbook_id: str
    playbook_ver: int = 0
    agent_id: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime = Field(default_factory=utcnow)
    outcome: Outcome
    step_results: list[StepResult] = Field(default_factory=list)
    task_context: str = ""
    reflection: Reflection | None = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime) -> datetime:
        return as_utc(value)
