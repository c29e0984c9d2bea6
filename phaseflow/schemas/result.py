"""
Result schemas - the tree of outcomes produced by a run.

    LifecycleResult          one per Runner.execute call
      JobResult              one per requested phase
        TargetResult         one per scheduled target, in topological order
          CheckResult        one per check run by a check target

All results are immutable and serialize to JSON-compatible dicts without
loss: status, timestamps (ISO 8601 with offset) and child order survive a
round trip exactly.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Iterable, Optional

from phaseflow.schemas.phase import Phase


class Status(str, Enum):
    """Terminal status of an execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"

    @property
    def is_success(self) -> bool:
        """SUCCESS and SKIPPED both count as success."""
        return self in (Status.SUCCESS, Status.SKIPPED)

    @classmethod
    def aggregate(cls, statuses: Iterable["Status"]) -> "Status":
        """
        Combine child statuses into a parent status.

        Precedence: FAILED > ABORTED > SUCCESS > SKIPPED. An empty input
        yields SUCCESS.
        """
        statuses = list(statuses)
        if not statuses:
            return cls.SUCCESS
        for candidate in (cls.FAILED, cls.ABORTED, cls.SUCCESS):
            if candidate in statuses:
                return candidate
        return cls.SKIPPED


@dataclass(frozen=True)
class ErrorInfo:
    """
    Captured error detail.

    Attributes:
        type: Exception class name
        message: Exception message
        cause: Class name and message of the underlying cause, if any
    """
    type: str
    message: str
    cause: Optional[str] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        inner = getattr(error, "cause", None) or error.__cause__
        cause = f"{type(inner).__name__}: {inner}" if inner is not None and inner is not error else None
        return cls(type=type(error).__name__, message=str(error), cause=cause)

    def to_dict(self) -> dict[str, Any]:
        result = {"type": self.type, "message": self.message}
        if self.cause is not None:
            result["cause"] = self.cause
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorInfo":
        return cls(type=data["type"], message=data["message"], cause=data.get("cause"))


@dataclass(frozen=True)
class Result:
    """
    Base result.

    Attributes:
        name: Name of the executed entity (job, target or check)
        status: Terminal status
        start_time: When execution started (abort time for never-started entries)
        end_time: When execution finished
        phase: Phase the result belongs to (None for lifecycle results)
        children: Child results, in execution order
        error: Error detail if status is FAILED or ABORTED
    """
    category: ClassVar[str] = "result"

    name: str
    status: Status
    start_time: datetime
    end_time: datetime
    phase: Optional[Phase] = None
    children: tuple["Result", ...] = field(default_factory=tuple)
    error: Optional[ErrorInfo] = None

    def __post_init__(self):
        if self.end_time < self.start_time:
            # wall clock stepped back
            object.__setattr__(self, "end_time", self.start_time)
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))

    @property
    def success(self) -> bool:
        return self.status.is_success

    @property
    def duration_ms(self) -> int:
        """Execution duration in milliseconds."""
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() * 1000)

    def find(self, name: str) -> Optional["Result"]:
        """Depth-first search for a descendant (or self) by name."""
        if self.name == name:
            return self
        for child in self.children:
            found = child.find(name)
            if found is not None:
                return found
        return None

    def failed_children(self) -> tuple["Result", ...]:
        return tuple(c for c in self.children if c.status == Status.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "category": self.category,
            "name": self.name,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }
        if self.phase is not None:
            result["phase"] = self.phase.value
        if self.children:
            result["children"] = [c.to_dict() for c in self.children]
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Result":
        """
        Deserialize from dictionary.

        Called on Result, dispatches on the "category" key. Called on a
        subclass, the category must match that subclass.
        """
        category = data.get("category", cls.category)
        result_cls = RESULT_TYPES.get(category)
        if result_cls is None:
            raise ValueError(f"Unknown result category: {category}")
        if cls is not Result and result_cls is not cls:
            raise ValueError(f"Expected {cls.category} result, got {category}")
        return result_cls(
            name=data["name"],
            status=Status(data["status"]),
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            phase=Phase(data["phase"]) if data.get("phase") else None,
            children=tuple(Result.from_dict(c) for c in data.get("children", [])),
            error=ErrorInfo.from_dict(data["error"]) if data.get("error") else None,
        )

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "Result":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class LifecycleResult(Result):
    """Result of a whole job run over a phase sequence; children are JobResults."""
    category: ClassVar[str] = "lifecycle"

    def phase_result(self, phase: Phase) -> Optional["JobResult"]:
        for child in self.children:
            if child.phase == phase:
                return child
        return None


@dataclass(frozen=True)
class JobResult(Result):
    """Result of one phase of a job; children are TargetResults."""
    category: ClassVar[str] = "job"


@dataclass(frozen=True)
class TargetResult(Result):
    """Result of one target in one phase; children are CheckResults."""
    category: ClassVar[str] = "target"


@dataclass(frozen=True)
class CheckResult(Result):
    """Result of a single check (assertion)."""
    category: ClassVar[str] = "check"


RESULT_TYPES: dict[str, type[Result]] = {
    "lifecycle": LifecycleResult,
    "job": JobResult,
    "target": TargetResult,
    "check": CheckResult,
}
