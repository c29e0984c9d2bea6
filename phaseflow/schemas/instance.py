"""
Instance schemas - execution identities of targets and jobs.

TargetInstance is the key of the instance registry and of the at-most-once
guarantee: a target instance runs at most once per phase within one job run,
and two targets sharing an instance never execute concurrently.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


def _normalize(values: Optional[dict[str, Any]]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in (values or {}).items()))


@dataclass(frozen=True)
class TargetInstance:
    """
    Identity of a target execution.

    Attributes:
        namespace: Namespace of the owning project
        project: Owning project
        target: Target name
        partition: Discriminating attributes (e.g. partition values)
    """
    namespace: Optional[str]
    project: Optional[str]
    target: str
    partition: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def create(cls, namespace: Optional[str], project: Optional[str], target: str,
               partition: Optional[dict[str, Any]] = None) -> "TargetInstance":
        return cls(namespace, project, target, _normalize(partition))

    @property
    def key(self) -> str:
        """Stable string key, usable as a file name."""
        parts = [self.namespace or "_", self.project or "_", self.target]
        key = "/".join(parts)
        if self.partition:
            key += "[" + ",".join(f"{k}={v}" for k, v in self.partition) + "]"
        return key

    def __str__(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"target": self.target}
        if self.namespace is not None:
            result["namespace"] = self.namespace
        if self.project is not None:
            result["project"] = self.project
        if self.partition:
            result["partition"] = dict(self.partition)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetInstance":
        return cls.create(
            data.get("namespace"),
            data.get("project"),
            data["target"],
            data.get("partition"),
        )


@dataclass(frozen=True)
class JobInstance:
    """
    Identity of a job execution: the job plus its resolved arguments.

    Attributes:
        namespace: Namespace of the owning project
        project: Owning project
        job: Job name
        args: Resolved argument values (string-rendered, sorted)
    """
    namespace: Optional[str]
    project: Optional[str]
    job: str
    args: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def create(cls, namespace: Optional[str], project: Optional[str], job: str,
               args: Optional[dict[str, Any]] = None) -> "JobInstance":
        return cls(namespace, project, job, _normalize(args))

    @property
    def key(self) -> str:
        key = "/".join([self.namespace or "_", self.project or "_", self.job])
        if self.args:
            key += "(" + ",".join(f"{k}={v}" for k, v in self.args) + ")"
        return key

    def __str__(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"job": self.job}
        if self.namespace is not None:
            result["namespace"] = self.namespace
        if self.project is not None:
            result["project"] = self.project
        if self.args:
            result["args"] = dict(self.args)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobInstance":
        return cls.create(
            data.get("namespace"),
            data.get("project"),
            data["job"],
            data.get("args"),
        )
