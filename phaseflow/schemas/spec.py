"""
Definition schemas - already-resolved node and job definitions.

Definitions are produced by an external collaborator (spec parsing and
templating happen before phaseflow sees them). They are plain data: attribute
values may still contain ${var} tokens, which are interpolated lazily by the
Context whenever an attribute is read.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from phaseflow.schemas.identifier import Category
from phaseflow.schemas.phase import ALL_PHASES, Phase, parse_phases


class _Required:
    """Marker for job parameters without default."""

    def __repr__(self) -> str:
        return "REQUIRED"


REQUIRED: Any = _Required()


@dataclass(frozen=True)
class NodeSpec:
    """
    Definition of a mapping, relation, target or check.

    Attributes:
        kind: Variant name within the category (e.g. "filter", "table")
        attributes: Raw attribute values
    """
    kind: str
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeSpec":
        if "kind" not in data:
            raise ValueError(f"Node definition without 'kind': {data}")
        attributes = {k: v for k, v in data.items() if k != "kind"}
        return cls(kind=data["kind"], attributes=attributes)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **self.attributes}


@dataclass(frozen=True)
class JobParameter:
    """A named job parameter; parameters without default are required."""
    name: str
    default: Any = REQUIRED
    description: str = ""

    @property
    def required(self) -> bool:
        return self.default is REQUIRED

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobParameter":
        return cls(
            name=data["name"],
            default=data["default"] if "default" in data else REQUIRED,
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class JobSpec:
    """
    Definition of a job.

    Attributes:
        targets: Target names (or identifiers) in declared order
        jobs: Child job names whose targets are included
        parameters: Declared parameters
        environment: Bindings visible to everything resolved within the job
        fail_fast: Per-job override of ExecutionConfig.fail_fast
        phases: Contiguous phase subsequence(s) the job supports
        description: Free text
    """
    targets: tuple[str, ...] = ()
    jobs: tuple[str, ...] = ()
    parameters: tuple[JobParameter, ...] = ()
    environment: dict[str, Any] = field(default_factory=dict)
    fail_fast: Optional[bool] = None
    phases: tuple[Phase, ...] = ALL_PHASES
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobSpec":
        parameters = []
        for p in data.get("parameters", []):
            if isinstance(p, str):
                parameters.append(JobParameter(name=p))
            else:
                parameters.append(JobParameter.from_dict(p))
        return cls(
            targets=tuple(data.get("targets", [])),
            jobs=tuple(data.get("jobs", [])),
            parameters=tuple(parameters),
            environment=dict(data.get("environment", {})),
            fail_fast=data.get("fail_fast"),
            phases=tuple(parse_phases(data["phases"])) if "phases" in data else ALL_PHASES,
            description=data.get("description", ""),
        )


_SECTIONS = {
    Category.MAPPING: "mappings",
    Category.RELATION: "relations",
    Category.TARGET: "targets",
    Category.CHECK: "checks",
    Category.JOB: "jobs",
}


@dataclass(frozen=True)
class Project:
    """
    A project: named collections of node and job definitions.

    Attributes:
        name: Project name
        namespace: Namespace the project lives in
        environment: Project-wide variable bindings
        mappings, relations, targets, checks: NodeSpecs by name
        jobs: JobSpecs by name
    """
    name: str
    namespace: Optional[str] = None
    environment: dict[str, Any] = field(default_factory=dict)
    mappings: dict[str, NodeSpec] = field(default_factory=dict)
    relations: dict[str, NodeSpec] = field(default_factory=dict)
    targets: dict[str, NodeSpec] = field(default_factory=dict)
    checks: dict[str, NodeSpec] = field(default_factory=dict)
    jobs: dict[str, JobSpec] = field(default_factory=dict)

    def definitions(self, category: Category) -> dict[str, Any]:
        """All definitions of a category."""
        return getattr(self, _SECTIONS[category])

    def definition(self, category: Category, name: str) -> Optional[Any]:
        """A single definition, or None if absent."""
        return self.definitions(category).get(name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """
        Build a project from plain (already parsed) data.

        Example:
            Project.from_dict({
                "name": "sales",
                "relations": {"orders": {"kind": "table", "table": "orders"}},
                "targets": {"orders": {"kind": "relation", "relation": "orders"}},
                "jobs": {"main": {"targets": ["orders"]}},
            })
        """
        def nodes(section: str) -> dict[str, NodeSpec]:
            return {name: NodeSpec.from_dict(spec) for name, spec in data.get(section, {}).items()}

        return cls(
            name=data["name"],
            namespace=data.get("namespace"),
            environment=dict(data.get("environment", {})),
            mappings=nodes("mappings"),
            relations=nodes("relations"),
            targets=nodes("targets"),
            checks=nodes("checks"),
            jobs={name: JobSpec.from_dict(spec) for name, spec in data.get("jobs", {}).items()},
        )
