"""
Identifier schema - namespaced names for project nodes.

Grammar of the textual form:

    [[namespace/]project/]name[:output]

Missing project and namespace are filled in from the resolving Context, so
two identifiers compare equal in a scope iff all fields match after
defaulting (see Identifier.equals_in).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional


DEFAULT_OUTPUT = "main"


class Category(str, Enum):
    """Category of a node in a project."""
    MAPPING = "mapping"
    RELATION = "relation"
    TARGET = "target"
    CHECK = "check"
    JOB = "job"

    @classmethod
    def from_string(cls, value: str) -> "Category":
        """
        Parse category from string.

        Raises:
            ValueError: If the category is unknown
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid = [c.value for c in cls]
            raise ValueError(f"Unknown category: {value}. Valid: {valid}")


@dataclass(frozen=True)
class Identifier:
    """
    Immutable, hashable name of a node.

    Attributes:
        name: Local name within the project
        project: Owning project (None = the resolving context's project)
        namespace: Owning namespace (None = the resolving context's namespace)
        output: Output selector for mappings with several outputs
    """
    name: str
    project: Optional[str] = None
    namespace: Optional[str] = None
    output: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Identifier name must not be empty")
        for part in (self.name, self.project, self.namespace, self.output):
            if part is not None and ("/" in part or ":" in part):
                raise ValueError(f"Identifier part must not contain '/' or ':': {part!r}")

    @classmethod
    def parse(cls, text: "str | Identifier") -> "Identifier":
        """
        Parse an identifier from its textual form.

        Args:
            text: "name", "project/name" or "namespace/project/name",
                  each optionally suffixed with ":output"

        Raises:
            ValueError: If the text is empty or has too many segments
        """
        if isinstance(text, Identifier):
            return text
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"Invalid identifier: {text!r}")

        text = text.strip()
        output = None
        if ":" in text:
            text, output = text.rsplit(":", 1)
            if not output:
                raise ValueError(f"Empty output selector in identifier: {text!r}:")

        parts = text.split("/")
        if any(not p for p in parts):
            raise ValueError(f"Empty segment in identifier: {text!r}")
        if len(parts) == 1:
            return cls(name=parts[0], output=output)
        if len(parts) == 2:
            return cls(name=parts[1], project=parts[0], output=output)
        if len(parts) == 3:
            return cls(name=parts[2], project=parts[1], namespace=parts[0], output=output)
        raise ValueError(f"Too many segments in identifier: {text!r}")

    def __str__(self) -> str:
        text = self.name
        if self.project is not None:
            text = f"{self.project}/{text}"
            if self.namespace is not None:
                text = f"{self.namespace}/{text}"
        if self.output is not None:
            text = f"{text}:{self.output}"
        return text

    @property
    def output_or_default(self) -> str:
        """Selected output, or "main" when none is given."""
        return self.output or DEFAULT_OUTPUT

    def with_defaults(self, project: Optional[str], namespace: Optional[str] = None) -> "Identifier":
        """Fill in missing project and namespace."""
        return replace(
            self,
            project=self.project if self.project is not None else project,
            namespace=self.namespace if self.namespace is not None else namespace,
        )

    def with_output(self, output: Optional[str]) -> "Identifier":
        """Return a copy selecting another output."""
        return replace(self, output=output)

    def without_output(self) -> "Identifier":
        """Return a copy without output selector."""
        if self.output is None:
            return self
        return replace(self, output=None)

    def equals_in(self, other: "Identifier", project: Optional[str], namespace: Optional[str] = None) -> bool:
        """Compare two identifiers after defaulting both in the given scope."""
        return self.with_defaults(project, namespace) == other.with_defaults(project, namespace)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {"name": self.name}
        if self.project is not None:
            result["project"] = self.project
        if self.namespace is not None:
            result["namespace"] = self.namespace
        if self.output is not None:
            result["output"] = self.output
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identifier":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            project=data.get("project"),
            namespace=data.get("namespace"),
            output=data.get("output"),
        )
