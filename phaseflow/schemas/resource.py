"""
Resource identifiers - abstract names of physical resources.

Targets declare which resources they require and provide per phase. The
graph builder connects a provider target to a consumer target when a
provided resource contains a required one. No I/O is performed here.
"""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Optional


@dataclass(frozen=True)
class ResourceIdentifier:
    """
    Abstract resource such as a table, a file path or a mapping output.

    Attributes:
        category: Resource category ("table", "file", "mapping", ...)
        name: Resource name, may contain glob wildcards
        partition: Sorted (key, value) pairs restricting the resource
    """
    category: str
    name: str
    partition: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def __post_init__(self):
        # Normalize partition order so equal partitions compare equal
        object.__setattr__(
            self,
            "partition",
            tuple(sorted((str(k), str(v)) for k, v in self.partition)),
        )

    @classmethod
    def of_table(cls, table: str, database: Optional[str] = None,
                 partition: Optional[dict[str, Any]] = None) -> "ResourceIdentifier":
        name = f"{database}.{table}" if database else table
        return cls("table", name, tuple((partition or {}).items()))

    @classmethod
    def of_file(cls, path: str, partition: Optional[dict[str, Any]] = None) -> "ResourceIdentifier":
        return cls("file", path.rstrip("/"), tuple((partition or {}).items()))

    @classmethod
    def of_mapping(cls, name: str) -> "ResourceIdentifier":
        return cls("mapping", name)

    @property
    def partition_dict(self) -> dict[str, str]:
        return dict(self.partition)

    def contains(self, other: "ResourceIdentifier") -> bool:
        """
        Check if this resource covers another one.

        The categories must match, this name (as glob pattern) must match the
        other name, and every partition key of this resource must carry the
        same value in the other resource. An unpartitioned resource contains
        all of its partitions.
        """
        if self.category != other.category:
            return False
        if not fnmatchcase(other.name, self.name):
            return False
        others = other.partition_dict
        return all(others.get(k) == v for k, v in self.partition)

    def intersects(self, other: "ResourceIdentifier") -> bool:
        """Check if either resource contains the other."""
        return self.contains(other) or other.contains(self)

    def __str__(self) -> str:
        text = f"{self.category}:{self.name}"
        if self.partition:
            text += "[" + ",".join(f"{k}={v}" for k, v in self.partition) + "]"
        return text

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"category": self.category, "name": self.name}
        if self.partition:
            result["partition"] = self.partition_dict
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceIdentifier":
        return cls(
            category=data["category"],
            name=data["name"],
            partition=tuple((data.get("partition") or {}).items()),
        )
