"""
Relations - physical storage endpoints.

Relations are referenced by mappings (read) and targets (write, create,
destroy, ...) but never scheduled themselves. All I/O is delegated to the
DatasetEngine.

Kinds:
- table: database + table name
- file: a location (path or URI) with a format
"""

import logging
from abc import abstractmethod
from typing import Any, Optional

from phaseflow.engine import DatasetEngine
from phaseflow.model.base import Instance
from phaseflow.schemas import Category, ResourceIdentifier, Trilean

logger = logging.getLogger(__name__)


class Relation(Instance):
    """A physical storage endpoint."""

    category = Category.RELATION

    @property
    @abstractmethod
    def location(self) -> str:
        """Destination string passed to the dataset engine."""
        pass

    @abstractmethod
    def provides(self, partition: Optional[dict[str, Any]] = None) -> set[ResourceIdentifier]:
        """Resources written by this relation."""
        pass

    def requires(self) -> set[ResourceIdentifier]:
        """Resources needed to create this relation (e.g. its database)."""
        return set()

    def resources(self, partition: Optional[dict[str, Any]] = None) -> set[ResourceIdentifier]:
        """Resources read from this relation."""
        return self.provides(partition)

    def exists(self, engine: DatasetEngine) -> Trilean:
        return Trilean.of(engine.exists(self.location))

    def loaded(self, engine: DatasetEngine, partition: Optional[dict[str, Any]] = None) -> Trilean:
        """Check if data is present for a partition (or at all)."""
        if not engine.exists(self.location):
            return Trilean.NO
        return Trilean.of(engine.exists(self.location, partition or {}))

    def create(self, engine: DatasetEngine, if_not_exists: bool = False) -> None:
        if engine.exists(self.location):
            if if_not_exists:
                return
            raise ValueError(f"Relation '{self.name}' already exists at {self.location}")
        logger.info(f"Creating relation '{self.name}' at {self.location}")
        engine.create(self.location)

    def destroy(self, engine: DatasetEngine, if_exists: bool = False) -> None:
        if not engine.exists(self.location):
            if if_exists:
                return
            raise ValueError(f"Relation '{self.name}' does not exist at {self.location}")
        logger.info(f"Destroying relation '{self.name}' at {self.location}")
        engine.destroy(self.location)

    def migrate(self, engine: DatasetEngine) -> None:
        logger.info(f"Migrating relation '{self.name}' at {self.location}")
        engine.migrate(self.location)

    def read(self, engine: DatasetEngine, partition: Optional[dict[str, Any]] = None,
             columns: Optional[list[str]] = None) -> Any:
        return engine.read(self.location, schema=columns or None, partition=partition)

    def write(self, engine: DatasetEngine, dataset: Any,
              partition: Optional[dict[str, Any]] = None, mode: str = "overwrite") -> None:
        engine.write(self.location, dataset, partition=partition, mode=mode)

    def truncate(self, engine: DatasetEngine, partition: Optional[dict[str, Any]] = None) -> None:
        engine.truncate(self.location, partition=partition)


class TableRelation(Relation):
    """A table, optionally qualified by database."""

    @property
    def location(self) -> str:
        database = self.attr("database", None)
        table = self.attr("table", self.name)
        return f"{database}.{table}" if database else str(table)

    def provides(self, partition=None):
        return {ResourceIdentifier.of_table(self.attr("table", self.name), self.attr("database", None), partition)}

    def requires(self):
        database = self.attr("database", None)
        if database:
            return {ResourceIdentifier("database", str(database))}
        return set()


class FileRelation(Relation):
    """Files below a location."""

    @property
    def location(self) -> str:
        return str(self.attr("location")).rstrip("/")

    @property
    def format(self) -> str:
        return self.attr("format", "csv")

    def provides(self, partition=None):
        return {ResourceIdentifier.of_file(self.location, partition)}


RELATION_KINDS: dict[str, type[Relation]] = {
    "table": TableRelation,
    "file": FileRelation,
}
