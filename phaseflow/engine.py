"""
Dataset engine - the I/O capability consumed by mappings, relations and targets.

phaseflow never inspects dataset contents; it only sequences calls to a
DatasetEngine. Real engines (Spark, BigQuery, DuckDB, ...) implement the
interface outside this package. InMemoryDatasetEngine is a thread-safe
reference implementation holding datasets as lists of dict records; it is
used by the test suite and for dry runs.

Destinations are plain strings (a table name such as "db.orders" or a path).
Partitions are dicts of column -> value.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


WRITE_MODES = ("overwrite", "append", "error_if_exists", "ignore_if_exists")


class DatasetEngine(ABC):
    """
    Abstract base class for dataset engines.

    Implementations must provide storage operations (read, write, exists,
    create, destroy, migrate, truncate) and the transformations used by the
    built-in mapping kinds.
    """

    @abstractmethod
    def read(self, source: str, schema: Optional[list[str]] = None,
             partition: Optional[dict[str, Any]] = None) -> Any:
        """
        Read a dataset.

        Args:
            source: Destination string of the relation
            schema: Optional list of columns to keep
            partition: Optional partition filter

        Returns:
            Engine-specific dataset
        """
        pass

    @abstractmethod
    def write(self, destination: str, dataset: Any,
              partition: Optional[dict[str, Any]] = None, mode: str = "overwrite") -> None:
        """
        Write a dataset into a destination (or one of its partitions).

        Args:
            destination: Destination string
            dataset: Engine-specific dataset
            partition: Target partition (None = whole destination)
            mode: One of WRITE_MODES
        """
        pass

    @abstractmethod
    def exists(self, destination: str, partition: Optional[dict[str, Any]] = None) -> bool:
        """
        Check existence.

        With partition=None, checks that the destination itself exists.
        With a partition dict, checks that data is loaded for it; an empty
        dict checks for any data at all.
        """
        pass

    @abstractmethod
    def create(self, destination: str) -> None:
        pass

    @abstractmethod
    def destroy(self, destination: str) -> None:
        pass

    @abstractmethod
    def migrate(self, destination: str) -> None:
        pass

    @abstractmethod
    def truncate(self, destination: str, partition: Optional[dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def transform(self, kind: str, inputs: list[Any], options: Optional[dict[str, Any]] = None) -> Any:
        """
        Apply a named transformation to input datasets.

        Args:
            kind: Transformation name ("filter", "union", ...)
            inputs: Input datasets
            options: Transformation options

        Raises:
            ValueError: If the transformation is not supported
        """
        pass


def _partition_key(partition: Optional[dict[str, Any]]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in (partition or {}).items()))


def _matches(stored: tuple[tuple[str, str], ...], requested: tuple[tuple[str, str], ...]) -> bool:
    values = dict(stored)
    return all(values.get(k) == v for k, v in requested)


class InMemoryDatasetEngine(DatasetEngine):
    """
    In-memory implementation of DatasetEngine for testing.

    Datasets are lists of dict records. Each destination holds records per
    partition key. All data is lost when the instance is garbage collected.

    Every call is appended to `calls` as (operation, destination) so tests
    can assert which I/O happened.
    """

    def __init__(self):
        self._data: dict[str, dict[tuple[tuple[str, str], ...], list[dict[str, Any]]]] = {}
        self._migrations: dict[str, int] = {}
        self._lock = threading.RLock()
        self.calls: list[tuple[str, str]] = []

    def _record(self, operation: str, destination: str) -> None:
        self.calls.append((operation, destination))

    def read(self, source, schema=None, partition=None):
        with self._lock:
            self._record("read", source)
            if source not in self._data:
                raise ValueError(f"Dataset does not exist: {source}")
            requested = _partition_key(partition)
            records = []
            for key in sorted(self._data[source]):
                if _matches(key, requested):
                    records.extend(dict(r) for r in self._data[source][key])
        if schema:
            records = [{c: r.get(c) for c in schema} for r in records]
        return records

    def write(self, destination, dataset, partition=None, mode="overwrite"):
        if mode not in WRITE_MODES:
            raise ValueError(f"Unknown write mode: {mode}. Valid: {list(WRITE_MODES)}")
        key = _partition_key(partition)
        with self._lock:
            self._record("write", destination)
            partitions = self._data.setdefault(destination, {})
            loaded = bool(partitions.get(key))
            if loaded and mode == "error_if_exists":
                raise ValueError(f"Partition {dict(key)} of {destination} already contains data")
            if loaded and mode == "ignore_if_exists":
                return
            if mode == "append":
                partitions.setdefault(key, []).extend(dict(r) for r in dataset)
            else:
                partitions[key] = [dict(r) for r in dataset]
        logger.debug(f"Wrote {len(dataset)} records to {destination} {dict(key)}")

    def exists(self, destination, partition=None):
        with self._lock:
            self._record("exists", destination)
            if destination not in self._data:
                return False
            if partition is None:
                return True
            requested = _partition_key(partition)
            return any(
                records and _matches(key, requested)
                for key, records in self._data[destination].items()
            )

    def create(self, destination):
        with self._lock:
            self._record("create", destination)
            if destination in self._data:
                raise ValueError(f"Dataset already exists: {destination}")
            self._data[destination] = {}

    def destroy(self, destination):
        with self._lock:
            self._record("destroy", destination)
            if destination not in self._data:
                raise ValueError(f"Dataset does not exist: {destination}")
            del self._data[destination]

    def migrate(self, destination):
        with self._lock:
            self._record("migrate", destination)
            if destination not in self._data:
                raise ValueError(f"Dataset does not exist: {destination}")
            self._migrations[destination] = self._migrations.get(destination, 0) + 1

    def truncate(self, destination, partition=None):
        with self._lock:
            self._record("truncate", destination)
            partitions = self._data.get(destination)
            if partitions is None:
                return
            requested = _partition_key(partition)
            for key in [k for k in partitions if _matches(k, requested)]:
                del partitions[key]

    def transform(self, kind, inputs, options=None):
        options = options or {}
        if kind == "filter":
            condition = options.get("condition") or {}
            if isinstance(condition, str):
                condition = _parse_condition(condition)
            return [
                dict(r) for r in inputs[0]
                if all(str(r.get(k)) == str(v) for k, v in condition.items())
            ]
        if kind == "union":
            records = [dict(r) for dataset in inputs for r in dataset]
            if options.get("distinct"):
                seen = set()
                unique = []
                for r in records:
                    marker = tuple(sorted((k, repr(v)) for k, v in r.items()))
                    if marker not in seen:
                        seen.add(marker)
                        unique.append(r)
                records = unique
            return records
        raise ValueError(f"Unsupported transformation: {kind}")

    # Test helpers

    def put(self, destination: str, records: list[dict[str, Any]],
            partition: Optional[dict[str, Any]] = None) -> None:
        """Seed a destination with records."""
        with self._lock:
            self._data.setdefault(destination, {})[_partition_key(partition)] = [dict(r) for r in records]

    def get(self, destination: str, partition: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        """Return stored records without recording a call."""
        with self._lock:
            partitions = self._data.get(destination, {})
            requested = _partition_key(partition)
            return [dict(r) for key in sorted(partitions) if _matches(key, requested) for r in partitions[key]]

    def migrations(self, destination: str) -> int:
        return self._migrations.get(destination, 0)


def _parse_condition(text: str) -> dict[str, str]:
    """Parse "a == 1 and b == x" into {"a": "1", "b": "x"}."""
    condition = {}
    for clause in text.split(" and "):
        if "==" not in clause:
            raise ValueError(f"Unsupported filter condition: {text!r}")
        column, value = clause.split("==", 1)
        condition[column.strip()] = value.strip().strip("'\"")
    return condition
