"""
Result sinks - persistence of final result trees.

The Runner hands the LifecycleResult of every run to each configured sink.

Storage backends:
- In-memory (for testing)
- File-based (JSON files, one per run)
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from phaseflow.schemas import Result

logger = logging.getLogger(__name__)


class ResultSink(ABC):
    """Abstract base class for result persistence."""

    @abstractmethod
    def store(self, result: Result) -> str:
        """
        Persist a result tree.

        Returns:
            A reference string for retrieving the result
        """
        pass

    @abstractmethod
    def load(self, ref: str) -> Optional[Result]:
        """Retrieve a result by reference, or None if unknown."""
        pass


class InMemoryResultSink(ResultSink):
    """In-memory implementation of ResultSink for testing."""

    def __init__(self):
        self._results: dict[str, Result] = {}

    @property
    def results(self) -> list[Result]:
        return list(self._results.values())

    def store(self, result: Result) -> str:
        ref = f"mem://{result.name}/{uuid.uuid4().hex}"
        self._results[ref] = result
        return ref

    def load(self, ref: str) -> Optional[Result]:
        return self._results.get(ref)


class FileResultSink(ResultSink):
    """
    File-based implementation of ResultSink.

    Stores results as JSON files:
        store_dir/
            {name}/
                {start_time}-{uuid}.json
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._store_dir.mkdir(parents=True, exist_ok=True)

    def store(self, result: Result) -> str:
        result_dir = self._store_dir / result.name
        result_dir.mkdir(parents=True, exist_ok=True)

        stamp = result.start_time.strftime("%Y%m%dT%H%M%S")
        path = result_dir / f"{stamp}-{uuid.uuid4().hex[:8]}.json"
        with open(path, "w") as f:
            json.dump(result.to_dict(), f, indent=2)

        logger.debug(f"Stored result of '{result.name}' at {path}")
        return f"file://{path}"

    def load(self, ref: str) -> Optional[Result]:
        if ref.startswith("file://"):
            path = Path(ref[7:])
        else:
            return None

        if not path.exists():
            return None

        with open(path) as f:
            data = json.load(f)
        return Result.from_dict(data)
