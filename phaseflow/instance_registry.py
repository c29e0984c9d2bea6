"""
Instance registry - prior execution state per target instance.

The registry maps (TargetInstance, Phase) to the state of the last execution
and hands out per-instance execution locks. The Runner holds the execution
lock of a target instance from before its dirty check until after
finish_target, so two targets with the same identity never execute
concurrently, and consults the recorded run id to execute each instance at
most once per phase within one run.

Reads are lock-free (concurrent); writes take a per-instance write lock.

Storage backends:
- In-memory (for testing and single-process runs)
- File-based (JSON files, survives the process)
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from phaseflow.schemas import Phase, Status, TargetInstance


@dataclass(frozen=True)
class InstanceState:
    """
    Recorded state of one target instance in one phase.

    Attributes:
        instance: Target identity
        phase: Executed phase
        status: Terminal status of the execution
        run_id: Id of the run that produced this state
        start_time: When execution started
        end_time: When execution finished
    """
    instance: TargetInstance
    phase: Phase
    status: Status
    run_id: str
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance": self.instance.to_dict(),
            "phase": self.phase.value,
            "status": self.status.value,
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstanceState":
        return cls(
            instance=TargetInstance.from_dict(data["instance"]),
            phase=Phase(data["phase"]),
            status=Status(data["status"]),
            run_id=data["run_id"],
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
        )


class InstanceRegistry(ABC):
    """
    Abstract base class for instance state storage.

    Subclasses implement `_load` and `_store`; locking is shared.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # instance -> [lock, holders]; entries are dropped when the last holder leaves
        self._execution_locks: dict[TargetInstance, list] = {}
        self._write_locks: dict[TargetInstance, list] = {}

    @contextmanager
    def _held(self, table: dict[TargetInstance, list], instance: TargetInstance) -> Iterator[None]:
        with self._guard:
            entry = table.get(instance)
            if entry is None:
                entry = table[instance] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del table[instance]

    @contextmanager
    def execution_lock(self, instance: TargetInstance) -> Iterator[None]:
        """Hold the exclusive execution lock of a target instance."""
        with self._held(self._execution_locks, instance):
            yield

    def active_locks(self) -> int:
        """Number of target instances whose locks are currently held or awaited."""
        with self._guard:
            return len(self._execution_locks) + len(self._write_locks)

    def get_state(self, instance: TargetInstance, phase: Phase) -> Optional[InstanceState]:
        """Last recorded state, or None."""
        return self._load(instance, phase)

    def record(self, state: InstanceState) -> None:
        """Store the state of an execution, replacing older state of the same key."""
        with self._held(self._write_locks, state.instance):
            self._store(state)

    def executed_in(self, instance: TargetInstance, phase: Phase, run_id: str) -> bool:
        """Check if the instance already reached a terminal state in this run."""
        state = self.get_state(instance, phase)
        return state is not None and state.run_id == run_id

    @abstractmethod
    def _load(self, instance: TargetInstance, phase: Phase) -> Optional[InstanceState]:
        pass

    @abstractmethod
    def _store(self, state: InstanceState) -> None:
        pass


class InMemoryInstanceRegistry(InstanceRegistry):
    """
    In-memory implementation of InstanceRegistry.

    All state is lost when the instance is garbage collected.
    """

    def __init__(self) -> None:
        super().__init__()
        self._states: dict[tuple[TargetInstance, Phase], InstanceState] = {}

    def _load(self, instance, phase):
        return self._states.get((instance, phase))

    def _store(self, state):
        self._states[(state.instance, state.phase)] = state

    def clear(self) -> None:
        """Clear all stored state (for testing)."""
        self._states.clear()


class FileInstanceRegistry(InstanceRegistry):
    """
    File-based implementation of InstanceRegistry.

    Stores one JSON file per instance and phase:
        store_dir/
            {namespace}/{project}/{target}[{partition}]/
                {phase}.json

    Files are replaced atomically, so concurrent readers see either the old
    or the new state.
    """

    def __init__(self, store_dir: Path | str):
        super().__init__()
        self._store_dir = Path(store_dir)
        self._store_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, instance: TargetInstance, phase: Phase) -> Path:
        return self._store_dir / instance.key / f"{phase.value}.json"

    def _load(self, instance, phase):
        path = self._path(instance, phase)
        if not path.exists():
            return None
        with open(path) as f:
            data = json.load(f)
        return InstanceState.from_dict(data)

    def _store(self, state):
        path = self._path(state.instance, state.phase)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(state.to_dict(), f, indent=2)
        os.replace(tmp_path, path)
