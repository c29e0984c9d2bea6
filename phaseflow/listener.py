"""
Execution listeners - the observer protocol of a run.

Every start_* call returns a Token that must be passed to the matching
finish_* call. A Token is a plain tagged value (kind + generated id); it
carries no behavior.

Brackets emitted by the Runner:
    start_lifecycle / finish_lifecycle   once per run
    start_job / finish_job               once per executed phase
    start_target / finish_target         once per executed target
    start_check / finish_check           once per check of a check target

Listeners may be called from worker threads. ListenerChain fans calls out to
several listeners and isolates the run from listener failures.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from phaseflow.schemas import (
    CheckResult,
    JobInstance,
    JobResult,
    LifecycleResult,
    Phase,
    Status,
    TargetInstance,
    TargetResult,
)
from phaseflow.utils import format_duration

logger = logging.getLogger(__name__)


class TokenKind(str, Enum):
    """What a token brackets."""
    LIFECYCLE = "lifecycle"
    JOB = "job"
    TARGET = "target"
    CHECK = "check"


@dataclass(frozen=True)
class Token:
    """Opaque handle pairing a start call with its finish call."""
    kind: TokenKind
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def new(cls, kind: TokenKind) -> "Token":
        return cls(kind)


class ExecutionListener(ABC):
    """
    Abstract base class for execution observers.

    Implementations must return a fresh Token from every start_* call.
    """

    @abstractmethod
    def start_lifecycle(self, job: Any, instance: JobInstance, phases: list[Phase]) -> Token:
        pass

    @abstractmethod
    def finish_lifecycle(self, token: Token, result: LifecycleResult) -> None:
        pass

    @abstractmethod
    def start_job(self, job: Any, instance: JobInstance, phase: Phase, parent: Optional[Token]) -> Token:
        pass

    @abstractmethod
    def finish_job(self, token: Token, result: JobResult) -> None:
        pass

    @abstractmethod
    def start_target(self, target: Any, instance: TargetInstance, phase: Phase, parent: Optional[Token]) -> Token:
        pass

    @abstractmethod
    def finish_target(self, token: Token, result: TargetResult) -> None:
        pass

    @abstractmethod
    def start_check(self, check: Any, parent: Optional[Token]) -> Token:
        pass

    @abstractmethod
    def finish_check(self, token: Token, result: CheckResult) -> None:
        pass


class NoOpListener(ExecutionListener):
    """
    Listener that does nothing.

    Base class for listeners interested in a few hooks only.
    """

    def start_lifecycle(self, job, instance, phases):
        return Token.new(TokenKind.LIFECYCLE)

    def finish_lifecycle(self, token, result):
        pass

    def start_job(self, job, instance, phase, parent):
        return Token.new(TokenKind.JOB)

    def finish_job(self, token, result):
        pass

    def start_target(self, target, instance, phase, parent):
        return Token.new(TokenKind.TARGET)

    def finish_target(self, token, result):
        pass

    def start_check(self, check, parent):
        return Token.new(TokenKind.CHECK)

    def finish_check(self, token, result):
        pass


class LoggingListener(NoOpListener):
    """Logs every bracket to the phaseflow logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def start_lifecycle(self, job, instance, phases):
        names = ", ".join(p.value for p in phases)
        self._log.info(f"Running job '{instance}' with phases [{names}]", extra={"event": "lifecycle_started"})
        return super().start_lifecycle(job, instance, phases)

    def finish_lifecycle(self, token, result):
        self._log.info(
            f"Job '{result.name}' finished with status {result.status.value} "
            f"in {format_duration(result.duration_ms / 1000)}",
            extra={"event": "lifecycle_finished"},
        )

    def start_job(self, job, instance, phase, parent):
        self._log.info(f"Phase {phase.value} of job '{instance}' started", extra={"event": "phase_started", "phase": phase.value})
        return super().start_job(job, instance, phase, parent)

    def finish_job(self, token, result):
        phase = result.phase.value if result.phase else None
        self._log.info(
            f"Phase {phase} of job '{result.name}' finished with status {result.status.value}",
            extra={"event": "phase_finished", "phase": phase},
        )

    def start_target(self, target, instance, phase, parent):
        self._log.info(
            f"Target '{instance}' {phase.value} started",
            extra={"event": "target_started", "phase": phase.value, "target": str(instance)},
        )
        return super().start_target(target, instance, phase, parent)

    def finish_target(self, token, result):
        level = logging.ERROR if result.status == Status.FAILED else logging.INFO
        message = f"Target '{result.name}' finished with status {result.status.value}"
        if result.error is not None:
            message += f": {result.error.message}"
        self._log.log(level, message, extra={"event": "target_finished", "target": result.name})

    def start_check(self, check, parent):
        self._log.info(f"Running check '{check.name}'", extra={"event": "check_started"})
        return super().start_check(check, parent)

    def finish_check(self, token, result):
        self._log.info(f"Check '{result.name}' {result.status.value}", extra={"event": "check_finished"})


class ListenerChain(ExecutionListener):
    """
    Fans out every call to a list of listeners.

    The chain hands out its own tokens and remembers the child tokens they
    stand for. A listener raising an exception is logged and skipped; the
    other listeners and the run are not affected.
    """

    def __init__(self, listeners: Iterable[ExecutionListener] = ()):
        self._listeners = list(listeners)
        self._tokens: dict[Token, list[Optional[Token]]] = {}
        self._lock = threading.Lock()

    @property
    def listeners(self) -> list[ExecutionListener]:
        return list(self._listeners)

    def _start(self, kind: TokenKind, method: str, parent: Optional[Token], *args: Any) -> Token:
        token = Token.new(kind)
        with self._lock:
            parents = self._tokens.get(parent) if parent is not None else None
        children: list[Optional[Token]] = []
        for i, listener in enumerate(self._listeners):
            call_args = list(args)
            if kind != TokenKind.LIFECYCLE:
                call_args.append(parents[i] if parents else None)
            try:
                children.append(getattr(listener, method)(*call_args))
            except Exception:
                logger.warning(f"Listener {type(listener).__name__}.{method} failed", exc_info=True)
                children.append(None)
        with self._lock:
            self._tokens[token] = children
        return token

    def _finish(self, method: str, token: Token, result: Any) -> None:
        with self._lock:
            children = self._tokens.pop(token, None)
        if children is None:
            raise ValueError(f"Unknown or already finished token: {token}")
        for listener, child in zip(self._listeners, children):
            if child is None:
                continue
            try:
                getattr(listener, method)(child, result)
            except Exception:
                logger.warning(f"Listener {type(listener).__name__}.{method} failed", exc_info=True)

    def start_lifecycle(self, job, instance, phases):
        return self._start(TokenKind.LIFECYCLE, "start_lifecycle", None, job, instance, phases)

    def finish_lifecycle(self, token, result):
        self._finish("finish_lifecycle", token, result)

    def start_job(self, job, instance, phase, parent):
        return self._start(TokenKind.JOB, "start_job", parent, job, instance, phase)

    def finish_job(self, token, result):
        self._finish("finish_job", token, result)

    def start_target(self, target, instance, phase, parent):
        return self._start(TokenKind.TARGET, "start_target", parent, target, instance, phase)

    def finish_target(self, token, result):
        self._finish("finish_target", token, result)

    def start_check(self, check, parent):
        return self._start(TokenKind.CHECK, "start_check", parent, check)

    def finish_check(self, token, result):
        self._finish("finish_check", token, result)
