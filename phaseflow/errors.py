"""
Error classes for phaseflow execution.

Two families of errors exist:
- Structural errors (UnresolvedReferenceError, CyclicDependencyError,
  InvalidPhaseSequenceError, JobArgumentError) fail graph construction and
  abort a run before any target executes. They are never retried.
- Target errors (DirtyCheckError, TargetExecutionError,
  VerificationFailedError, TargetTimeoutError, AbortedError) are caught at
  the target boundary by the Runner and recorded in that target's result.

Error handling contract:
- Errors are exceptions, not values
- The Runner converts target errors into ErrorInfo on the TargetResult
- Structural errors propagate out of Runner.execute
"""

from typing import Any, Iterable, Optional


class PhaseflowError(Exception):
    """Base exception for phaseflow."""
    pass


class UnresolvedReferenceError(PhaseflowError):
    """
    An identifier could not be found in a context or any of its ancestors.

    Attributes:
        identifier: The offending identifier
        category: Node category that was looked up (mapping, target, ...)
    """

    def __init__(self, identifier: Any, category: Any = None, message: Optional[str] = None):
        self.identifier = identifier
        self.category = category
        if message is None:
            kind = getattr(category, "value", category) or "node"
            message = f"Cannot resolve {kind} '{identifier}'"
        super().__init__(message)


class CyclicDependencyError(PhaseflowError):
    """
    A dependency cycle was detected during resolution or ordering.

    Attributes:
        cycle: Names of the nodes forming the cycle, in traversal order.
               The first node is repeated at the end when the closing edge is known.
    """

    def __init__(self, cycle: Iterable[Any]):
        self.cycle = [str(c) for c in cycle]
        super().__init__(f"Cyclic dependency detected: {' -> '.join(self.cycle)}")


class InvalidPhaseSequenceError(PhaseflowError, ValueError):
    """Requested phases are empty, non-contiguous or mix both lifecycles."""

    def __init__(self, phases: Iterable[Any], reason: str):
        self.phases = list(phases)
        names = [getattr(p, "value", str(p)) for p in self.phases]
        super().__init__(f"Invalid phase sequence {names}: {reason}")


class JobArgumentError(PhaseflowError, ValueError):
    """Job arguments name unknown parameters or miss required ones."""

    def __init__(self, job: str, names: Iterable[str], reason: str):
        self.job = job
        self.names = sorted(names)
        super().__init__(f"Job '{job}': {reason}: {', '.join(self.names)}")


class DirtyCheckError(PhaseflowError):
    """
    Querying a target's dirty state failed.

    The Runner logs this and treats the state as UNKNOWN, so the target runs.
    """

    def __init__(self, target: str, phase: Any, cause: Optional[BaseException] = None):
        self.target = target
        self.phase = phase
        self.cause = cause
        phase_name = getattr(phase, "value", phase)
        super().__init__(f"Dirty check of target '{target}' in phase {phase_name} failed: {cause}")


class TargetExecutionError(PhaseflowError):
    """
    A target raised while executing a phase.

    Attributes:
        target: Target name
        phase: Phase being executed
        cause: Original exception
    """

    def __init__(self, target: str, phase: Any, cause: Optional[BaseException] = None):
        self.target = target
        self.phase = phase
        self.cause = cause
        phase_name = getattr(phase, "value", phase)
        super().__init__(f"Target '{target}' failed in phase {phase_name}: {cause}")


class VerificationFailedError(PhaseflowError):
    """A verify-phase target detected that its produced data is not as expected."""

    def __init__(self, target: str, reason: str, results: Optional[Iterable[Any]] = None):
        self.target = target
        self.reason = reason
        self.results = list(results or [])
        super().__init__(f"Verification of target '{target}' failed: {reason}")


class TargetTimeoutError(PhaseflowError, TimeoutError):
    """A target did not finish within the configured per-target timeout."""

    def __init__(self, target: str, phase: Any, timeout_s: float):
        self.target = target
        self.phase = phase
        self.timeout_s = timeout_s
        phase_name = getattr(phase, "value", phase)
        super().__init__(
            f"Target '{target}' exceeded timeout of {timeout_s}s in phase {phase_name}"
        )


class AbortedError(PhaseflowError):
    """Execution was cancelled or aborted by fail-fast before it started."""

    def __init__(self, reason: str = "aborted"):
        self.reason = reason
        super().__init__(reason)
