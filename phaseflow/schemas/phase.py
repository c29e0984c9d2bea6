"""
Phase schema - the ordered execution phases and tri-valued dirty state.

Build lifecycle: VALIDATE -> CREATE -> BUILD -> VERIFY
Clean lifecycle: TRUNCATE -> DESTROY

Each clean phase undoes a build phase (TRUNCATE undoes BUILD, DESTROY undoes
CREATE), so the clean lifecycle walks the build lifecycle backwards.
"""

from enum import Enum
from typing import Any, Iterable, Optional

from phaseflow.errors import InvalidPhaseSequenceError


class Phase(str, Enum):
    """
    Execution phase.

    Members are declared in execution order; comparison operators use
    that order rather than string comparison.
    """
    VALIDATE = "validate"
    CREATE = "create"
    BUILD = "build"
    VERIFY = "verify"
    TRUNCATE = "truncate"
    DESTROY = "destroy"

    @classmethod
    def from_string(cls, value: str) -> "Phase":
        """
        Parse phase from string (case-insensitive).

        Raises:
            ValueError: If the phase is unknown
        """
        if isinstance(value, Phase):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            valid = [p.value for p in cls]
            raise ValueError(f"Unknown phase: {value}. Valid: {valid}")

    @property
    def order(self) -> int:
        """Position in the global phase order."""
        return _ORDER[self]

    @property
    def is_forward(self) -> bool:
        """Check if this phase belongs to the build lifecycle."""
        return self in BUILD_LIFECYCLE

    @property
    def is_verification(self) -> bool:
        """Check if this phase only checks state (VALIDATE, VERIFY)."""
        return self in (Phase.VALIDATE, Phase.VERIFY)

    @property
    def reverses(self) -> Optional["Phase"]:
        """Build phase undone by this clean phase, or None for build phases."""
        return _REVERSES.get(self)

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.order >= other.order


_ORDER = {phase: i for i, phase in enumerate(Phase)}
_REVERSES = {Phase.TRUNCATE: Phase.BUILD, Phase.DESTROY: Phase.CREATE}

BUILD_LIFECYCLE: tuple[Phase, ...] = (Phase.VALIDATE, Phase.CREATE, Phase.BUILD, Phase.VERIFY)
CLEAN_LIFECYCLE: tuple[Phase, ...] = (Phase.TRUNCATE, Phase.DESTROY)
ALL_PHASES: tuple[Phase, ...] = tuple(Phase)


def lifecycle_of(phase: Phase) -> tuple[Phase, ...]:
    """
    Return all phases of the lifecycle of `phase`, up to and including it.

    Example:
        lifecycle_of(Phase.BUILD) -> (VALIDATE, CREATE, BUILD)
    """
    phase = Phase.from_string(phase)
    lifecycle = BUILD_LIFECYCLE if phase.is_forward else CLEAN_LIFECYCLE
    return lifecycle[: lifecycle.index(phase) + 1]


def parse_phases(values: Iterable[Any]) -> list[Phase]:
    """Parse a sequence of phase names or Phase members."""
    return [Phase.from_string(v) for v in values]


def validate_phase_sequence(phases: Iterable[Any]) -> list[Phase]:
    """
    Validate a requested phase sequence.

    A valid sequence is non-empty, lies entirely within one lifecycle and is
    contiguous and strictly increasing in that lifecycle's execution order.

    Returns:
        The parsed phases

    Raises:
        InvalidPhaseSequenceError: If the sequence is invalid
    """
    phases = list(phases)
    try:
        parsed = parse_phases(phases)
    except ValueError as e:
        raise InvalidPhaseSequenceError(phases, str(e)) from e

    if not parsed:
        raise InvalidPhaseSequenceError(parsed, "no phases requested")

    forward = parsed[0].is_forward
    if any(p.is_forward != forward for p in parsed):
        raise InvalidPhaseSequenceError(parsed, "build and clean phases cannot be mixed")

    for previous, current in zip(parsed, parsed[1:]):
        if current.order != previous.order + 1:
            raise InvalidPhaseSequenceError(
                parsed,
                f"{current.value} does not directly follow {previous.value}",
            )

    return parsed


class Trilean(str, Enum):
    """Three-valued dirty state of a target for a phase."""
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, value: Any) -> "Trilean":
        """
        Convert a bool, None or Trilean into a Trilean.

        None maps to UNKNOWN.
        """
        if isinstance(value, Trilean):
            return value
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, bool):
            return cls.YES if value else cls.NO
        raise TypeError(f"Cannot convert {value!r} to Trilean")

    @property
    def needs_run(self) -> bool:
        """YES and UNKNOWN both require execution."""
        return self != Trilean.NO

    def __invert__(self) -> "Trilean":
        if self == Trilean.YES:
            return Trilean.NO
        if self == Trilean.NO:
            return Trilean.YES
        return Trilean.UNKNOWN

    def __or__(self, other: "Trilean") -> "Trilean":
        other = Trilean.of(other)
        if Trilean.YES in (self, other):
            return Trilean.YES
        if Trilean.UNKNOWN in (self, other):
            return Trilean.UNKNOWN
        return Trilean.NO

    def __and__(self, other: "Trilean") -> "Trilean":
        other = Trilean.of(other)
        if Trilean.NO in (self, other):
            return Trilean.NO
        if Trilean.UNKNOWN in (self, other):
            return Trilean.UNKNOWN
        return Trilean.YES
