"""Tests for phases, phase sequences and Trilean."""

import pytest

from phaseflow.errors import InvalidPhaseSequenceError
from phaseflow.schemas import (
    BUILD_LIFECYCLE,
    CLEAN_LIFECYCLE,
    Phase,
    Trilean,
    lifecycle_of,
    validate_phase_sequence,
)


class TestPhase:
    """Tests for Phase ordering and classification."""

    def test_declared_order(self):
        assert Phase.VALIDATE < Phase.CREATE < Phase.BUILD < Phase.VERIFY
        assert Phase.TRUNCATE < Phase.DESTROY
        assert sorted([Phase.VERIFY, Phase.CREATE]) == [Phase.CREATE, Phase.VERIFY]

    def test_from_string_case_insensitive(self):
        assert Phase.from_string("BUILD") == Phase.BUILD
        assert Phase.from_string(Phase.BUILD) is Phase.BUILD

    def test_from_string_unknown(self):
        with pytest.raises(ValueError, match="Unknown phase"):
            Phase.from_string("deploy")

    def test_lifecycles(self):
        assert all(p.is_forward for p in BUILD_LIFECYCLE)
        assert not any(p.is_forward for p in CLEAN_LIFECYCLE)

    def test_reverses(self):
        assert Phase.TRUNCATE.reverses == Phase.BUILD
        assert Phase.DESTROY.reverses == Phase.CREATE
        assert Phase.BUILD.reverses is None

    def test_verification_phases(self):
        assert Phase.VALIDATE.is_verification
        assert Phase.VERIFY.is_verification
        assert not Phase.BUILD.is_verification

    def test_lifecycle_of(self):
        assert lifecycle_of(Phase.BUILD) == (Phase.VALIDATE, Phase.CREATE, Phase.BUILD)
        assert lifecycle_of("destroy") == (Phase.TRUNCATE, Phase.DESTROY)


class TestValidatePhaseSequence:
    """Tests for phase sequence validation."""

    def test_full_build_lifecycle(self):
        assert validate_phase_sequence(["validate", "create", "build", "verify"]) == list(BUILD_LIFECYCLE)

    def test_contiguous_subsequence(self):
        assert validate_phase_sequence([Phase.CREATE, Phase.BUILD]) == [Phase.CREATE, Phase.BUILD]

    def test_single_phase(self):
        assert validate_phase_sequence(["truncate"]) == [Phase.TRUNCATE]

    def test_accepts_generator(self):
        assert validate_phase_sequence(p for p in ["create", "build"]) == [Phase.CREATE, Phase.BUILD]

    def test_empty(self):
        with pytest.raises(InvalidPhaseSequenceError, match="no phases"):
            validate_phase_sequence([])

    def test_gap(self):
        with pytest.raises(InvalidPhaseSequenceError, match="does not directly follow"):
            validate_phase_sequence(["create", "verify"])

    def test_wrong_order(self):
        with pytest.raises(InvalidPhaseSequenceError):
            validate_phase_sequence(["build", "create"])

    def test_mixed_lifecycles(self):
        with pytest.raises(InvalidPhaseSequenceError, match="cannot be mixed"):
            validate_phase_sequence(["verify", "truncate"])

    def test_unknown_phase(self):
        with pytest.raises(InvalidPhaseSequenceError, match="Unknown phase"):
            validate_phase_sequence(["build", "deploy"])

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            validate_phase_sequence([])


class TestTrilean:
    """Tests for three-valued logic."""

    def test_of(self):
        assert Trilean.of(True) == Trilean.YES
        assert Trilean.of(False) == Trilean.NO
        assert Trilean.of(None) == Trilean.UNKNOWN
        assert Trilean.of(Trilean.NO) == Trilean.NO

    def test_of_rejects_other_types(self):
        with pytest.raises(TypeError):
            Trilean.of("yes please")

    def test_invert(self):
        assert ~Trilean.YES == Trilean.NO
        assert ~Trilean.NO == Trilean.YES
        assert ~Trilean.UNKNOWN == Trilean.UNKNOWN

    def test_or(self):
        assert (Trilean.NO | Trilean.YES) == Trilean.YES
        assert (Trilean.NO | Trilean.UNKNOWN) == Trilean.UNKNOWN
        assert (Trilean.NO | Trilean.NO) == Trilean.NO
        assert (Trilean.UNKNOWN | True) == Trilean.YES

    def test_and(self):
        assert (Trilean.YES & Trilean.NO) == Trilean.NO
        assert (Trilean.YES & Trilean.UNKNOWN) == Trilean.UNKNOWN
        assert (Trilean.YES & Trilean.YES) == Trilean.YES

    def test_needs_run(self):
        assert Trilean.YES.needs_run
        assert Trilean.UNKNOWN.needs_run
        assert not Trilean.NO.needs_run
