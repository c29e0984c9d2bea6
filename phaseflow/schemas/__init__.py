"""
phaseflow schemas - immutable value types.

All schemas are frozen dataclasses (or str enums) with to_dict/from_dict
for JSON persistence where they are persisted.
"""

from phaseflow.schemas.identifier import Category, Identifier, DEFAULT_OUTPUT
from phaseflow.schemas.phase import (
    ALL_PHASES,
    BUILD_LIFECYCLE,
    CLEAN_LIFECYCLE,
    Phase,
    Trilean,
    lifecycle_of,
    validate_phase_sequence,
)
from phaseflow.schemas.resource import ResourceIdentifier
from phaseflow.schemas.instance import JobInstance, TargetInstance
from phaseflow.schemas.spec import REQUIRED, JobParameter, JobSpec, NodeSpec, Project
from phaseflow.schemas.result import (
    CheckResult,
    ErrorInfo,
    JobResult,
    LifecycleResult,
    Result,
    Status,
    TargetResult,
)

__all__ = [
    # Identifier
    "Category",
    "Identifier",
    "DEFAULT_OUTPUT",
    # Phase
    "ALL_PHASES",
    "BUILD_LIFECYCLE",
    "CLEAN_LIFECYCLE",
    "Phase",
    "Trilean",
    "lifecycle_of",
    "validate_phase_sequence",
    # Resources and instances
    "ResourceIdentifier",
    "JobInstance",
    "TargetInstance",
    # Definitions
    "REQUIRED",
    "JobParameter",
    "JobSpec",
    "NodeSpec",
    "Project",
    # Results
    "CheckResult",
    "ErrorInfo",
    "JobResult",
    "LifecycleResult",
    "Result",
    "Status",
    "TargetResult",
]
