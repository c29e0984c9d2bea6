"""
phaseflow node model - mappings, relations, targets, checks and jobs.
"""

from phaseflow.model.base import Instance
from phaseflow.model.check import Check, ExistsCheck, NotEmptyCheck
from phaseflow.model.job import Job
from phaseflow.model.mapping import (
    AliasMapping,
    FilterMapping,
    Mapping,
    ReadMapping,
    UnionMapping,
    UnitMapping,
)
from phaseflow.model.registry import KindRegistry, create_default_registries
from phaseflow.model.relation import FileRelation, Relation, TableRelation
from phaseflow.model.target import CheckTarget, FileTarget, RelationTarget, Target

__all__ = [
    "Instance",
    "Check",
    "ExistsCheck",
    "NotEmptyCheck",
    "Job",
    "AliasMapping",
    "FilterMapping",
    "Mapping",
    "ReadMapping",
    "UnionMapping",
    "UnitMapping",
    "KindRegistry",
    "create_default_registries",
    "FileRelation",
    "Relation",
    "TableRelation",
    "CheckTarget",
    "FileTarget",
    "RelationTarget",
    "Target",
]
