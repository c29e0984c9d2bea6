"""
phaseflow - phase-based lifecycle orchestrator for declarative data pipelines.

Projects declare mappings (pure transformations), relations (storage
endpoints), targets (units of work) and jobs. phaseflow resolves them in
scoped contexts, builds a dependency graph per phase and executes targets
through the build lifecycle (VALIDATE, CREATE, BUILD, VERIFY) or the clean
lifecycle (TRUNCATE, DESTROY), skipping targets that are not dirty.
"""

__version__ = "0.1.0"

from phaseflow.config import ConfigError, ExecutionConfig, load_config
from phaseflow.context import Context
from phaseflow.engine import DatasetEngine, InMemoryDatasetEngine
from phaseflow.errors import (
    AbortedError,
    CyclicDependencyError,
    DirtyCheckError,
    InvalidPhaseSequenceError,
    JobArgumentError,
    PhaseflowError,
    TargetExecutionError,
    TargetTimeoutError,
    UnresolvedReferenceError,
    VerificationFailedError,
)
from phaseflow.graph import Graph, build_graph
from phaseflow.instance_registry import FileInstanceRegistry, InMemoryInstanceRegistry
from phaseflow.listener import ExecutionListener, ListenerChain, LoggingListener, NoOpListener, Token, TokenKind
from phaseflow.result_sink import FileResultSink, InMemoryResultSink
from phaseflow.runner import Runner
from phaseflow.schemas import (
    Identifier,
    LifecycleResult,
    Phase,
    Project,
    Status,
    Trilean,
)
from phaseflow.session import Session
from phaseflow.utils import setup_logging

__all__ = [
    "__version__",
    "ConfigError",
    "ExecutionConfig",
    "load_config",
    "Context",
    "DatasetEngine",
    "InMemoryDatasetEngine",
    "AbortedError",
    "CyclicDependencyError",
    "DirtyCheckError",
    "InvalidPhaseSequenceError",
    "JobArgumentError",
    "PhaseflowError",
    "TargetExecutionError",
    "TargetTimeoutError",
    "UnresolvedReferenceError",
    "VerificationFailedError",
    "Graph",
    "build_graph",
    "FileInstanceRegistry",
    "InMemoryInstanceRegistry",
    "ExecutionListener",
    "ListenerChain",
    "LoggingListener",
    "NoOpListener",
    "Token",
    "TokenKind",
    "FileResultSink",
    "InMemoryResultSink",
    "Runner",
    "Identifier",
    "LifecycleResult",
    "Phase",
    "Project",
    "Status",
    "Trilean",
    "Session",
    "setup_logging",
]
