"""
Session - the entry point tying configuration, engine and projects together.

A Session is created once per process (or test). It owns:
- the immutable ExecutionConfig
- the DatasetEngine performing all I/O
- the listeners (wrapped in one ListenerChain)
- the instance registry and result sinks
- the kind registries used to instantiate nodes
- one root Context per registered project
"""

import logging
import threading
from typing import Any, Iterable, Optional

from phaseflow.config import ExecutionConfig
from phaseflow.context import Context
from phaseflow.engine import DatasetEngine, InMemoryDatasetEngine
from phaseflow.errors import UnresolvedReferenceError
from phaseflow.instance_registry import InMemoryInstanceRegistry, InstanceRegistry
from phaseflow.listener import ExecutionListener, ListenerChain
from phaseflow.model import Job
from phaseflow.model.registry import KindRegistry, create_default_registries
from phaseflow.result_sink import ResultSink
from phaseflow.schemas import Category, Identifier, LifecycleResult, Project

logger = logging.getLogger(__name__)


class Session:
    """
    Owner of all shared execution resources.

    Usage:
        session = Session(config=load_config(), listeners=[LoggingListener()])
        session.add_project(Project.from_dict(data))
        result = session.run("main", ["create", "build"], args={"date": "2024-01-01"})
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        engine: Optional[DatasetEngine] = None,
        listeners: Iterable[ExecutionListener] = (),
        instance_registry: Optional[InstanceRegistry] = None,
        result_sinks: Iterable[ResultSink] = (),
        namespace: Optional[str] = None,
        registries: Optional[dict[Category, KindRegistry]] = None,
    ):
        self.config = config or ExecutionConfig()
        self.engine = engine or InMemoryDatasetEngine()
        self.listener = ListenerChain(listeners)
        self.instance_registry = instance_registry or InMemoryInstanceRegistry()
        self.result_sinks = list(result_sinks)
        self.namespace = namespace
        self.registries = registries or create_default_registries()

        # Shared by all contexts of this session
        self.resolution_lock = threading.RLock()
        self.resolution_stack: list = []

        self._projects: dict[str, Project] = {}
        self._contexts: dict[str, Context] = {}

    def add_project(self, project: "Project | dict[str, Any]") -> Project:
        """Register a project; replaces a project of the same name."""
        if isinstance(project, dict):
            project = Project.from_dict(project)
        with self.resolution_lock:
            self._projects[project.name] = project
            old = self._contexts.pop(project.name, None)
            if old is not None:
                old.close()
        logger.debug(f"Registered project '{project.name}'")
        return project

    def get_project(self, name: str) -> Project:
        if name not in self._projects:
            raise KeyError(f"Unknown project: {name}. Registered: {list(self._projects)}")
        return self._projects[name]

    def list_projects(self) -> list[str]:
        return list(self._projects.keys())

    def get_context(self, project: Optional[str] = None) -> Context:
        """
        Root context of a project.

        Args:
            project: Project name; may be omitted if exactly one project is registered

        Raises:
            UnresolvedReferenceError: If the project is unknown
        """
        with self.resolution_lock:
            if project is None:
                if len(self._projects) != 1:
                    raise ValueError("Project name required when zero or several projects are registered")
                project = next(iter(self._projects))
            if project not in self._projects:
                raise UnresolvedReferenceError(project, None, f"Unknown project '{project}'")
            context = self._contexts.get(project)
            if context is None:
                context = Context.for_project(self._projects[project], session=self)
                self._contexts[project] = context
            return context

    def get_job(self, job: "Identifier | str") -> Job:
        ident = Identifier.parse(job)
        return self.get_context(ident.project).get_job(ident)

    def runner(self):
        from phaseflow.runner import Runner
        return Runner(self)

    def run(self, job: "Job | Identifier | str", phases: list[Any],
            args: Optional[dict[str, Any]] = None, force: bool = False) -> LifecycleResult:
        """Execute a job with a fresh Runner."""
        return self.runner().execute(job, phases, args=args, force=force)

    def close(self) -> None:
        with self.resolution_lock:
            for context in self._contexts.values():
                context.close()
            self._contexts.clear()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
