"""
Context - scoped resolution of identifiers to node instances.

A Context resolves an Identifier of some category to an instantiated node.
Lookup order:
1. Identifiers of another project are delegated to that project's root
   context through the Session.
2. The context's own definitions: the cached instance if there is one,
   otherwise a fresh instance bound to this context.
3. The parent context.
Absent everywhere, resolution fails with UnresolvedReferenceError.

Instantiation is memoized per (Context, category, identifier): repeated
lookups return the same object for the lifetime of the context. When a node
is instantiated its dependencies are resolved eagerly; an in-progress stack
shared by all contexts of a session detects cycles and fails with
CyclicDependencyError naming the cycle.

Child contexts (`child`) merge environment overrides over the parent's
bindings. Attribute values are interpolated lazily through `evaluate`, so
nodes instantiated in a child see the child's bindings.

Resolution is serialized by one re-entrant lock per session, so worker
threads never observe two instances for one key.
"""

import logging
import re
import threading
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from phaseflow.errors import CyclicDependencyError, UnresolvedReferenceError
from phaseflow.model import Check, Instance, Job, Mapping as MappingNode, Relation, Target
from phaseflow.model.registry import KindRegistry, create_default_registries
from phaseflow.schemas import Category, Identifier, JobSpec, NodeSpec, Project

if TYPE_CHECKING:
    from phaseflow.session import Session

logger = logging.getLogger(__name__)


# Matches "$${" (escaped literal) or "${name}" with dotted names
VAR_PATTERN = re.compile(r"\$\$\{|\$\{([A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z0-9_\-]+)*)\}")

_NOT_FOUND = object()


class Context:
    """
    A named scope resolving identifiers to cached node instances.

    Attributes:
        project: Name of the project this context belongs to
        namespace: Namespace of the project
        parent: Enclosing context (None for a root context)
        session: Owning session (None for standalone contexts)
    """

    def __init__(
        self,
        project: Optional[str] = None,
        namespace: Optional[str] = None,
        environment: Optional[dict[str, Any]] = None,
        definitions: Optional[dict[Category, dict[str, Any]]] = None,
        parent: Optional["Context"] = None,
        session: Optional["Session"] = None,
    ):
        self._parent = parent
        self._session = session if session is not None else (parent.session if parent else None)
        self._project = project if project is not None else (parent.project if parent else None)
        self._namespace = namespace if namespace is not None else (parent.namespace if parent else None)

        env: dict[str, Any] = {}
        if parent is not None:
            env.update(parent._environment)
        else:
            env["project"] = self._project
            env["namespace"] = self._namespace
        env.update(environment or {})
        self._environment = env

        self._definitions: dict[Category, dict[str, Any]] = {c: {} for c in Category}
        for category, defs in (definitions or {}).items():
            self._definitions[Category(category)].update(defs)

        self._cache: dict[tuple[Category, Identifier], Any] = {}
        self._children: list["Context"] = []
        self._closed = False

        if parent is not None:
            self._lock = parent._lock
            self._in_progress = parent._in_progress
            self._registries = parent._registries
        elif self._session is not None:
            self._lock = self._session.resolution_lock
            self._in_progress = self._session.resolution_stack
            self._registries = self._session.registries
        else:
            self._lock = threading.RLock()
            self._in_progress: list[tuple[Category, Identifier]] = []
            self._registries = create_default_registries()

    @classmethod
    def for_project(cls, project: Project, session: Optional["Session"] = None) -> "Context":
        """Create the root context of a project."""
        definitions = {category: project.definitions(category) for category in Category}
        return cls(
            project=project.name,
            namespace=project.namespace if project.namespace is not None else (
                session.namespace if session is not None else None
            ),
            environment=project.environment,
            definitions=definitions,
            session=session,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def project(self) -> Optional[str]:
        return self._project

    @property
    def namespace(self) -> Optional[str]:
        return self._namespace

    @property
    def parent(self) -> Optional["Context"]:
        return self._parent

    @property
    def session(self) -> Optional["Session"]:
        return self._session

    @property
    def environment(self) -> Mapping[str, Any]:
        """Raw (uninterpolated) bindings visible in this scope."""
        return dict(self._environment)

    @property
    def definitions(self) -> dict[Category, dict[str, Any]]:
        """Definitions local to this scope."""
        return {c: dict(d) for c, d in self._definitions.items() if d}

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Scoping
    # ------------------------------------------------------------------

    def child(
        self,
        overrides: Optional[dict[str, Any]] = None,
        definitions: Optional[dict[Category, dict[str, Any]]] = None,
    ) -> "Context":
        """
        Create a nested scope.

        Args:
            overrides: Bindings that win over the parent's environment
            definitions: Node definitions local to the child, by category.
                Definitions re-declared here are instantiated in the child
                and therefore see its bindings.

        Returns:
            The child context. It is closed together with this context.
        """
        if self._closed:
            raise RuntimeError("Cannot create a child of a closed context")
        ctx = Context(environment=overrides, definitions=definitions, parent=self)
        with self._lock:
            self._children.append(ctx)
        return ctx

    def close(self) -> None:
        """Drop all cached instances of this scope and its children."""
        with self._lock:
            for child in list(self._children):
                child.close()
            self._children.clear()
            self._cache.clear()
            self._closed = True
            if self._parent is not None and self in self._parent._children:
                self._parent._children.remove(self)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, identifier: "Identifier | str", category: Category) -> Any:
        """
        Resolve an identifier of a category to its node instance.

        Raises:
            UnresolvedReferenceError: If the name is absent in all scopes
            CyclicDependencyError: If resolution runs into a cycle
        """
        if self._closed:
            raise RuntimeError("Cannot resolve in a closed context")

        ident = Identifier.parse(identifier).without_output()
        ident = ident.with_defaults(self._project, self._namespace)

        if ident.project != self._project or ident.namespace != self._namespace:
            if self._session is None:
                raise UnresolvedReferenceError(ident, category)
            return self._session.get_context(ident.project).resolve(ident, category)

        with self._lock:
            return self._lookup(category, ident)

    def _lookup(self, category: Category, ident: Identifier) -> Any:
        key = (category, ident)
        if ident.name in self._definitions[category]:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            return self._instantiate(category, ident, self._definitions[category][ident.name])
        if key in self._cache:
            return self._cache[key]
        if self._parent is not None:
            return self._parent._lookup(category, ident)
        raise UnresolvedReferenceError(ident, category)

    def _instantiate(self, category: Category, ident: Identifier, spec: Any) -> Any:
        key = (category, ident)
        if key in self._in_progress:
            start = self._in_progress.index(key)
            cycle = [f"{c.value} '{i}'" for c, i in self._in_progress[start:]]
            cycle.append(f"{category.value} '{ident}'")
            raise CyclicDependencyError(cycle)

        self._in_progress.append(key)
        try:
            instance = self._create(category, ident.name, spec)
            for dep_category, dep_ident in instance.dependencies():
                self.resolve(dep_ident, dep_category)
        finally:
            self._in_progress.pop()

        self._cache[key] = instance
        logger.debug(f"Instantiated {category.value} '{ident}' ({instance.kind})")
        return instance

    def _create(self, category: Category, name: str, spec: Any) -> Any:
        if category == Category.JOB:
            if not isinstance(spec, JobSpec):
                spec = JobSpec.from_dict(spec)
            return Job(self, name, spec)
        if not isinstance(spec, NodeSpec):
            spec = NodeSpec.from_dict(spec)
        registry: KindRegistry = self._registries[category]
        return registry.create(self, name, spec)

    def get_mapping(self, identifier: "Identifier | str") -> MappingNode:
        return self.resolve(identifier, Category.MAPPING)

    def get_relation(self, identifier: "Identifier | str") -> Relation:
        return self.resolve(identifier, Category.RELATION)

    def get_target(self, identifier: "Identifier | str") -> Target:
        return self.resolve(identifier, Category.TARGET)

    def get_check(self, identifier: "Identifier | str") -> Check:
        return self.resolve(identifier, Category.CHECK)

    def get_job(self, identifier: "Identifier | str") -> Job:
        return self.resolve(identifier, Category.JOB)

    def get_targets(self, identifiers: Iterable["Identifier | str"]) -> list[Target]:
        return [self.get_target(i) for i in identifiers]

    # ------------------------------------------------------------------
    # Interpolation
    # ------------------------------------------------------------------

    def evaluate(self, value: Any) -> Any:
        """
        Substitute ${name} tokens using this scope's environment.

        Strings, lists and dicts are processed recursively; other values pass
        through. A string consisting of a single token evaluates to the bound
        value itself (keeping its type). Unknown names are left as-is and
        "$${" yields a literal "${".
        """
        return self._evaluate(value, frozenset())

    def _evaluate(self, value: Any, expanding: frozenset) -> Any:
        if isinstance(value, str):
            return self._substitute(value, expanding)
        if isinstance(value, dict):
            return {k: self._evaluate(v, expanding) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._evaluate(v, expanding) for v in value]
        return value

    def _substitute(self, text: str, expanding: frozenset) -> Any:
        match = VAR_PATTERN.fullmatch(text)
        if match and match.group(1):
            found = self._variable(match.group(1), expanding)
            return text if found is _NOT_FOUND else found

        def replace(m: re.Match) -> str:
            if m.group(0) == "$${":
                return "${"
            found = self._variable(m.group(1), expanding)
            return m.group(0) if found is _NOT_FOUND else str(found)

        return VAR_PATTERN.sub(replace, text)

    def _variable(self, name: str, expanding: frozenset) -> Any:
        if name in expanding:
            return _NOT_FOUND
        if name in self._environment:
            value = self._environment[name]
        else:
            head, _, rest = name.partition(".")
            if not rest or head not in self._environment:
                return _NOT_FOUND
            value = self._environment[head]
            for part in rest.split("."):
                if not isinstance(value, dict) or part not in value:
                    return _NOT_FOUND
                value = value[part]
        if value is None:
            return _NOT_FOUND
        return self._evaluate(value, expanding | {name})

    def __repr__(self) -> str:
        depth = 0
        parent = self._parent
        while parent is not None:
            depth += 1
            parent = parent._parent
        return f"Context(project={self._project}, depth={depth})"
