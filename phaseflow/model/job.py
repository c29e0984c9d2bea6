"""
Jobs - named, parameterized collections of targets and child jobs.

A job does not execute anything itself. The Runner asks it for its
arguments (parameters merged with defaults), its environment and its
effective target list, then schedules the targets phase by phase.
"""

from typing import TYPE_CHECKING, Any, Optional

from phaseflow.errors import CyclicDependencyError, JobArgumentError
from phaseflow.schemas import Category, Identifier, JobInstance, JobParameter, JobSpec, Phase

if TYPE_CHECKING:
    from phaseflow.context import Context


class Job:
    """
    A job bound to the context that resolved it.

    Attributes:
        context: Resolving context
        name: Job name
        spec: Job definition
    """

    category = Category.JOB

    def __init__(self, context: "Context", name: str, spec: JobSpec):
        self.context = context
        self.name = name
        self.spec = spec

    @property
    def kind(self) -> str:
        return "job"

    @property
    def identifier(self) -> Identifier:
        return Identifier(self.name, project=self.context.project, namespace=self.context.namespace)

    @property
    def description(self) -> str:
        return self.spec.description

    @property
    def parameters(self) -> tuple[JobParameter, ...]:
        return self.spec.parameters

    @property
    def phases(self) -> tuple[Phase, ...]:
        return self.spec.phases

    @property
    def fail_fast(self) -> Optional[bool]:
        return self.spec.fail_fast

    def targets(self) -> list[Identifier]:
        """Own targets in declared order."""
        return [Identifier.parse(t) for t in self.spec.targets]

    def jobs(self) -> list["Job"]:
        """Child jobs in declared order."""
        return [self.context.get_job(Identifier.parse(j)) for j in self.spec.jobs]

    def dependencies(self) -> list[tuple[Category, Identifier]]:
        return [(Category.JOB, Identifier.parse(j)) for j in self.spec.jobs]

    def arguments(self, args: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Merge explicit arguments with parameter defaults.

        Raises:
            JobArgumentError: On unknown parameters or missing required ones
        """
        args = dict(args or {})
        declared = {p.name: p for p in self.parameters}

        unknown = set(args) - set(declared)
        if unknown:
            raise JobArgumentError(self.name, unknown, "unknown parameters")

        missing = {name for name, p in declared.items() if p.required and name not in args}
        if missing:
            raise JobArgumentError(self.name, missing, "missing required parameters")

        result = {}
        for name, parameter in declared.items():
            result[name] = args[name] if name in args else parameter.default
        return result

    def environment(self, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Bindings for the job scope.

        Child job environments and parameter defaults come first, then this
        job's environment, then the arguments of this run.
        """
        env: dict[str, Any] = {}
        for child in self.jobs():
            for parameter in child.parameters:
                if not parameter.required:
                    env[parameter.name] = parameter.default
            env.update(child.environment())
        env.update(self.spec.environment)
        env.update(arguments or {})
        return env

    def instance(self, arguments: Optional[dict[str, Any]] = None) -> JobInstance:
        return JobInstance.create(self.context.namespace, self.context.project, self.name, arguments)

    def effective_targets(self) -> list[Identifier]:
        """
        Own targets followed by the targets of all child jobs (recursively),
        without duplicates, in declaration order.

        Raises:
            CyclicDependencyError: If child jobs include each other
        """
        result: list[Identifier] = []
        seen: set[Identifier] = set()
        self._collect_targets(result, seen, [])
        return result

    def _collect_targets(self, result: list[Identifier], seen: set[Identifier], stack: list["Job"]) -> None:
        if any(j is self for j in stack):
            names = [str(j.identifier) for j in stack[stack.index(self):]] + [str(self.identifier)]
            raise CyclicDependencyError(names)
        stack.append(self)
        for target in self.targets():
            key = target.with_defaults(self.context.project, self.context.namespace)
            if key not in seen:
                seen.add(key)
                result.append(key)
        for child in self.jobs():
            child._collect_targets(result, seen, stack)
        stack.pop()

    def describe(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "name": str(self.identifier),
            "targets": [str(t) for t in self.targets()],
            "jobs": list(self.spec.jobs),
            "parameters": [p.name for p in self.parameters],
            "phases": [p.value for p in self.phases],
        }

    def __repr__(self) -> str:
        return f"Job(name={self.name})"
