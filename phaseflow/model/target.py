"""
Targets - units of work scheduled per phase.

For every phase it supports, a target declares the resources it requires
and provides (used only to order targets), answers whether it is dirty, and
executes the phase. The Runner queries `dirty` before every execution; the
answer is never cached across runs because the physical state may change
out-of-band.

Kinds:
- relation: writes a mapping output into a relation (partition)
- file: writes a mapping output to a file location
- check: runs a list of checks (assertions) in VALIDATE or VERIFY
"""

import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from phaseflow.errors import VerificationFailedError
from phaseflow.model.base import Instance
from phaseflow.schemas import (
    Category,
    Identifier,
    Phase,
    ResourceIdentifier,
    Result,
    TargetInstance,
    Trilean,
)

if TYPE_CHECKING:
    from phaseflow.execution import Execution

logger = logging.getLogger(__name__)


class Target(Instance):
    """
    A schedulable unit of work.

    Subclasses declare `phases` and implement the per-phase contract.
    """

    category = Category.TARGET
    phases: frozenset[Phase] = frozenset()

    def supports(self, phase: Phase) -> bool:
        return phase in self.phases

    @property
    def instance(self) -> TargetInstance:
        """Execution identity of this target."""
        return TargetInstance.create(
            self.context.namespace,
            self.context.project,
            self.name,
            self.partition,
        )

    @property
    def partition(self) -> dict[str, Any]:
        return self.attr_map("partition")

    def after(self) -> list[Identifier]:
        """Targets that must run before this one, in addition to resource ordering."""
        return [Identifier.parse(t) for t in self.attr_list("after")]

    def before(self) -> list[Identifier]:
        """Targets that must run after this one."""
        return [Identifier.parse(t) for t in self.attr_list("before")]

    def mapping_inputs(self) -> list[Identifier]:
        """Mapping outputs consumed by this target."""
        return []

    def relation_outputs(self) -> list[Identifier]:
        """Relations written by this target."""
        return []

    def dependencies(self):
        deps = [(Category.MAPPING, m.without_output()) for m in self.mapping_inputs()]
        deps.extend((Category.RELATION, r) for r in self.relation_outputs())
        return deps

    def requires(self, phase: Phase) -> set[ResourceIdentifier]:
        return set()

    def provides(self, phase: Phase) -> set[ResourceIdentifier]:
        return set()

    def dirty(self, execution: "Execution", phase: Phase) -> Trilean:
        """Whether `phase` needs to run. Unsupported phases are never dirty."""
        if not self.supports(phase):
            return Trilean.NO
        return Trilean.YES

    def execute(self, execution: "Execution", phase: Phase) -> Optional[list[Result]]:
        """
        Execute one phase.

        Returns:
            Optional child results (e.g. CheckResults) to attach to the TargetResult

        Raises:
            Any exception; the Runner records it on the TargetResult.
        """
        if not self.supports(phase):
            return None
        return self._execute(execution, phase)

    @abstractmethod
    def _execute(self, execution: "Execution", phase: Phase) -> Optional[list[Result]]:
        pass


class RelationTarget(Target):
    """
    Writes the output of a mapping into a relation.

    Attributes:
        relation: Relation to manage
        mapping: Mapping output to write (without it, BUILD is not supported)
        mode: Write mode (default "overwrite")
        partition: Partition to write
        migrate: Migrate an existing relation during CREATE
    """

    @property
    def phases(self):
        phases = {Phase.CREATE, Phase.VERIFY, Phase.TRUNCATE, Phase.DESTROY}
        if self.attr("mapping", None):
            phases.add(Phase.BUILD)
        return frozenset(phases)

    @property
    def mode(self) -> str:
        return self.attr("mode", "overwrite")

    def _relation(self):
        return self.context.get_relation(self.attr_identifier("relation"))

    def mapping_inputs(self):
        mapping = self.attr_identifier("mapping", None)
        return [mapping] if mapping else []

    def relation_outputs(self):
        return [self.attr_identifier("relation")]

    def _mapping_requires(self) -> set[ResourceIdentifier]:
        resources = set()
        for ident in self.mapping_inputs():
            resources |= self.context.get_mapping(ident).requires()
        return resources

    def requires(self, phase):
        if phase == Phase.CREATE:
            return self._relation().requires()
        if phase in (Phase.BUILD, Phase.TRUNCATE, Phase.DESTROY):
            return self._mapping_requires()
        return set()

    def provides(self, phase):
        if phase == Phase.CREATE or phase == Phase.DESTROY:
            return self._relation().provides()
        if phase == Phase.BUILD or phase == Phase.TRUNCATE:
            return self._relation().provides(self.partition or None)
        return set()

    def dirty(self, execution, phase):
        if not self.supports(phase):
            return Trilean.NO
        relation = self._relation()
        engine = execution.engine
        if phase == Phase.CREATE:
            exists = relation.exists(engine)
            if exists == Trilean.YES and self.attr_bool("migrate"):
                return Trilean.YES
            return ~exists
        if phase == Phase.BUILD:
            if self.mode == "append":
                return Trilean.YES
            return ~relation.loaded(engine, self.partition)
        if phase == Phase.VERIFY:
            return Trilean.YES
        if phase == Phase.TRUNCATE:
            return relation.loaded(engine, self.partition)
        return relation.exists(engine)

    def _execute(self, execution, phase):
        relation = self._relation()
        engine = execution.engine
        if phase == Phase.CREATE:
            if relation.exists(engine) == Trilean.YES:
                relation.migrate(engine)
            else:
                relation.create(engine, if_not_exists=True)
        elif phase == Phase.BUILD:
            mapping_id = self.mapping_inputs()[0]
            mapping = self.context.get_mapping(mapping_id)
            dataset = execution.instantiate(mapping, mapping_id.output_or_default)
            logger.info(f"Writing mapping '{mapping_id}' to relation '{relation.name}'")
            relation.write(engine, dataset, partition=self.partition or None, mode=self.mode)
        elif phase == Phase.VERIFY:
            if relation.loaded(engine, self.partition) == Trilean.NO:
                where = f" partition {self.partition}" if self.partition else ""
                raise VerificationFailedError(
                    self.name, f"relation '{relation.name}'{where} contains no data"
                )
        elif phase == Phase.TRUNCATE:
            relation.truncate(engine, partition=self.partition or None)
        elif phase == Phase.DESTROY:
            relation.destroy(engine, if_exists=True)
        return None


class FileTarget(Target):
    """
    Writes the output of a mapping to a file location.

    CREATE creates the location, BUILD writes the file, VERIFY checks that
    data is present, TRUNCATE removes the data and DESTROY the location.
    """

    phases = frozenset({Phase.CREATE, Phase.BUILD, Phase.VERIFY, Phase.TRUNCATE, Phase.DESTROY})

    @property
    def location(self) -> str:
        return str(self.attr("location")).rstrip("/")

    def mapping_inputs(self):
        return [self.attr_identifier("mapping")]

    def requires(self, phase):
        if phase in (Phase.BUILD, Phase.TRUNCATE, Phase.DESTROY):
            mapping = self.mapping_inputs()[0]
            return self.context.get_mapping(mapping).requires()
        return set()

    def provides(self, phase):
        if phase in (Phase.CREATE, Phase.BUILD, Phase.TRUNCATE, Phase.DESTROY):
            return {ResourceIdentifier.of_file(self.location)}
        return set()

    def dirty(self, execution, phase):
        engine = execution.engine
        if phase == Phase.CREATE:
            return Trilean.of(not engine.exists(self.location))
        if phase == Phase.BUILD:
            return Trilean.of(not engine.exists(self.location, {}))
        if phase == Phase.VERIFY:
            return Trilean.YES
        if phase == Phase.TRUNCATE:
            return Trilean.of(engine.exists(self.location, {}))
        if phase == Phase.DESTROY:
            return Trilean.of(engine.exists(self.location))
        return Trilean.NO

    def _execute(self, execution, phase):
        engine = execution.engine
        if phase == Phase.CREATE:
            if not engine.exists(self.location):
                engine.create(self.location)
        elif phase == Phase.BUILD:
            mapping_id = self.mapping_inputs()[0]
            mapping = self.context.get_mapping(mapping_id)
            dataset = execution.instantiate(mapping, mapping_id.output_or_default)
            engine.write(self.location, dataset, mode=self.attr("mode", "overwrite"))
        elif phase == Phase.VERIFY:
            if not engine.exists(self.location, {}):
                raise VerificationFailedError(self.name, f"file '{self.location}' does not exist")
        elif phase == Phase.TRUNCATE:
            engine.truncate(self.location)
        elif phase == Phase.DESTROY:
            if engine.exists(self.location):
                engine.destroy(self.location)
        return None


class CheckTarget(Target):
    """
    Runs checks in VALIDATE or VERIFY (attribute `phase`, default verify).

    Every check is bracketed by start_check/finish_check on the listener;
    any failed check fails the target.
    """

    @property
    def phases(self):
        return frozenset({Phase.from_string(self.attr("phase", "verify"))})

    def _checks(self):
        return [self.context.get_check(Identifier.parse(c)) for c in self.attr_list("checks")]

    def dependencies(self):
        return [(Category.CHECK, Identifier.parse(c)) for c in self.attr_list("checks")]

    def requires(self, phase):
        resources = set()
        for check in self._checks():
            resources |= check.requires()
        return resources

    def _execute(self, execution, phase):
        results = [execution.run_check(check) for check in self._checks()]
        failed = [r.name for r in results if not r.success]
        if failed:
            raise VerificationFailedError(self.name, f"failed checks: {', '.join(failed)}", results=results)
        return results


TARGET_KINDS: dict[str, type[Target]] = {
    "relation": RelationTarget,
    "file": FileTarget,
    "check": CheckTarget,
}
