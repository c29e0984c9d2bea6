"""
Checks - assertions run by check targets.

A check answers a yes/no question about physical state through the dataset
engine. Checks are run through Execution.run_check, which brackets each one
with start_check/finish_check listener calls and produces a CheckResult.

Kinds:
- exists: the relation exists
- not_empty: the relation (partition) contains data
"""

from abc import abstractmethod
from typing import TYPE_CHECKING

from phaseflow.model.base import Instance
from phaseflow.schemas import Category, ResourceIdentifier, Trilean

if TYPE_CHECKING:
    from phaseflow.execution import Execution


class Check(Instance):
    category = Category.CHECK

    @property
    def description(self) -> str:
        return self.attr("description", f"{self.kind} check '{self.name}'")

    def requires(self) -> set[ResourceIdentifier]:
        return set()

    @abstractmethod
    def run(self, execution: "Execution") -> bool:
        """Return True if the check passes."""
        pass


class _RelationCheck(Check):
    def _relation(self):
        return self.context.get_relation(self.attr_identifier("relation"))

    def dependencies(self):
        return [(Category.RELATION, self.attr_identifier("relation"))]

    def requires(self):
        return self._relation().provides(self.attr_map("partition") or None)


class ExistsCheck(_RelationCheck):
    def run(self, execution):
        return self._relation().exists(execution.engine) == Trilean.YES


class NotEmptyCheck(_RelationCheck):
    def run(self, execution):
        return self._relation().loaded(execution.engine, self.attr_map("partition")) == Trilean.YES


CHECK_KINDS: dict[str, type[Check]] = {
    "exists": ExistsCheck,
    "not_empty": NotEmptyCheck,
}
