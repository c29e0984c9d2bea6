"""
Mappings - pure transformations in the dependency graph.

A mapping consumes zero or more upstream mapping outputs (or reads a
relation) and produces one or more named outputs. Mappings never write;
evaluation is driven by Execution.instantiate, which memoizes outputs per
phase so a mapping shared by several targets is executed once.

Kinds:
- read: reads a relation (optionally one partition / some columns)
- filter: keeps records matching a condition
- union: concatenates several inputs
- alias: passes an input through under another name
- unit: a scoped sub-pipeline of mappings with its own environment
"""

from abc import abstractmethod
from typing import TYPE_CHECKING, Any

from phaseflow.model.base import Instance
from phaseflow.schemas import DEFAULT_OUTPUT, Category, Identifier, NodeSpec, ResourceIdentifier

if TYPE_CHECKING:
    from phaseflow.context import Context
    from phaseflow.execution import Execution


class Mapping(Instance):
    """A pure transformation with named outputs."""

    category = Category.MAPPING

    def inputs(self) -> list[Identifier]:
        """Upstream mapping outputs consumed by this mapping."""
        return []

    def outputs(self) -> list[str]:
        """Names of the outputs produced by this mapping."""
        return [DEFAULT_OUTPUT]

    def relations(self) -> list[Identifier]:
        """Relations read directly by this mapping."""
        return []

    def dependencies(self):
        deps = [(Category.MAPPING, i.without_output()) for i in self.inputs()]
        deps.extend((Category.RELATION, r) for r in self.relations())
        return deps

    def requires(self) -> set[ResourceIdentifier]:
        """Physical resources read by this mapping and all of its upstream mappings."""
        resources = set(self.direct_requires())
        for ident in self.inputs():
            resources |= self.context.get_mapping(ident).requires()
        return resources

    def direct_requires(self) -> set[ResourceIdentifier]:
        return set()

    @abstractmethod
    def execute(self, execution: "Execution", inputs: dict[Identifier, Any]) -> dict[str, Any]:
        """
        Compute all outputs.

        Args:
            execution: Current execution (gives access to the dataset engine)
            inputs: Datasets of all declared inputs, keyed by input identifier

        Returns:
            Datasets keyed by output name
        """
        pass


class ReadMapping(Mapping):
    """Reads a relation."""

    def _relation(self):
        return self.context.get_relation(self.attr_identifier("relation"))

    def relations(self):
        return [self.attr_identifier("relation")]

    def direct_requires(self):
        return self._relation().resources(self.attr_map("partition") or None)

    def execute(self, execution, inputs):
        dataset = self._relation().read(
            execution.engine,
            partition=self.attr_map("partition") or None,
            columns=self.attr_list("columns"),
        )
        return {DEFAULT_OUTPUT: dataset}


class FilterMapping(Mapping):
    """Keeps the records of its input matching `condition`."""

    def inputs(self):
        return [self.attr_identifier("input")]

    def execute(self, execution, inputs):
        source = inputs[self.inputs()[0]]
        result = execution.engine.transform("filter", [source], {"condition": self.attr("condition")})
        return {DEFAULT_OUTPUT: result}


class UnionMapping(Mapping):
    def inputs(self):
        return [Identifier.parse(i) for i in self.attr_list("inputs")]

    def execute(self, execution, inputs):
        datasets = [inputs[i] for i in self.inputs()]
        result = execution.engine.transform("union", datasets, {"distinct": self.attr_bool("distinct")})
        return {DEFAULT_OUTPUT: result}


class AliasMapping(Mapping):
    def inputs(self):
        return [self.attr_identifier("input")]

    def execute(self, execution, inputs):
        return {DEFAULT_OUTPUT: inputs[self.inputs()[0]]}


class UnitMapping(Mapping):
    """
    A scoped sub-pipeline.

    The nested `mappings` are instantiated in a child context carrying the
    unit's `environment`, so their attributes see the unit's bindings. Every
    nested mapping becomes an output of the unit; nested inputs that do not
    name a sibling are inputs of the unit itself.
    """

    def __init__(self, context: "Context", name: str, spec: NodeSpec):
        super().__init__(context, name, spec)
        definitions = {
            n: NodeSpec.from_dict(s)
            for n, s in spec.attributes.get("mappings", {}).items()
        }
        self.unit_context = context.child(
            spec.attributes.get("environment", {}),
            definitions={Category.MAPPING: definitions},
        )

    def _members(self) -> list[Mapping]:
        return [self.unit_context.get_mapping(Identifier(n)) for n in self.outputs()]

    def outputs(self):
        return list(self.spec.attributes.get("mappings", {}).keys())

    def inputs(self):
        own = set(self.outputs())
        result = []
        for member in self._members():
            for ident in member.inputs():
                if ident.project is None and ident.name in own:
                    continue
                if ident not in result:
                    result.append(ident)
        return result

    def requires(self):
        resources = set()
        for member in self._members():
            resources |= member.requires()
        return resources

    def execute(self, execution, inputs):
        return {m.name: execution.instantiate(m, DEFAULT_OUTPUT) for m in self._members()}


MAPPING_KINDS: dict[str, type[Mapping]] = {
    "read": ReadMapping,
    "filter": FilterMapping,
    "union": UnionMapping,
    "alias": AliasMapping,
    "unit": UnitMapping,
}
