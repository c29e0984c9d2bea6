"""
Kind registry - static dispatch from a node definition's `kind` to its class.

Each node category (mapping, relation, target, check) is a closed set of
variants. The default tables are built from the *_KINDS dicts of the model
modules; a Session may carry registries extended with custom kinds.
"""

from typing import TYPE_CHECKING

from phaseflow.model.base import Instance
from phaseflow.model.check import CHECK_KINDS
from phaseflow.model.mapping import MAPPING_KINDS
from phaseflow.model.relation import RELATION_KINDS
from phaseflow.model.target import TARGET_KINDS
from phaseflow.schemas import Category, NodeSpec

if TYPE_CHECKING:
    from phaseflow.context import Context


class KindRegistry:
    """
    Registry of node classes by kind, for one category.

    Usage:
        registry = KindRegistry.create_default(Category.MAPPING)
        registry.register("sql", SqlMapping)
        mapping = registry.create(context, "orders", spec)
    """

    def __init__(self, category: Category) -> None:
        self.category = category
        self._kinds: dict[str, type[Instance]] = {}

    def register(self, kind: str, cls: type[Instance]) -> None:
        """
        Register a class for a kind.

        Raises:
            TypeError: If the class belongs to another category
        """
        if getattr(cls, "category", None) != self.category:
            raise TypeError(
                f"Cannot register {cls.__name__} as {self.category.value} kind '{kind}'"
            )
        self._kinds[kind] = cls

    def get(self, kind: str) -> type[Instance]:
        """
        Get the class registered for a kind.

        Raises:
            KeyError: If no class is registered for this kind
        """
        if kind not in self._kinds:
            registered = list(self._kinds.keys())
            raise KeyError(
                f"No {self.category.value} kind registered: {kind}. "
                f"Registered: {registered}"
            )
        return self._kinds[kind]

    def has(self, kind: str) -> bool:
        return kind in self._kinds

    def list_kinds(self) -> list[str]:
        return list(self._kinds.keys())

    def create(self, context: "Context", name: str, spec: NodeSpec) -> Instance:
        """Instantiate a node of the registered class for spec.kind."""
        return self.get(spec.kind)(context, name, spec)

    @classmethod
    def create_default(cls, category: Category) -> "KindRegistry":
        registry = cls(category)
        for kind, kind_cls in DEFAULT_KINDS[category].items():
            registry.register(kind, kind_cls)
        return registry


DEFAULT_KINDS: dict[Category, dict[str, type[Instance]]] = {
    Category.MAPPING: MAPPING_KINDS,
    Category.RELATION: RELATION_KINDS,
    Category.TARGET: TARGET_KINDS,
    Category.CHECK: CHECK_KINDS,
}


def create_default_registries() -> dict[Category, KindRegistry]:
    """One default registry per node category."""
    return {category: KindRegistry.create_default(category) for category in DEFAULT_KINDS}
