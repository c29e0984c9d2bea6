"""
Base class for instantiated nodes.

An Instance binds a definition (NodeSpec) to the Context that resolved it.
Attribute values are never evaluated up front: every read goes through
Context.evaluate, so environment overrides of a child scope apply to all
attribute reads performed by nodes instantiated in that scope.
"""

from abc import ABC
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from phaseflow.schemas import Category, Identifier, NodeSpec

if TYPE_CHECKING:
    from phaseflow.context import Context


_MISSING = object()

_TRUE = ("true", "yes", "1", "on")
_FALSE = ("false", "no", "0", "off")


class Instance(ABC):
    """
    An instantiated node of some category.

    Subclasses set `category` and implement the capabilities of their
    category (see Mapping, Relation, Target, Check).
    """

    category: ClassVar[Category]

    def __init__(self, context: "Context", name: str, spec: NodeSpec):
        self.context = context
        self.name = name
        self.spec = spec

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def identifier(self) -> Identifier:
        """Fully qualified identifier of this node."""
        return Identifier(self.name, project=self.context.project, namespace=self.context.namespace)

    def attr(self, key: str, default: Any = _MISSING) -> Any:
        """
        Read and interpolate an attribute.

        Raises:
            ValueError: If the attribute is absent and no default is given
        """
        if key not in self.spec.attributes:
            if default is _MISSING:
                raise ValueError(
                    f"{self.category.value} '{self.name}' ({self.kind}): missing attribute '{key}'"
                )
            return default
        return self.context.evaluate(self.spec.attributes[key])

    def attr_list(self, key: str) -> list[Any]:
        """Read an attribute as list; a single value becomes a one-element list."""
        value = self.attr(key, None)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    def attr_map(self, key: str) -> dict[str, Any]:
        value = self.attr(key, None)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError(f"{self.category.value} '{self.name}': attribute '{key}' must be a mapping")
        return dict(value)

    def attr_bool(self, key: str, default: bool = False) -> bool:
        value = self.attr(key, default)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"{self.category.value} '{self.name}': attribute '{key}' is not a boolean: {value!r}")

    def attr_identifier(self, key: str, default: Any = _MISSING) -> Optional[Identifier]:
        value = self.attr(key, default)
        if value is None:
            return None
        return Identifier.parse(value)

    def dependencies(self) -> list[tuple[Category, Identifier]]:
        """Nodes that must be resolvable for this node to work."""
        return []

    def describe(self) -> dict[str, Any]:
        """Describe this node with interpolated attributes."""
        return {
            "category": self.category.value,
            "kind": self.kind,
            "name": str(self.identifier),
            "attributes": {k: self.attr(k) for k in self.spec.attributes},
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name}, kind={self.kind})"
