"""
Dependency graph of one phase.

The Graph is an arena: it owns all nodes in a list and nodes refer to each
other only through integer ids (their list index) held by edges. It is built
fresh per (context, roots, phase) and read-only afterwards.

Edges:
    INPUT       mapping -> mapping / target consuming one of its outputs
    READ        relation -> mapping reading it
    WRITE       target -> relation it manages
    DEPENDENCY  target -> target that requires a resource it provides
                (or that names it in `after`)

build_graph walks breadth-first from the root targets. Node ids are assigned
in discovery order, so the same roots and context state always yield the
same ids and edges. Node creation is memoized per (category, identifier):
two references to the same node within one graph yield the same Node object.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from phaseflow.errors import UnresolvedReferenceError
from phaseflow.schemas import Category, Identifier, Phase

logger = logging.getLogger(__name__)


class EdgeKind(str, Enum):
    INPUT = "input"
    READ = "read"
    WRITE = "write"
    DEPENDENCY = "dependency"


@dataclass(frozen=True)
class Edge:
    """
    Directed edge between two node ids.

    Attributes:
        source: Id of the producing node
        target: Id of the consuming node
        kind: Edge kind
        label: Mapping output or resource name carried by the edge
    """
    source: int
    target: int
    kind: EdgeKind
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        result = {"source": self.source, "target": self.target, "kind": self.kind.value}
        if self.label:
            result["label"] = self.label
        return result


class Node:
    """A graph node wrapping one instantiated mapping, relation or target."""

    category: Category

    def __init__(self, id: int, instance: Any):
        self.id = id
        self.instance = instance

    @property
    def kind(self) -> str:
        return self.instance.kind

    @property
    def name(self) -> str:
        return self.instance.name

    @property
    def identifier(self) -> Identifier:
        return self.instance.identifier

    @property
    def label(self) -> str:
        return f"({self.id}) {self.category.value}/{self.kind}: '{self.name}'"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "kind": self.kind,
            "name": str(self.identifier),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}{self.label}"


class MappingNode(Node):
    category = Category.MAPPING


class RelationNode(Node):
    category = Category.RELATION


class TargetNode(Node):
    category = Category.TARGET


_NODE_TYPES = {
    Category.MAPPING: MappingNode,
    Category.RELATION: RelationNode,
    Category.TARGET: TargetNode,
}


class Graph:
    """
    Nodes and edges reachable from a set of root targets, for one phase.

    Attributes:
        phase: Phase the graph was built for
        nodes: All nodes, indexed by id
        edges: All edges, in insertion order
    """

    def __init__(self, phase: Phase):
        self.phase = phase
        self.nodes: list[Node] = []
        self.edges: list[Edge] = []
        self._index: dict[tuple[Category, Identifier], int] = {}
        self._incoming: list[list[int]] = []
        self._outgoing: list[list[int]] = []
        self._edge_keys: set[tuple[int, int, EdgeKind]] = set()

    def _add_node(self, category: Category, instance: Any) -> tuple[Node, bool]:
        key = (category, instance.identifier)
        if key in self._index:
            return self.nodes[self._index[key]], False
        node = _NODE_TYPES[category](len(self.nodes), instance)
        self.nodes.append(node)
        self._index[key] = node.id
        self._incoming.append([])
        self._outgoing.append([])
        return node, True

    def _add_edge(self, source: Node, target: Node, kind: EdgeKind, label: str = "") -> None:
        key = (source.id, target.id, kind)
        if key in self._edge_keys:
            return
        self._edge_keys.add(key)
        self.edges.append(Edge(source.id, target.id, kind, label))
        index = len(self.edges) - 1
        self._outgoing[source.id].append(index)
        self._incoming[target.id].append(index)

    def node(self, id: int) -> Node:
        return self.nodes[id]

    def find(self, category: Category, identifier: Identifier) -> Optional[Node]:
        index = self._index.get((category, identifier))
        return self.nodes[index] if index is not None else None

    def incoming(self, node: "Node | int", kind: Optional[EdgeKind] = None) -> list[Edge]:
        node_id = node if isinstance(node, int) else node.id
        edges = [self.edges[i] for i in self._incoming[node_id]]
        return [e for e in edges if kind is None or e.kind == kind]

    def outgoing(self, node: "Node | int", kind: Optional[EdgeKind] = None) -> list[Edge]:
        node_id = node if isinstance(node, int) else node.id
        edges = [self.edges[i] for i in self._outgoing[node_id]]
        return [e for e in edges if kind is None or e.kind == kind]

    def predecessors(self, node: "Node | int", kind: Optional[EdgeKind] = None) -> list[Node]:
        return [self.nodes[e.source] for e in self.incoming(node, kind)]

    def successors(self, node: "Node | int", kind: Optional[EdgeKind] = None) -> list[Node]:
        return [self.nodes[e.target] for e in self.outgoing(node, kind)]

    def targets(self) -> list[TargetNode]:
        return [n for n in self.nodes if isinstance(n, TargetNode)]

    def mappings(self) -> list[MappingNode]:
        return [n for n in self.nodes if isinstance(n, MappingNode)]

    def relations(self) -> list[RelationNode]:
        return [n for n in self.nodes if isinstance(n, RelationNode)]

    def upstream_tree(self, node: "Node | int") -> str:
        """Render the upstream dependencies of a node as an indented tree."""
        node = self.nodes[node] if isinstance(node, int) else node
        lines: list[str] = []

        def walk(current: Node, depth: int, path: frozenset) -> None:
            lines.append("  " * depth + current.label)
            for edge in self.incoming(current):
                if edge.source in path:
                    continue
                walk(self.nodes[edge.source], depth + 1, path | {edge.source})

        walk(node, 0, frozenset({node.id}))
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


class GraphBuilder:
    """
    Breadth-first graph construction from root targets.

    Usage:
        builder = GraphBuilder(context, Phase.BUILD)
        builder.add_targets(job.effective_targets())
        graph = builder.build()
    """

    def __init__(self, context: Any, phase: Phase):
        self._context = context
        self._phase = Phase.from_string(phase)
        self._roots: list[Identifier] = []

    def add_target(self, identifier: "Identifier | str") -> "GraphBuilder":
        self._roots.append(Identifier.parse(identifier))
        return self

    def add_targets(self, identifiers: Iterable["Identifier | str"]) -> "GraphBuilder":
        for identifier in identifiers:
            self.add_target(identifier)
        return self

    def build(self) -> Graph:
        """
        Build the graph.

        Raises:
            UnresolvedReferenceError: On any dangling reference
            CyclicDependencyError: If resolving a node runs into a cycle
        """
        phase = self._phase
        graph = Graph(phase)
        queue: deque[Node] = deque()

        root_nodes: list[TargetNode] = []
        for ident in self._roots:
            target = self._context.get_target(ident)
            if not target.supports(phase):
                continue
            node, created = graph._add_node(Category.TARGET, target)
            if created:
                root_nodes.append(node)
                queue.append(node)

        provided = [(node, node.instance.provides(phase)) for node in root_nodes]

        while queue:
            node = queue.popleft()
            if isinstance(node, TargetNode):
                self._expand_target(graph, node, root_nodes, provided, queue)
            elif isinstance(node, MappingNode):
                self._expand_mapping(graph, node, queue)

        logger.debug(f"Built {phase.value} graph with {len(graph.nodes)} nodes and {len(graph.edges)} edges")
        return graph

    def _visit(self, graph: Graph, category: Category, instance: Any, queue: deque) -> Node:
        node, created = graph._add_node(category, instance)
        if created:
            queue.append(node)
        return node

    def _expand_target(self, graph: Graph, node: TargetNode, roots: list[TargetNode],
                       provided: list, queue: deque) -> None:
        target = node.instance
        context = target.context

        for ident in target.mapping_inputs():
            mapping = context.get_mapping(ident)
            self._check_output(mapping, ident)
            source = self._visit(graph, Category.MAPPING, mapping, queue)
            graph._add_edge(source, node, EdgeKind.INPUT, ident.output_or_default)

        for ident in target.relation_outputs():
            relation = context.get_relation(ident)
            dest = self._visit(graph, Category.RELATION, relation, queue)
            graph._add_edge(node, dest, EdgeKind.WRITE)

        required = target.requires(self._phase)
        if required:
            for other, resources in provided:
                if other is node:
                    continue
                matches = sorted(
                    str(r) for r in required for p in resources if p.intersects(r)
                )
                if matches:
                    graph._add_edge(other, node, EdgeKind.DEPENDENCY, matches[0])

        root_ids = {n.identifier: n for n in roots}
        for ident in target.after():
            ident = ident.with_defaults(context.project, context.namespace)
            other = root_ids.get(ident)
            if other is not None and other is not node:
                graph._add_edge(other, node, EdgeKind.DEPENDENCY, "after")
        for ident in target.before():
            ident = ident.with_defaults(context.project, context.namespace)
            other = root_ids.get(ident)
            if other is not None and other is not node:
                graph._add_edge(node, other, EdgeKind.DEPENDENCY, "before")

    def _expand_mapping(self, graph: Graph, node: MappingNode, queue: deque) -> None:
        mapping = node.instance
        context = mapping.context

        for ident in mapping.inputs():
            upstream = context.get_mapping(ident)
            self._check_output(upstream, ident)
            source = self._visit(graph, Category.MAPPING, upstream, queue)
            graph._add_edge(source, node, EdgeKind.INPUT, ident.output_or_default)

        for ident in mapping.relations():
            relation = context.get_relation(ident)
            source = self._visit(graph, Category.RELATION, relation, queue)
            graph._add_edge(source, node, EdgeKind.READ)

    @staticmethod
    def _check_output(mapping: Any, ident: Identifier) -> None:
        if ident.output_or_default not in mapping.outputs():
            raise UnresolvedReferenceError(
                ident,
                Category.MAPPING,
                f"Mapping '{mapping.identifier}' has no output '{ident.output_or_default}'",
            )


def build_graph(context: Any, roots: Iterable["Identifier | str"], phase: Phase) -> Graph:
    """
    Build the dependency graph of `roots` for one phase.

    Targets not supporting the phase are left out.

    Raises:
        UnresolvedReferenceError: On any dangling reference
    """
    return GraphBuilder(context, phase).add_targets(roots).build()
