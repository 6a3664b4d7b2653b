"""
Node arena for one trace.

Nodes are addressed by their position in the arena; matrices map onto
nodes through their allocation handle, so the same matrix object traced
twice resolves to the same node.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from tracegrad.graph.node import Node
from tracegrad.matrix.matrix import Matrix


@dataclass(frozen=True)
class NodeMetadata:
    trace_id: int
    sequence_id: int


class NodeRegister:
    def __init__(self) -> None:
        self._nodes: List[Node] = []
        self._by_handle: Dict[int, int] = {}
        self._metadata: List[NodeMetadata] = []
        self._matrices: List[Matrix] = []

    def define(
        self,
        matrix: Matrix,
        is_constant: bool,
        trace_id: int,
        sequence_id: int,
        *,
        multi_index: bool = True,
    ) -> Node:
        """Return the node for `matrix`, creating it on first sight."""
        existing = self._by_handle.get(matrix.handle)
        if existing is not None:
            return self._nodes[existing]
        node = Node(
            len(self._nodes), matrix, constant=is_constant, multi_index=multi_index
        )
        self._by_handle[matrix.handle] = node.id
        self._nodes.append(node)
        self._metadata.append(NodeMetadata(trace_id=trace_id, sequence_id=sequence_id))
        self._matrices.append(matrix)
        return node

    def get(self, matrix: Matrix) -> Optional[Node]:
        node_id = self._by_handle.get(matrix.handle)
        return self._nodes[node_id] if node_id is not None else None

    def node(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def node_exists(self, matrix: Matrix) -> bool:
        return matrix.handle in self._by_handle

    def contains(self, node: Node) -> bool:
        return 0 <= node.id < len(self._nodes) and self._nodes[node.id] is node

    def metadata(self, node: Node) -> NodeMetadata:
        return self._metadata[node.id]

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes)

    def remove_factory(self) -> None:
        """Detach every traced matrix from its factory."""
        for matrix in self._matrices:
            matrix.remove_factory()

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)
