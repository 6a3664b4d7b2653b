"""
Graph state unit: values and accumulated gradients across sample indices.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from tracegrad.errors import GraphIntegrityError
from tracegrad.matrix.matrix import Matrix
from tracegrad.runtime.storage import SnapshotStorage

# Index under which a dependent node keeps its last value across a reset.
CARRY_INDEX = -1


class Node:
    """
    One traced matrix, addressable per sample index.

    Constant nodes are bound to their prototype matrix and share that value
    across every index (parameters, constants). Multi-index nodes hold one
    value per sample. A non-constant node that is not multi-index holds a
    single shared value that is still cleared on reset (aggregate results).
    """

    def __init__(
        self,
        node_id: int,
        prototype: Matrix,
        *,
        constant: bool = False,
        multi_index: bool = True,
        name: Optional[str] = None,
    ) -> None:
        self.id = node_id
        self.prototype = prototype
        self.constant = constant
        self.multi_index = multi_index and not constant
        self.name = name or prototype.name or f"Node{node_id}"
        self.stop_gradient = False
        self.from_node: Optional[Node] = None
        self.to_node: Optional[Node] = None

        self._values: Dict[int, Matrix] = {}
        self._gradients: Dict[int, Matrix] = {}
        self._shared_value: Optional[Matrix] = None
        self._bound_value: Optional[Matrix] = None
        self._shared_gradient: Optional[Matrix] = None
        self._contributors: Set[int] = set()
        self._snapshots = SnapshotStorage()

    @property
    def handle(self) -> int:
        return self.prototype.handle

    @property
    def shape(self):
        return self.prototype.shape

    def empty_matrix(self) -> Matrix:
        return self.prototype.new_matrix()

    def set_multi_index(self, multi_index: bool) -> None:
        if self.constant:
            return
        self.multi_index = multi_index

    def set_stop_gradient(self, stop_gradient: bool = True) -> None:
        self.stop_gradient = stop_gradient

    def is_dependent(self) -> bool:
        return self.from_node is not None or self.to_node is not None

    # -------------------------------------------------------------------- values

    def get_value(self, index: int) -> Optional[Matrix]:
        if self.constant:
            return self._bound_value if self._bound_value is not None else self.prototype
        if not self.multi_index:
            return self._shared_value
        return self._values.get(index)

    def set_value(self, index: int, value: Matrix) -> None:
        if self.constant:
            raise GraphIntegrityError(f"Constant node `{self.name}` cannot be written.")
        if not self.multi_index:
            self._shared_value = value
        else:
            self._values[index] = value

    def values(self, indices: Iterable[int]) -> List[Optional[Matrix]]:
        return [self.get_value(index) for index in indices]

    def indices(self) -> List[int]:
        return sorted(self._values)

    def bind_zero(self) -> None:
        """Turn a carried input with no counterpart into a constant zero leaf."""
        self._bound_value = self.empty_matrix()
        self.constant = True
        self.multi_index = False
        self.stop_gradient = True
        self._values.clear()
        self._shared_value = None

    def update_value_dependency(self, index: int) -> None:
        """Read the value this node carries over from the previous sample."""
        if self.from_node is None:
            return
        previous = self.from_node.get_value(index - 1)
        self.set_value(index, previous if previous is not None else self.empty_matrix())

    # ----------------------------------------------------------------- gradients

    def _shares_gradient(self) -> bool:
        # constant nodes keep one gradient per index so totals are summed in index order
        return not self.multi_index and not self.constant

    def get_gradient(self, index: int) -> Optional[Matrix]:
        if self._shares_gradient():
            return self._shared_gradient
        return self._gradients.get(index)

    def set_gradient(self, index: int, gradient: Matrix) -> None:
        if self._shares_gradient():
            self._shared_gradient = gradient
        else:
            self._gradients[index] = gradient

    def accumulate_gradient(self, index: int, delta: Matrix, add: bool = True) -> None:
        if self.stop_gradient:
            return
        data = delta.data
        if self.prototype.is_scalar:
            if data.shape != (1, 1):
                data = data.sum().reshape(1, 1)
        elif data.shape != self.prototype.shape:
            data = np.broadcast_to(data, self.prototype.shape)
        if not add:
            data = -data
        current = self.get_gradient(index)
        if current is None:
            self.set_gradient(index, Matrix._wrap(data.copy(), self.prototype.is_scalar))
        else:
            current.data[...] += data
        self._contributors.add(index)

    def update_gradient_dependency(self, index: int) -> None:
        """Pull the gradient flowing back from the next sample's consumer."""
        if self.to_node is None:
            return
        following = self.to_node.get_gradient(index + 1)
        self.accumulate_gradient(
            index, following if following is not None else self.empty_matrix()
        )

    def gradient_mean(self) -> Matrix:
        """Accumulated gradient divided by the number of contributing indices."""
        if not self._contributors:
            return self.empty_matrix()
        if self._shares_gradient():
            total = self._shared_gradient.copy()
        else:
            total = self.empty_matrix()
            for index in sorted(self._gradients):
                total.data[...] += self._gradients[index].data
        total.data[...] /= len(self._contributors)
        return total

    def contributor_count(self) -> int:
        return len(self._contributors)

    # ----------------------------------------------------------------- lifecycle

    def reset(self, keep_dependent: bool = False) -> None:
        """
        Clear per-sample gradients and values.

        Constant values always survive. With `keep_dependent` a node feeding
        the next sample through `to_node` keeps its most recent value under
        `CARRY_INDEX` so the next sequence continues from it.
        """
        self._gradients.clear()
        self._shared_gradient = None
        self._contributors.clear()
        if self.constant:
            return
        if keep_dependent and self.to_node is not None and self._values:
            last = self._values[max(self._values)]
            self._values = {CARRY_INDEX: last}
        else:
            self._values.clear()
            self._shared_value = None

    def store_dependency(self, backup_index: int) -> None:
        self._snapshots.put(backup_index, self._values)

    def restore_dependency(self, backup_index: int) -> None:
        self._values = self._snapshots.get(backup_index)

    def __repr__(self) -> str:
        kind = "constant" if self.constant else ("multi" if self.multi_index else "shared")
        return f"Node({self.id}, {self.name}, {kind})"
