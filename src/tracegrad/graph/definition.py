"""
Contract between the engine and the computation it traces.
"""

from __future__ import annotations

from typing import Dict, List

from tracegrad.matrix.matrix import Matrix


class ForwardDefinition:
    """
    A computation that `ProcedureFactory.get_procedure` can trace.

    `get_input_matrices(reset_previous_input)` is called once per trace and
    must return fresh input matrices keyed by entry index. Recurrent
    definitions keep their previous output between calls and feed it back
    into the next `get_forward_procedure`; passing `True` asks them to start
    from an initial state instead.

    `get_forward_procedure()` performs the computation on the current inputs
    and returns the output matrices keyed by entry index.
    """

    reversed_input: bool = False
    joined_input: bool = False

    def get_input_matrices(self, reset_previous_input: bool) -> Dict[int, Matrix]:
        raise NotImplementedError

    def get_forward_procedure(self) -> Dict[int, Matrix]:
        raise NotImplementedError

    def get_parameter_matrices(self) -> List[Matrix]:
        """Trainable matrices; gradients are reported for these."""
        return []

    def get_constant_matrices(self) -> List[Matrix]:
        """Matrices shared by every sample that never receive gradients."""
        return []

    def get_stop_gradient_matrices(self) -> List[Matrix]:
        """Traced matrices whose gradient accumulation is suppressed."""
        return []
