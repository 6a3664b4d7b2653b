from __future__ import annotations

from tracegrad import Matrix, ProcedureFactory
from tracegrad.graph import NodeMetadata, NodeRegister


def test_define_returns_existing_node_for_same_matrix() -> None:
    register = NodeRegister()
    matrix = Matrix.ones(2, name="weights")
    node = register.define(matrix, True, 1, 0)
    assert register.define(matrix, False, 1, 4) is node
    assert node.constant
    assert node.name == "weights"
    assert len(register) == 1


def test_lookup_and_metadata() -> None:
    register = NodeRegister()
    a = Matrix.ones(2)
    b = Matrix.zeros(2)
    node_a = register.define(a, False, 0, -1)
    node_b = register.define(b, False, 0, 3, multi_index=False)

    assert register.get(a) is node_a
    assert register.get(Matrix.ones(2)) is None
    assert register.node(1) is node_b
    assert register.node_exists(b)
    assert register.contains(node_a)
    assert register.metadata(node_b) == NodeMetadata(trace_id=0, sequence_id=3)
    assert not node_b.multi_index
    assert list(register) == [node_a, node_b]
    assert register.nodes == [node_a, node_b]


def test_remove_factory_detaches_matrices() -> None:
    register = NodeRegister()
    matrix = Matrix.ones(2)
    matrix.set_factory(ProcedureFactory())
    register.define(matrix, False, 0, 0)
    register.remove_factory()
    assert matrix.factory is None
