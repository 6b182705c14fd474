# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for workflow graph validation
"""

import pytest

from pulseflow.engine.exceptions import WorkflowValidationError
from pulseflow.engine.models import NodeType, WorkflowGraph
from pulseflow.engine.validation import reachable_from, validate_workflow_graph
from tests.fakes import edge, graph, node


def test_valid_graph_returns_start_id():
    """Valid workflow should pass and report its start node"""
    g = graph(
        [node("s", "start"), node("b", "checkBalance"), node("w", "wait", delay=1)],
        [edge("s", "b"), edge("b", "w")],
    )

    assert validate_workflow_graph(g) == "s"


def test_empty_workflow_fails():
    """Empty workflow should fail"""
    with pytest.raises(WorkflowValidationError, match="at least one node"):
        validate_workflow_graph(WorkflowGraph())


def test_duplicate_node_ids_fail():
    """Duplicate node IDs should fail"""
    g = graph([node("s", "start"), node("a", "wait"), node("a", "checkBalance")], [])

    with pytest.raises(WorkflowValidationError, match="Duplicate node IDs") as exc_info:
        validate_workflow_graph(g)
    assert "'a'" in str(exc_info.value)


def test_unknown_node_type_fails():
    g = graph([node("s", "start"), node("x", "telegram")], [edge("s", "x")])

    with pytest.raises(WorkflowValidationError, match="Unknown node type 'telegram'") as exc_info:
        validate_workflow_graph(g)
    assert exc_info.value.field == "nodes[x].type"


def test_missing_start_fails():
    g = graph([node("b", "checkBalance")], [])

    with pytest.raises(WorkflowValidationError, match="no start node"):
        validate_workflow_graph(g)


def test_two_start_nodes_fail():
    g = graph([node("s1", "start"), node("s2", "start")], [])

    with pytest.raises(WorkflowValidationError, match="more than one start node"):
        validate_workflow_graph(g)


def test_dangling_edge_fails():
    """Edge to non-existent node should fail"""
    g = graph([node("s", "start")], [edge("s", "ghost")])

    with pytest.raises(WorkflowValidationError, match="non-existent node: ghost") as exc_info:
        validate_workflow_graph(g)
    assert exc_info.value.field == "edges"


def test_legacy_type_names_are_accepted():
    g = graph(
        [node("s", "start"), node("a", "swapPLS"), node("b", "burn"), node("c", "claim")],
        [edge("s", "a"), edge("a", "b"), edge("b", "c")],
    )

    assert validate_workflow_graph(g) == "s"
    assert NodeType.parse("swapPLS") == NodeType.SWAP_FROM_PLS
    assert NodeType.parse("burn") == NodeType.BURN_TOKEN
    assert NodeType.parse("claim") == NodeType.CLAIM_TOKEN


def test_reachable_excludes_start_and_orphans():
    g = graph(
        [node("s", "start"), node("a", "wait"), node("b", "wait"), node("orphan", "wait")],
        [edge("s", "a"), edge("a", "b"), edge("b", "a")],
    )

    assert reachable_from(g, "s") == {"a", "b"}


def test_edges_accept_snake_case_handles():
    """Both the editor's camelCase and snake_case handle names parse"""
    g = WorkflowGraph.model_validate({
        "nodes": [{"id": "s", "type": "start"}],
        "edges": [{"id": "e1", "source": "s", "target": "s", "source_handle": "output-true"}],
    })

    assert g.edges[0].source_handle == "output-true"
