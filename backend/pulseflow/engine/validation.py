# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Graph Validation

Structural checks run before traversal. A graph that fails here never has a
single node dispatched.
"""

from collections import deque
from typing import Dict, List, Set

from .models import NodeType, WorkflowGraph
from .exceptions import WorkflowValidationError


def validate_workflow_graph(graph: WorkflowGraph) -> str:
    """
    Validate workflow structure.

    Returns the id of the unique start node.

    Raises WorkflowValidationError if validation fails.
    """
    # 1. Empty workflow check
    if len(graph.nodes) == 0:
        raise WorkflowValidationError("Workflow must have at least one node", field="nodes")

    # 2. Duplicate node IDs
    node_ids = [node.id for node in graph.nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
        raise WorkflowValidationError(f"Duplicate node IDs found: {duplicates}", field="nodes")

    # 3. Unknown node types
    for node in graph.nodes:
        try:
            NodeType.parse(node.type)
        except ValueError:
            raise WorkflowValidationError(
                f"Unknown node type '{node.type}' on node {node.id}",
                field=f"nodes[{node.id}].type"
            )

    # 4. Exactly one start node
    start_ids = [node.id for node in graph.nodes if NodeType.parse(node.type) == NodeType.START]
    if not start_ids:
        raise WorkflowValidationError("Workflow has no start node", field="nodes")
    if len(start_ids) > 1:
        raise WorkflowValidationError(
            f"Workflow has more than one start node: {start_ids}",
            field="nodes"
        )

    # 5. Invalid edge references
    node_id_set = set(node_ids)
    for edge in graph.edges:
        if edge.source not in node_id_set:
            raise WorkflowValidationError(
                f"Edge {edge.id} references non-existent node: {edge.source}",
                field="edges"
            )
        if edge.target not in node_id_set:
            raise WorkflowValidationError(
                f"Edge {edge.id} references non-existent node: {edge.target}",
                field="edges"
            )

    return start_ids[0]


def reachable_from(graph: WorkflowGraph, start_id: str) -> Set[str]:
    """
    Node ids reachable from ``start_id`` following every edge (start excluded).

    Ignores branch selection, so this is the upper bound of what one pass can
    dispatch.
    """
    adjacency: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    visited: Set[str] = set()
    queue = deque(adjacency.get(start_id, []))
    while queue:
        node_id = queue.popleft()
        if node_id in visited or node_id == start_id:
            continue
        visited.add(node_id)
        queue.extend(adjacency.get(node_id, []))
    return visited
