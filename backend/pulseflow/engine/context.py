# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Execution Context

Immutable per-run state threaded from node to node.

Every update returns a new ExecutionContext; the mappings are read-only views,
so an abandoned branch can never leak outputs forward.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


def _frozen(mapping: Optional[dict] = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ExecutionContext:
    """
    Execution context for a workflow run.

    Tracks:
    - Node outputs (node_id -> normalized output record)
    - The most recently completed node
    - Named integer variables (survive loop restarts)
    - Current loop iteration (0 on the first pass)
    """
    node_outputs: Mapping[str, Dict[str, Any]] = field(default_factory=_frozen)
    previous_node_id: Optional[str] = None
    previous_node_type: Optional[str] = None
    variables: Mapping[str, int] = field(default_factory=_frozen)
    current_iteration: int = 0

    def get_output(self, node_id: str) -> Optional[Dict[str, Any]]:
        return self.node_outputs.get(node_id)

    @property
    def previous_output(self) -> Optional[Dict[str, Any]]:
        if self.previous_node_id is None:
            return None
        return self.node_outputs.get(self.previous_node_id)


def create_context() -> ExecutionContext:
    """Fresh context for a new run"""
    return ExecutionContext()


def with_output(
    context: ExecutionContext,
    node_id: str,
    node_type: str,
    output: Optional[Dict[str, Any]],
) -> ExecutionContext:
    """
    Record a completed node.

    The previous-node pointer always moves, even when the node produced no
    output record.
    """
    outputs = dict(context.node_outputs)
    if output is not None:
        outputs[node_id] = dict(output)
    return replace(
        context,
        node_outputs=_frozen(outputs),
        previous_node_id=node_id,
        previous_node_type=node_type,
    )


def with_variable(context: ExecutionContext, name: str, value: int) -> ExecutionContext:
    """Bind or rebind a named variable"""
    variables = dict(context.variables)
    variables[name] = int(value)
    return replace(context, variables=_frozen(variables))


def restart_iteration(context: ExecutionContext, iteration: int) -> ExecutionContext:
    """
    Start a new loop pass: node outputs and the previous-node pointer are
    cleared, variables carry over.
    """
    return replace(
        context,
        node_outputs=_frozen(),
        previous_node_id=None,
        previous_node_type=None,
        current_iteration=iteration,
    )
