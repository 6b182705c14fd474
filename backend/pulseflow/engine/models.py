# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Models

Pydantic models for the PulseFlow workflow engine: the editor's node graph,
the node type catalog with declared outputs, progress events and run outcomes.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, InstanceOf

from pulseflow.engine.context import ExecutionContext


# =============================================================================
# GRAPH
# =============================================================================

class NodeData(BaseModel):
    """Editor payload attached to a node. Only ``config`` matters to the engine."""
    model_config = ConfigDict(extra="allow")

    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class WorkflowNode(BaseModel):
    """A single step of a workflow"""
    id: str
    type: str
    position: Optional[Dict[str, float]] = None  # Editor layout, ignored here
    data: NodeData = Field(default_factory=NodeData)

    @property
    def config(self) -> Dict[str, Any]:
        return self.data.config


class WorkflowEdge(BaseModel):
    """Directed connection, optionally labeled by the source node's output handle"""
    model_config = ConfigDict(populate_by_name=True)  # Allow both 'sourceHandle' and 'source_handle'

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class WorkflowGraph(BaseModel):
    """Node graph as saved by the editor"""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# =============================================================================
# NODE TYPES
# =============================================================================

class NodeType(str, Enum):
    """
    Closed set of node types understood by the engine.

    Transaction nodes:
    - SWAP, SWAP_FROM_PLS, SWAP_TO_PLS: router swaps
    - ADD_LIQUIDITY, ADD_LIQUIDITY_PLS, REMOVE_LIQUIDITY, REMOVE_LIQUIDITY_PLS
    - TRANSFER, TRANSFER_PLS, BURN_TOKEN, CLAIM_TOKEN

    Read nodes:
    - CHECK_BALANCE, CHECK_TOKEN_BALANCE, CHECK_LP_TOKEN_AMOUNTS, DEX_QUOTE

    Control nodes:
    - START: entry point, never dispatched
    - CONDITION: selects the "true" or "false" branch
    - LOOP: restarts the whole chain a bounded number of times
    - GAS_GUARD: stops the run when the previous transaction paid too much gas
    - WAIT: bounded delay
    - VARIABLE, CALCULATOR: named integer values
    """
    START = "start"
    SWAP = "swap"
    SWAP_FROM_PLS = "swapFromPLS"
    SWAP_TO_PLS = "swapToPLS"
    ADD_LIQUIDITY = "addLiquidity"
    ADD_LIQUIDITY_PLS = "addLiquidityPLS"
    REMOVE_LIQUIDITY = "removeLiquidity"
    REMOVE_LIQUIDITY_PLS = "removeLiquidityPLS"
    TRANSFER = "transfer"
    TRANSFER_PLS = "transferPLS"
    BURN_TOKEN = "burnToken"
    CLAIM_TOKEN = "claimToken"
    CHECK_BALANCE = "checkBalance"
    CHECK_TOKEN_BALANCE = "checkTokenBalance"
    CHECK_LP_TOKEN_AMOUNTS = "checkLPTokenAmounts"
    DEX_QUOTE = "dexQuote"
    VARIABLE = "variable"
    CALCULATOR = "calculator"
    CONDITION = "condition"
    LOOP = "loop"
    GAS_GUARD = "gasGuard"
    WAIT = "wait"

    @classmethod
    def parse(cls, value: str) -> "NodeType":
        """Map an editor type tag, including legacy names, to a NodeType"""
        return cls(LEGACY_NODE_TYPES.get(value, value))


# Older saved workflows use these names
LEGACY_NODE_TYPES: Dict[str, str] = {
    "swapPLS": "swapFromPLS",
    "burn": "burnToken",
    "claim": "claimToken",
}


_SWAP_OUTPUT = ("amountOut", "tokenOut", "gasPrice", "gasUsed")
_TX_OUTPUT = ("gasPrice", "gasUsed")

# Declared output fields per node type. None means the node has no output record.
NODE_OUTPUTS: Dict[NodeType, Optional[tuple]] = {
    NodeType.START: None,
    NodeType.SWAP: _SWAP_OUTPUT,
    NodeType.SWAP_FROM_PLS: _SWAP_OUTPUT,
    NodeType.SWAP_TO_PLS: _SWAP_OUTPUT,
    NodeType.ADD_LIQUIDITY: ("liquidity", "amountA", "amountB") + _TX_OUTPUT,
    NodeType.ADD_LIQUIDITY_PLS: ("liquidity", "amountToken", "amountPLS") + _TX_OUTPUT,
    NodeType.REMOVE_LIQUIDITY: ("amountA", "amountB") + _TX_OUTPUT,
    NodeType.REMOVE_LIQUIDITY_PLS: ("amountToken", "amountPLS") + _TX_OUTPUT,
    NodeType.TRANSFER: _TX_OUTPUT,
    NodeType.TRANSFER_PLS: _TX_OUTPUT,
    NodeType.BURN_TOKEN: ("amount", "token") + _TX_OUTPUT,
    NodeType.CLAIM_TOKEN: ("amount", "token") + _TX_OUTPUT,
    NodeType.CHECK_BALANCE: ("balance", "token"),
    NodeType.CHECK_TOKEN_BALANCE: ("balance", "token"),
    NodeType.CHECK_LP_TOKEN_AMOUNTS: (
        "lpBalance", "token0", "token1", "token0Amount", "token1Amount", "ratio",
    ),
    NodeType.DEX_QUOTE: ("quoteAmount",),
    NodeType.VARIABLE: ("name", "value"),
    NodeType.CALCULATOR: ("result",),
    NodeType.CONDITION: ("result", "branch", "value", "threshold"),
    NodeType.LOOP: ("loopCount", "currentIteration", "shouldLoop"),
    NodeType.GAS_GUARD: ("passed", "gasPriceGwei", "threshold"),
    NodeType.WAIT: ("delaySeconds",),
}


def normalize_output(node_type: NodeType, raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Project a raw handler result onto the node type's declared fields.

    Undeclared keys are dropped and ``None`` values are treated as absent, so a
    downstream previousOutput reference fails loudly instead of reading None.
    """
    fields = NODE_OUTPUTS[node_type]
    if fields is None or raw is None:
        return None
    return {name: raw[name] for name in fields if raw.get(name) is not None}


# =============================================================================
# ERRORS
# =============================================================================

ErrorCategory = Literal["network", "blockchain", "config", "unknown"]


class ParsedError(BaseModel):
    """Classified failure surfaced to the caller"""
    category: ErrorCategory
    retryable: bool
    user_message: str
    technical_details: str
    code: Optional[str] = None
    short_message: Optional[str] = None
    revert_reason: Optional[str] = None
    tx_hash: Optional[str] = None
    field: Optional[str] = None


# =============================================================================
# PROGRESS EVENTS
# =============================================================================

class _ProgressEventBase(BaseModel):
    workflow_id: str
    run_id: str
    node_id: str
    node_type: str
    iteration: int
    timestamp: str


class NodeStartEvent(_ProgressEventBase):
    type: Literal["node_start"] = "node_start"


class NodeCompleteEvent(_ProgressEventBase):
    type: Literal["node_complete"] = "node_complete"
    output: Optional[Dict[str, Any]] = None


class NodeErrorEvent(_ProgressEventBase):
    type: Literal["node_error"] = "node_error"
    error: ParsedError


class BranchTakenEvent(_ProgressEventBase):
    type: Literal["branch_taken"] = "branch_taken"
    branch: str
    targets: List[str] = Field(default_factory=list)


class CancelledEvent(_ProgressEventBase):
    type: Literal["cancelled"] = "cancelled"


ProgressEvent = Annotated[
    Union[NodeStartEvent, NodeCompleteEvent, NodeErrorEvent, BranchTakenEvent, CancelledEvent],
    Field(discriminator="type"),
]


# =============================================================================
# RUN OUTCOMES
# =============================================================================

class NodeRunResult(BaseModel):
    """Normalized output of one dispatched node"""
    node_id: str
    node_type: str
    iteration: int
    output: Optional[Dict[str, Any]] = None


class _RunOutcomeBase(BaseModel):
    run_id: str
    workflow_id: str
    started_at: str
    completed_at: str
    iterations: int
    results: List[NodeRunResult] = Field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """JSON-safe view for API responses, without the final context"""
        return self.model_dump(mode="json", exclude={"context"})


class RunSuccess(_RunOutcomeBase):
    status: Literal["success"] = "success"
    context: InstanceOf[ExecutionContext]


class RunFailed(_RunOutcomeBase):
    status: Literal["failed"] = "failed"
    error: ParsedError
    node_id: Optional[str] = None  # None for structural failures
    node_type: Optional[str] = None


class RunCancelled(_RunOutcomeBase):
    status: Literal["cancelled"] = "cancelled"
    node_id: str
    node_type: str


RunOutcome = Union[RunSuccess, RunFailed, RunCancelled]
