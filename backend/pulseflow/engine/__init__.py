# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
PulseFlow Workflow Engine

Sequential node-graph execution against a chain adapter:
- Amount resolution (static, previous output, pool ratio, variables)
- Immutable execution context
- Condition branches, bounded loops, gas guards, delays
- Error classification and cooperative cancellation
- Pre-flight node checks and pool-ratio quotes
"""

from .adapter import ChainAdapter, ContractKind, LpPosition, PoolReserves, TxReceipt
from .amounts import AmountResolver, LpQuote
from .classifier import classify_error
from .context import ExecutionContext, create_context, with_output, with_variable
from .dispatcher import NodeDispatcher
from .events import ExecutionLogSink, HistoryEventSink, LoggingEventSink
from .exceptions import (
    ChainOperationError,
    GuardTrippedError,
    NodeConfigError,
    PoolNotFoundError,
    ResolutionError,
    WorkflowEngineException,
    WorkflowValidationError,
)
from .executor import WorkflowRunner
from .models import (
    NodeType,
    ParsedError,
    RunCancelled,
    RunFailed,
    RunOutcome,
    RunSuccess,
    WorkflowEdge,
    WorkflowGraph,
    WorkflowNode,
)
from .preflight import NodeConfigValidator, NodeValidationResult

__all__ = [
    "ChainAdapter",
    "ContractKind",
    "LpPosition",
    "PoolReserves",
    "TxReceipt",
    "AmountResolver",
    "LpQuote",
    "classify_error",
    "ExecutionContext",
    "create_context",
    "with_output",
    "with_variable",
    "NodeDispatcher",
    "ExecutionLogSink",
    "HistoryEventSink",
    "LoggingEventSink",
    "ChainOperationError",
    "GuardTrippedError",
    "NodeConfigError",
    "PoolNotFoundError",
    "ResolutionError",
    "WorkflowEngineException",
    "WorkflowValidationError",
    "WorkflowRunner",
    "NodeType",
    "ParsedError",
    "RunCancelled",
    "RunFailed",
    "RunOutcome",
    "RunSuccess",
    "WorkflowEdge",
    "WorkflowGraph",
    "WorkflowNode",
    "NodeConfigValidator",
    "NodeValidationResult",
]
