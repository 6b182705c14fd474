# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Exceptions

Custom exceptions for the PulseFlow workflow engine.

Engine-raised errors carry their own classification (``category`` and
``retryable``) so the error classifier does not have to pattern-match them.
"""

from typing import Optional


class WorkflowEngineException(Exception):
    """Base exception for the workflow engine"""
    category = "unknown"
    retryable = False


class WorkflowValidationError(WorkflowEngineException):
    """Workflow graph failed structural validation"""
    category = "config"

    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(message)


class ResolutionError(WorkflowEngineException):
    """An amount descriptor could not be resolved"""
    category = "config"

    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(message)


class PoolNotFoundError(ResolutionError):
    """No liquidity pool exists for a token pair"""


class NodeConfigError(WorkflowEngineException):
    """Node configuration is missing or malformed"""
    category = "config"

    def __init__(self, message: str, field: str = None):
        self.message = message
        self.field = field
        super().__init__(message)


class GuardTrippedError(WorkflowEngineException):
    """A guard node stopped the run"""
    category = "blockchain"
    retryable = True

    def __init__(self, message: str, observed: float = None, threshold: float = None):
        self.message = message
        self.observed = observed
        self.threshold = threshold
        super().__init__(message)


class ChainOperationError(WorkflowEngineException):
    """
    Raised by chain adapters when a read or transaction fails.

    Not pre-classified: the classifier matches ``message``, ``short_message``,
    ``reason`` and ``code`` against its pattern table.
    """
    category = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        short_message: Optional[str] = None,
        reason: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.short_message = short_message
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(message)
