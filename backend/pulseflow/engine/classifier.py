# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Error Classifier

Turns a raw failure into a categorized, user-facing ParsedError.

Engine exceptions carry their own category. Anything else (adapter errors,
RPC client errors) is matched against an ordered pattern table; the first
match wins. Retryability is advisory only: the engine never retries.
"""

import re
from typing import List, NamedTuple, Optional, Pattern

from pulseflow.engine.exceptions import WorkflowEngineException
from pulseflow.engine.models import ErrorCategory, ParsedError


class ErrorPattern(NamedTuple):
    pattern: Pattern
    user_message: str
    category: ErrorCategory
    retryable: bool


def _p(regex: str) -> Pattern:
    return re.compile(regex, re.IGNORECASE)


REVERT_PATTERN = _p(r"execution reverted|revert|CALL_EXCEPTION")

# Order matters: first match wins
ERROR_PATTERNS: List[ErrorPattern] = [
    # Network / RPC
    ErrorPattern(_p(r"504 Gateway|502 Bad Gateway|503 Service"),
                 "RPC server is temporarily unavailable. Try again in a moment.", "network", True),
    ErrorPattern(_p(r"ETIMEDOUT|ECONNREFUSED|ENOTFOUND|timeout|timed out"),
                 "Request timed out. The network may be congested.", "network", True),
    ErrorPattern(_p(r"rate limit|429|too many requests"),
                 "Too many requests. Please wait and try again.", "network", True),
    ErrorPattern(_p(r"network error|fetch failed|failed to fetch"),
                 "Network connection failed. Check your internet connection.", "network", True),
    # Blockchain
    ErrorPattern(_p(r"insufficient funds"),
                 "Wallet has insufficient funds for this transaction.", "blockchain", False),
    ErrorPattern(_p(r"gas required exceeds|exceeds block gas limit"),
                 "Transaction would fail - gas estimation exceeded.", "blockchain", False),
    ErrorPattern(_p(r"nonce too low|nonce has already been used"),
                 "Transaction conflict - nonce already used. Try again.", "blockchain", True),
    ErrorPattern(REVERT_PATTERN,
                 "Transaction would revert - check your parameters.", "blockchain", False),
    ErrorPattern(_p(r"user rejected|user denied"),
                 "Transaction was rejected.", "blockchain", False),
    ErrorPattern(_p(r"replacement.*underpriced"),
                 "Gas price too low for replacement transaction.", "blockchain", True),
    # Configuration
    ErrorPattern(_p(r"not found|does not exist"),
                 "Resource not found. Check your configuration.", "config", False),
    ErrorPattern(_p(r"invalid address|invalid token"),
                 "Invalid address provided. Check your configuration.", "config", False),
]

UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred."


def _str_attr(obj: object, name: str) -> Optional[str]:
    value = getattr(obj, name, None)
    return value if isinstance(value, str) and value else None


def _extract_tx_hash(error: BaseException) -> Optional[str]:
    for name in ("tx_hash", "transaction_hash", "hash"):
        value = _str_attr(error, name)
        if value:
            return value
    for holder in ("transaction", "receipt"):
        nested = getattr(error, holder, None)
        if isinstance(nested, dict):
            value = nested.get("hash")
            if isinstance(value, str) and value:
                return value
        elif nested is not None:
            value = _str_attr(nested, "hash")
            if value:
                return value
    return None


def classify_error(error: BaseException) -> ParsedError:
    """
    Classify a raw failure.

    Args:
        error: Exception raised while dispatching a node

    Returns:
        ParsedError with category, retryability and a user-facing message
    """
    message = str(error) or error.__class__.__name__
    short_message = _str_attr(error, "short_message")
    code = getattr(error, "code", None)
    code = str(code) if code is not None else None
    revert_reason = _str_attr(error, "reason")
    tx_hash = _extract_tx_hash(error)

    technical_details = " | ".join(
        part for part in (message, short_message, revert_reason, code) if part
    )

    # Engine errors are already classified
    if isinstance(error, WorkflowEngineException) and error.category is not None:
        return ParsedError(
            category=error.category,
            retryable=error.retryable,
            user_message=message,
            technical_details=technical_details,
            code=code,
            short_message=short_message,
            revert_reason=revert_reason,
            tx_hash=tx_hash,
            field=getattr(error, "field", None),
        )

    for entry in ERROR_PATTERNS:
        if entry.pattern.search(technical_details):
            user_message = entry.user_message
            if revert_reason and entry.pattern is REVERT_PATTERN:
                user_message = f"Transaction reverted: {revert_reason}"
            return ParsedError(
                category=entry.category,
                retryable=entry.retryable,
                user_message=user_message,
                technical_details=technical_details,
                code=code,
                short_message=short_message,
                revert_reason=revert_reason,
                tx_hash=tx_hash,
            )

    # Unknown error - generic message, details preserved
    return ParsedError(
        category="unknown",
        retryable=False,
        user_message=UNKNOWN_ERROR_MESSAGE,
        technical_details=technical_details,
        code=code,
        short_message=short_message,
        revert_reason=revert_reason,
        tx_hash=tx_hash,
    )
