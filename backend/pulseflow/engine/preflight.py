# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node config pre-flight checks.

Checks a single node's form data before it is saved or run, against the live
chain where it matters (is this address a token or an LP pair, does the
wallet hold enough). Results are keyed by config field:

- hard errors: the node cannot run as configured
- soft warnings: the node will run but probably not as intended
"""

import math
import re
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from pulseflow.core.config import Config, get_config
from pulseflow.core.logging import get_engine_logger
from .adapter import ChainAdapter, ContractKind
from .amounts import StaticAmount, parse_amount, to_base_units
from .exceptions import ResolutionError
from .models import NodeType


ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

# Gas guard thresholds above this (gwei) will practically never trip
MAX_SENSIBLE_GAS_GWEI = 10_000_000

LP_NOT_ALLOWED = "LP pair address not allowed. Please use a token address."
TOKEN_NOT_ALLOWED = "Token address not allowed. Please use an LP pair address."


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def _number(raw: Any) -> Optional[float]:
    """Parse a numeric form value; None when it is not a finite number"""
    if isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


class NodeValidationResult(BaseModel):
    """Per-field findings for one node"""
    model_config = ConfigDict(populate_by_name=True)

    hard_errors: Dict[str, str] = Field(default_factory=dict, alias="hardErrors")
    soft_warnings: Dict[str, str] = Field(default_factory=dict, alias="softWarnings")

    @property
    def ok(self) -> bool:
        return not self.hard_errors


class NodeConfigValidator:
    """Pre-flight validation of node form data"""

    def __init__(self, adapter: ChainAdapter, config: Config = None):
        self.adapter = adapter
        self.config = config or get_config()
        self.logger = get_engine_logger("preflight")
        self._checks: Dict[NodeType, Callable[..., Awaitable[None]]] = {
            NodeType.SWAP: self._check_swap,
            NodeType.SWAP_FROM_PLS: self._check_swap,
            NodeType.SWAP_TO_PLS: self._check_swap,
            NodeType.TRANSFER: self._check_transfer,
            NodeType.TRANSFER_PLS: self._check_transfer_pls,
            NodeType.ADD_LIQUIDITY: self._check_token_pair,
            NodeType.ADD_LIQUIDITY_PLS: self._check_single_token,
            NodeType.REMOVE_LIQUIDITY: self._check_token_pair,
            NodeType.REMOVE_LIQUIDITY_PLS: self._check_single_token,
            NodeType.BURN_TOKEN: self._check_playground_token,
            NodeType.CLAIM_TOKEN: self._check_playground_token,
            NodeType.CHECK_TOKEN_BALANCE: self._check_single_token,
            NodeType.CHECK_LP_TOKEN_AMOUNTS: self._check_lp_position,
            NodeType.CONDITION: self._check_condition,
            NodeType.GAS_GUARD: self._check_gas_guard,
            NodeType.LOOP: self._check_loop,
            NodeType.WAIT: self._check_wait,
        }

    async def validate(
        self,
        workflow_id: str,
        node_type: NodeType,
        form_data: Dict[str, Any],
    ) -> NodeValidationResult:
        """
        Validate one node's form data.

        Node types without pre-flight rules always pass.
        """
        result = NodeValidationResult()
        check = self._checks.get(node_type)
        if check is not None:
            await check(workflow_id, node_type, form_data or {}, result)

        if result.hard_errors:
            self.logger.info(
                f"Pre-flight for {node_type.value} in {workflow_id} found "
                f"{len(result.hard_errors)} error(s): {sorted(result.hard_errors)}"
            )
        return result

    # =========================================================================
    # Address checks
    # =========================================================================

    async def _token_error(self, address: str) -> Optional[str]:
        """Error message when ``address`` is not a plain token contract"""
        if not is_address(address):
            return "Invalid address format"
        kind = await self.adapter.get_contract_kind(address)
        if kind == ContractKind.LP_PAIR:
            return LP_NOT_ALLOWED
        if kind not in (ContractKind.TOKEN, ContractKind.PLAYGROUND_TOKEN):
            return "Invalid token contract"
        return None

    async def _lp_error(self, address: str) -> Optional[str]:
        if not is_address(address):
            return "Invalid address format"
        kind = await self.adapter.get_contract_kind(address)
        if kind in (ContractKind.TOKEN, ContractKind.PLAYGROUND_TOKEN):
            return TOKEN_NOT_ALLOWED
        if kind != ContractKind.LP_PAIR:
            return "Invalid LP pair contract"
        return None

    async def _require_token(self, form: Dict[str, Any], field: str, label: str, result: NodeValidationResult) -> None:
        address = form.get(field)
        if not address:
            result.hard_errors[field] = f"{label} is required"
            return
        error = await self._token_error(address)
        if error:
            result.hard_errors[field] = error

    def _require_recipient(self, form: Dict[str, Any], result: NodeValidationResult) -> None:
        to = form.get("to")
        if not to:
            result.hard_errors["to"] = "Recipient address is required"
        elif not is_address(to):
            result.hard_errors["to"] = "Invalid address format"

    def _check_slippage(self, form: Dict[str, Any], result: NodeValidationResult) -> None:
        if form.get("slippage") is None:
            return
        slippage = _number(form["slippage"])
        if slippage is None or slippage < 0 or slippage > 1:
            result.hard_errors["slippage"] = "Slippage must be between 0 and 1"
        elif slippage > 0.5:
            result.soft_warnings["slippage"] = (
                "Slippage is very high, you may receive significantly less than expected"
            )

    def _static_amount(self, raw: Any, field: str) -> Optional[int]:
        """Fixed-point value of a static amount; None for dynamic or unparseable amounts"""
        try:
            parsed = parse_amount(raw, field)
        except ResolutionError:
            return None
        if not isinstance(parsed, StaticAmount) or not parsed.value:
            return None
        try:
            return to_base_units(parsed.value, self.config.token_decimals)
        except ValueError:
            return None

    def _check_amount_against(self, amount: Optional[int], balance: int, field: str, unit: str,
                              result: NodeValidationResult) -> None:
        if amount is None:
            return
        if amount == 0:
            result.soft_warnings[field] = "Amount is 0, this node may not execute as expected"
        elif amount > balance:
            result.soft_warnings[field] = f"You might not have enough {unit}"

    # =========================================================================
    # Per node type
    # =========================================================================

    async def _check_swap(self, workflow_id, node_type, form, result):
        path = form.get("path") or []
        if not path:
            result.hard_errors["path"] = "Token path cannot be empty"
        for i, address in enumerate(path):
            if not address:
                continue
            error = await self._token_error(address)
            if error == LP_NOT_ALLOWED:
                error = "LP pair address not allowed in token path"
            if error:
                result.hard_errors[f"path[{i}]"] = error
        self._check_slippage(form, result)

    async def _check_transfer(self, workflow_id, node_type, form, result):
        await self._require_token(form, "token", "Token address", result)
        self._require_recipient(form, result)

        amount = self._static_amount(form.get("amount"), "amount")
        if amount is not None and "token" not in result.hard_errors:
            balance = await self.adapter.get_token_balance(workflow_id, form["token"])
            self._check_amount_against(amount, balance, "amount", "tokens", result)

    async def _check_transfer_pls(self, workflow_id, node_type, form, result):
        self._require_recipient(form, result)

        amount = self._static_amount(form.get("plsAmount"), "plsAmount")
        if amount is not None:
            balance = await self.adapter.get_native_balance(workflow_id)
            self._check_amount_against(amount, balance, "plsAmount", self.config.native_symbol, result)

    async def _check_token_pair(self, workflow_id, node_type, form, result):
        await self._require_token(form, "tokenA", "Token A address", result)
        await self._require_token(form, "tokenB", "Token B address", result)
        if node_type == NodeType.ADD_LIQUIDITY:
            self._check_slippage(form, result)

    async def _check_single_token(self, workflow_id, node_type, form, result):
        await self._require_token(form, "token", "Token address", result)
        if node_type in (NodeType.ADD_LIQUIDITY_PLS, NodeType.REMOVE_LIQUIDITY_PLS):
            self._check_slippage(form, result)

    async def _check_playground_token(self, workflow_id, node_type, form, result):
        await self._require_token(form, "token", "Token address", result)
        if "token" in result.hard_errors:
            return
        if await self.adapter.get_contract_kind(form["token"]) != ContractKind.PLAYGROUND_TOKEN:
            result.hard_errors["token"] = (
                "Only playground tokens are allowed. This token does not have a parent() function."
            )

    async def _check_lp_position(self, workflow_id, node_type, form, result):
        pair_address = form.get("pairAddress")
        if not pair_address:
            result.hard_errors["pairAddress"] = "Pair address is required"
            return
        error = await self._lp_error(pair_address)
        if error:
            result.hard_errors["pairAddress"] = error

    async def _check_condition(self, workflow_id, node_type, form, result):
        token = form.get("tokenAddress")
        if token:
            error = await self._token_error(token)
            if error:
                result.hard_errors["tokenAddress"] = error

        pair_address = form.get("lpPairAddress")
        if pair_address:
            error = await self._lp_error(pair_address)
            if error:
                result.hard_errors["lpPairAddress"] = error

    async def _check_gas_guard(self, workflow_id, node_type, form, result):
        if form.get("maxGasPrice") is None:
            return
        max_gas = _number(form["maxGasPrice"])
        if max_gas is None or max_gas <= 0:
            result.hard_errors["maxGasPrice"] = "Gas price must be a positive number"
        elif max_gas > MAX_SENSIBLE_GAS_GWEI:
            result.soft_warnings["maxGasPrice"] = "Threshold is very high - gas guard may not trigger"

    async def _check_loop(self, workflow_id, node_type, form, result):
        self._check_bounded(form, "loopCount", 1, self.config.max_loop_count,
                            f"Loop count must be between 1 and {self.config.max_loop_count}",
                            "Maximum loop count reached", result)

    async def _check_wait(self, workflow_id, node_type, form, result):
        self._check_bounded(form, "delay", 1, self.config.max_delay_seconds,
                            f"Delay must be between 1 and {self.config.max_delay_seconds} seconds",
                            "Maximum delay reached", result)

    def _check_bounded(self, form, field, low, high, error, at_max, result):
        if form.get(field) is None:
            return
        value = _number(form[field])
        if value is None or value < low or value > high:
            result.hard_errors[field] = error
        elif value == high:
            result.soft_warnings[field] = at_max
