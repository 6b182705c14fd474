# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Dispatcher

Runs one node: resolves its amounts, derives safety parameters (minimum
outputs from slippage, deadlines), calls the chain adapter, normalizes the
result against the node type's declared outputs and threads the context.

Every NodeType member has exactly one handler; a missing handler fails at
import time rather than at run time.
"""

import asyncio
import math
import operator
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pulseflow.core.config import Config, get_config
from pulseflow.core.logging import get_engine_logger, log_event
from pulseflow.engine.adapter import ZERO_ADDRESS, ChainAdapter, TxReceipt
from pulseflow.engine.amounts import AmountResolver
from pulseflow.engine.context import ExecutionContext, with_output, with_variable
from pulseflow.engine.exceptions import ChainOperationError, GuardTrippedError, NodeConfigError
from pulseflow.engine.models import NodeType, WorkflowNode, normalize_output


HandlerResult = Tuple[Optional[Dict[str, Any]], ExecutionContext]

# Safe comparison operators for condition nodes
COMPARISON_OPERATORS: Dict[str, Callable[[int, int], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
}

CALCULATOR_OPERATIONS = ("add", "subtract", "multiply", "divide")


def apply_slippage(amount: int, slippage: float) -> int:
    """Minimum acceptable amount: ``amount * (1 - slippage)`` in basis points"""
    keep_bps = math.floor((1 - slippage) * 10000)
    return amount * keep_bps // 10000


def _parse_int(raw: Any, default: int) -> int:
    """Lenient integer parse; unparseable or zero falls back to ``default``"""
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return default
    return value or default


def _parse_float(raw: Any, default: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value or default


def _clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))


def _to_int(raw: Any) -> int:
    return int(Decimal(str(raw)))


class NodeDispatcher:
    """
    Executes single workflow nodes against a ChainAdapter.

    ``sleep`` and ``clock`` are injectable so delay nodes and deadlines can be
    tested without real time passing.
    """

    def __init__(
        self,
        adapter: ChainAdapter,
        resolver: AmountResolver = None,
        config: Config = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.adapter = adapter
        self.config = config or get_config()
        self.resolver = resolver or AmountResolver(adapter, self.config)
        self.sleep = sleep
        self.clock = clock
        self.logger = get_engine_logger("dispatcher")

    async def execute(
        self,
        workflow_id: str,
        node: WorkflowNode,
        context: ExecutionContext,
    ) -> Tuple[Optional[Dict[str, Any]], ExecutionContext]:
        """
        Execute a node and return its normalized output with the new context.

        Raises:
            ResolutionError: an amount could not be resolved
            NodeConfigError: required config is missing or malformed
            GuardTrippedError: a guard node stopped the run
            Exception: anything the chain adapter raises
        """
        node_type = NodeType.parse(node.type)
        handler = getattr(self, NODE_HANDLERS[node_type])

        raw, context = await handler(workflow_id, node.config, context)

        output = normalize_output(self._output_type(node_type, node.config), raw)
        return output, with_output(context, node.id, node_type.value, output)

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _output_type(self, node_type: NodeType, cfg: Dict[str, Any]) -> NodeType:
        """Schema the output is normalized against; usePLS liquidity delegates to the PLS handler"""
        if node_type == NodeType.ADD_LIQUIDITY and cfg.get("usePLS") is True:
            return NodeType.ADD_LIQUIDITY_PLS
        return node_type

    def _deadline(self) -> int:
        return int(self.clock()) + self.config.tx_deadline_seconds

    def _slippage(self, cfg: Dict[str, Any]) -> float:
        slippage = cfg.get("slippage")
        if slippage is None:
            return self.config.default_slippage
        try:
            return float(slippage)
        except (TypeError, ValueError):
            raise NodeConfigError(f"Invalid slippage: {slippage!r}", field="slippage")

    async def _recipient(self, workflow_id: str, cfg: Dict[str, Any]) -> str:
        return cfg.get("to") or await self.adapter.get_wallet_address(workflow_id)

    def _require(self, cfg: Dict[str, Any], field: str, node_type: NodeType) -> Any:
        value = cfg.get(field)
        if not value:
            raise NodeConfigError(
                f"{field} is required for {node_type.value}", field=field
            )
        return value

    def _path(self, cfg: Dict[str, Any]) -> List[str]:
        return list(cfg.get("path") or [])

    def _is_wrapped_native(self, token: Optional[str]) -> bool:
        return bool(token) and token.lower() == self.config.wrapped_native_address.lower()

    def _tx_output(self, receipt: TxReceipt, **defaults: Any) -> Dict[str, Any]:
        """Merge receipt outputs over defaults and attach gas data for guard nodes"""
        if not receipt.success:
            raise ChainOperationError(
                "Transaction failed: execution reverted",
                code="CALL_EXCEPTION",
                tx_hash=receipt.tx_hash,
            )
        output = dict(defaults)
        output.update(receipt.outputs)
        output["gasPrice"] = receipt.gas_price
        output["gasUsed"] = receipt.gas_used
        return output

    async def _min_out(self, amount_in: int, path: List[str], slippage: float) -> int:
        """Quote the path and apply slippage. Zero when there is nothing to quote."""
        if not path or amount_in <= 0:
            return 0
        amounts = await self.adapter.get_amounts_out(amount_in, path)
        return apply_slippage(amounts[-1], slippage)

    async def _pool_reserves(self, token_a: str, token_b: str):
        pair_address = await self.adapter.get_pair(token_a, token_b)
        if not pair_address or pair_address.lower() == ZERO_ADDRESS:
            return None
        return await self.adapter.get_reserves(pair_address)

    async def _expected_removal(
        self, token_a: str, token_b: str, liquidity: int, slippage: float
    ) -> Tuple[int, int]:
        """Minimum amounts for burning ``liquidity`` LP tokens at current reserves"""
        reserves = await self._pool_reserves(token_a, token_b)
        if reserves is None or reserves.total_supply <= 0:
            return 0, 0
        reserve_a, reserve_b = reserves.reserves_for(token_a)
        expected_a = reserve_a * liquidity // reserves.total_supply
        expected_b = reserve_b * liquidity // reserves.total_supply
        return apply_slippage(expected_a, slippage), apply_slippage(expected_b, slippage)

    # =========================================================================
    # Swaps
    # =========================================================================

    def _swap_output(self, receipt: TxReceipt, path: List[str]) -> Dict[str, Any]:
        return self._tx_output(
            receipt,
            amountOut=0,
            tokenOut=path[-1] if path else None,
        )

    async def handle_swap(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        if cfg.get("usePLS") is True:
            amount_in = await self.resolver.resolve_field(cfg, "plsAmount", context)
            swap = self.adapter.swap_exact_native_for_tokens
        else:
            amount_in = await self.resolver.resolve_field(cfg, "amountIn", context)
            swap = self.adapter.swap_exact_tokens_for_tokens

        path = self._path(cfg)
        amount_out_min = await self._min_out(amount_in, path, self._slippage(cfg))
        receipt = await swap(
            workflow_id, amount_in, amount_out_min, path,
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._swap_output(receipt, path), context

    async def handle_swap_from_pls(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        amount_in = await self.resolver.resolve_field(cfg, "plsAmount", context)

        path = self._path(cfg)
        if not path or not self._is_wrapped_native(path[0]):
            path = [self.config.wrapped_native_address] + path

        amount_out_min = await self._min_out(amount_in, path, self._slippage(cfg))
        receipt = await self.adapter.swap_exact_native_for_tokens(
            workflow_id, amount_in, amount_out_min, path,
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._swap_output(receipt, path), context

    async def handle_swap_to_pls(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        amount_in = await self.resolver.resolve_field(cfg, "amountIn", context)

        path = self._path(cfg)
        if not path or not self._is_wrapped_native(path[-1]):
            path = path + [self.config.wrapped_native_address]

        amount_out_min = await self._min_out(amount_in, path, self._slippage(cfg))
        receipt = await self.adapter.swap_exact_tokens_for_native(
            workflow_id, amount_in, amount_out_min, path,
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._swap_output(receipt, path), context

    # =========================================================================
    # Liquidity
    # =========================================================================

    async def handle_add_liquidity(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        if cfg.get("usePLS") is True:
            return await self.handle_add_liquidity_pls(workflow_id, cfg, context)

        token_a = self._require(cfg, "tokenA", NodeType.ADD_LIQUIDITY)
        token_b = self._require(cfg, "tokenB", NodeType.ADD_LIQUIDITY)
        amount_a = await self.resolver.resolve_field(cfg, "amountADesired", context)
        amount_b = await self.resolver.resolve_field(cfg, "amountBDesired", context)

        # Quote the second side from reserves when only the first is given
        if amount_b == 0 and amount_a > 0:
            try:
                reserves = await self._pool_reserves(token_a, token_b)
                if reserves is not None:
                    reserve_a, reserve_b = reserves.reserves_for(token_a)
                    if reserve_a > 0:
                        amount_b = amount_a * reserve_b // reserve_a
            except Exception as e:
                log_event(
                    self.logger, "Could not calculate amountBDesired from quote",
                    level="WARNING", workflow_id=workflow_id, error=str(e),
                )

        slippage = self._slippage(cfg)
        receipt = await self.adapter.add_liquidity(
            workflow_id, token_a, token_b, amount_a, amount_b,
            apply_slippage(amount_a, slippage), apply_slippage(amount_b, slippage),
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._tx_output(receipt, amountA=amount_a, amountB=amount_b), context

    async def handle_add_liquidity_pls(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.ADD_LIQUIDITY_PLS)
        amount_token = await self.resolver.resolve_field(cfg, "amountTokenDesired", context)
        amount_pls = await self.resolver.resolve_field(cfg, "plsAmount", context)

        slippage = self._slippage(cfg)
        receipt = await self.adapter.add_liquidity_native(
            workflow_id, token, amount_token, amount_pls,
            apply_slippage(amount_token, slippage), apply_slippage(amount_pls, slippage),
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._tx_output(receipt, amountToken=amount_token, amountPLS=amount_pls), context

    async def handle_remove_liquidity(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token_a = self._require(cfg, "tokenA", NodeType.REMOVE_LIQUIDITY)
        token_b = self._require(cfg, "tokenB", NodeType.REMOVE_LIQUIDITY)
        liquidity = await self.resolver.resolve_field(cfg, "liquidity", context)
        slippage = self._slippage(cfg)

        amount_a_min, amount_b_min = 0, 0
        if liquidity > 0:
            try:
                amount_a_min, amount_b_min = await self._expected_removal(
                    token_a, token_b, liquidity, slippage
                )
            except Exception as e:
                log_event(
                    self.logger, "Could not calculate min amounts for remove liquidity",
                    level="WARNING", workflow_id=workflow_id, error=str(e),
                )

        receipt = await self.adapter.remove_liquidity(
            workflow_id, token_a, token_b, liquidity, amount_a_min, amount_b_min,
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._tx_output(receipt), context

    async def handle_remove_liquidity_pls(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.REMOVE_LIQUIDITY_PLS)
        liquidity = await self.resolver.resolve_field(cfg, "liquidity", context)
        slippage = self._slippage(cfg)

        amount_token_min, amount_pls_min = 0, 0
        if liquidity > 0:
            try:
                amount_token_min, amount_pls_min = await self._expected_removal(
                    token, self.config.wrapped_native_address, liquidity, slippage
                )
            except Exception as e:
                log_event(
                    self.logger, "Could not calculate min amounts for remove liquidity PLS",
                    level="WARNING", workflow_id=workflow_id, error=str(e),
                )

        receipt = await self.adapter.remove_liquidity_native(
            workflow_id, token, liquidity, amount_token_min, amount_pls_min,
            await self._recipient(workflow_id, cfg), self._deadline(),
        )
        return self._tx_output(receipt), context

    # =========================================================================
    # Transfers
    # =========================================================================

    async def handle_transfer(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.TRANSFER)
        amount = await self.resolver.resolve_field(cfg, "amount", context)
        receipt = await self.adapter.transfer_token(
            workflow_id, token, await self._recipient(workflow_id, cfg), amount
        )
        return self._tx_output(receipt), context

    async def handle_transfer_pls(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        amount = await self.resolver.resolve_field(cfg, "plsAmount", context)
        receipt = await self.adapter.transfer_native(
            workflow_id, await self._recipient(workflow_id, cfg), amount
        )
        return self._tx_output(receipt), context

    async def handle_burn_token(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.BURN_TOKEN)
        amount = await self.resolver.resolve_field(cfg, "amount", context)
        receipt = await self.adapter.burn_token(workflow_id, token, amount)
        return self._tx_output(receipt, amount=amount, token=token), context

    async def handle_claim_token(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.CLAIM_TOKEN)
        amount = await self.resolver.resolve_field(cfg, "amount", context)
        receipt = await self.adapter.claim_token(workflow_id, token, amount)
        return self._tx_output(receipt, amount=amount, token=token), context

    # =========================================================================
    # Reads
    # =========================================================================

    async def handle_check_balance(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = cfg.get("token")
        if token and token.upper() != self.config.native_symbol.upper():
            balance = await self.adapter.get_token_balance(workflow_id, token)
            return {"balance": balance, "token": token}, context

        balance = await self.adapter.get_native_balance(workflow_id)
        return {"balance": balance, "token": self.config.native_symbol}, context

    async def handle_check_token_balance(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        token = self._require(cfg, "token", NodeType.CHECK_TOKEN_BALANCE)
        balance = await self.adapter.get_token_balance(workflow_id, token)
        return {"balance": balance, "token": token}, context

    async def handle_check_lp_token_amounts(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        pair_address = self._require(cfg, "pairAddress", NodeType.CHECK_LP_TOKEN_AMOUNTS)
        position = await self.adapter.get_lp_position(workflow_id, pair_address)
        return {
            "lpBalance": position.lp_balance,
            "token0": position.token0,
            "token1": position.token1,
            "token0Amount": position.token0_amount,
            "token1Amount": position.token1_amount,
            "ratio": position.ratio,
        }, context

    async def handle_dex_quote(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        path = self._path(cfg)
        if len(path) < 2:
            raise NodeConfigError("dexQuote requires a path of at least two tokens", field="path")

        amount = await self.resolver.resolve_field(cfg, "amount", context)
        mode = cfg.get("quoteMode") or "amountsOut"
        if mode == "amountsOut":
            amounts = await self.adapter.get_amounts_out(amount, path)
            quote = amounts[-1]
        elif mode == "amountsIn":
            amounts = await self.adapter.get_amounts_in(amount, path)
            quote = amounts[0]
        else:
            raise NodeConfigError(f"Unknown quoteMode: {mode}", field="quoteMode")

        return {"quoteAmount": quote}, context

    # =========================================================================
    # Variables
    # =========================================================================

    async def handle_variable(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        name = cfg.get("variableName") or cfg.get("name")
        if not name:
            raise NodeConfigError("variableName is required for variable", field="variableName")

        value = await self.resolver.resolve_field(cfg, "value", context)
        return {"name": name, "value": value}, with_variable(context, name, value)

    async def handle_calculator(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        operation = cfg.get("operation") or "add"
        if operation not in CALCULATOR_OPERATIONS:
            raise NodeConfigError(f"Unknown calculator operation: {operation}", field="operation")

        left = await self.resolver.resolve_field(cfg, "leftOperand", context)
        right = await self.resolver.resolve_field(cfg, "rightOperand", context)
        scale = 10 ** self.config.token_decimals

        if operation == "add":
            result = left + right
        elif operation == "subtract":
            result = left - right
        elif operation == "multiply":
            result = left * right // scale
        else:
            if right == 0:
                raise NodeConfigError("Calculator cannot divide by zero", field="rightOperand")
            result = left * scale // right

        store_as = cfg.get("storeAs")
        if store_as:
            context = with_variable(context, store_as, result)
        return {"result": result}, context

    # =========================================================================
    # Control
    # =========================================================================

    async def handle_start(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        # Entry point; its config is ignored
        return None, context

    async def _condition_operand(
        self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext
    ) -> int:
        condition_type = cfg.get("conditionType")

        if condition_type == "plsBalance":
            return await self.adapter.get_native_balance(workflow_id)

        if condition_type == "tokenBalance":
            token = self._require(cfg, "tokenAddress", NodeType.CONDITION)
            return await self.adapter.get_token_balance(workflow_id, token)

        if condition_type == "lpAmount":
            pair_address = self._require(cfg, "lpPairAddress", NodeType.CONDITION)
            position = await self.adapter.get_lp_position(workflow_id, pair_address)
            return position.lp_balance

        if condition_type == "previousOutput":
            field = self._require(cfg, "previousOutputField", NodeType.CONDITION)
            previous = context.previous_output
            if previous is None or previous.get(field) is None:
                raise NodeConfigError(
                    f"Condition: previous node output does not have field: {field}",
                    field="previousOutputField",
                )
            try:
                return _to_int(previous[field])
            except (InvalidOperation, ValueError):
                raise NodeConfigError(
                    f"Condition: previous output field '{field}' is not numeric",
                    field="previousOutputField",
                )

        raise NodeConfigError(f"Unknown conditionType: {condition_type}", field="conditionType")

    async def handle_condition(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        op_symbol = cfg.get("operator") or ">"
        compare = COMPARISON_OPERATORS.get(op_symbol)
        if compare is None:
            raise NodeConfigError(f"Unsupported operator: {op_symbol}", field="operator")

        value = await self._condition_operand(workflow_id, cfg, context)
        threshold = await self.resolver.resolve_field(cfg, "value", context)

        result = compare(value, threshold)
        return {
            "result": result,
            "branch": "true" if result else "false",
            "value": value,
            "threshold": threshold,
        }, context

    async def handle_loop(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        loop_count = _clamp(_parse_int(cfg.get("loopCount"), 1), 1, self.config.max_loop_count)
        return {
            "loopCount": loop_count,
            "shouldLoop": True,
            "currentIteration": context.current_iteration,
        }, context

    async def handle_gas_guard(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        max_gas_gwei = _parse_float(cfg.get("maxGasPrice"), self.config.default_max_gas_gwei)

        if context.previous_node_id is None:
            raise NodeConfigError("Gas Guard: No previous node to check gas from")

        previous = context.previous_output
        if previous is None or previous.get("gasPrice") is None:
            raise NodeConfigError(
                "Gas Guard: Previous node did not produce a transaction with gas price data"
            )

        # gasPrice is in wei
        gas_price_gwei = _to_int(previous["gasPrice"]) / 1e9
        if gas_price_gwei > max_gas_gwei:
            raise GuardTrippedError(
                f"Gas Guard stopped automation: Gas price was {gas_price_gwei:.2f} gwei, "
                f"threshold was {max_gas_gwei:g} gwei",
                observed=gas_price_gwei,
                threshold=max_gas_gwei,
            )

        return {
            "passed": True,
            "gasPriceGwei": gas_price_gwei,
            "threshold": max_gas_gwei,
        }, context

    async def handle_wait(self, workflow_id: str, cfg: Dict[str, Any], context: ExecutionContext) -> HandlerResult:
        delay = _clamp(
            _parse_int(cfg.get("delay"), self.config.default_delay_seconds),
            1,
            self.config.max_delay_seconds,
        )
        await self.sleep(delay)
        return {"delaySeconds": delay}, context


# One handler per node type
NODE_HANDLERS: Dict[NodeType, str] = {
    NodeType.START: "handle_start",
    NodeType.SWAP: "handle_swap",
    NodeType.SWAP_FROM_PLS: "handle_swap_from_pls",
    NodeType.SWAP_TO_PLS: "handle_swap_to_pls",
    NodeType.ADD_LIQUIDITY: "handle_add_liquidity",
    NodeType.ADD_LIQUIDITY_PLS: "handle_add_liquidity_pls",
    NodeType.REMOVE_LIQUIDITY: "handle_remove_liquidity",
    NodeType.REMOVE_LIQUIDITY_PLS: "handle_remove_liquidity_pls",
    NodeType.TRANSFER: "handle_transfer",
    NodeType.TRANSFER_PLS: "handle_transfer_pls",
    NodeType.BURN_TOKEN: "handle_burn_token",
    NodeType.CLAIM_TOKEN: "handle_claim_token",
    NodeType.CHECK_BALANCE: "handle_check_balance",
    NodeType.CHECK_TOKEN_BALANCE: "handle_check_token_balance",
    NodeType.CHECK_LP_TOKEN_AMOUNTS: "handle_check_lp_token_amounts",
    NodeType.DEX_QUOTE: "handle_dex_quote",
    NodeType.VARIABLE: "handle_variable",
    NodeType.CALCULATOR: "handle_calculator",
    NodeType.CONDITION: "handle_condition",
    NodeType.LOOP: "handle_loop",
    NodeType.GAS_GUARD: "handle_gas_guard",
    NodeType.WAIT: "handle_wait",
}

_unhandled = [t.value for t in NodeType if not hasattr(NodeDispatcher, NODE_HANDLERS.get(t, ""))]
if _unhandled:
    raise RuntimeError(f"Node types without a dispatcher handler: {_unhandled}")
