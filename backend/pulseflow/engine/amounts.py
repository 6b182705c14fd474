# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Amount Resolver

Turns the declarative amount descriptors stored in node configs into concrete
integer amounts (18 implied decimals).

Descriptor JSON, as saved by the editor:

    {"type": "static", "value": "1.5"}
    {"type": "previousOutput", "field": "amountOut", "percentage": 50}
    {"type": "currentBalance", "token": "0x...", "percentage": 100}   # removed
    {"type": "lpRatio", "baseAmountField": "amountADesired",
     "baseTokenField": "tokenA", "pairedToken": "0x..."}
    {"type": "variable", "name": "budget"}

Bare strings are legacy base-unit integers ("1000000000000000000"), and a
missing amount resolves to 0.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from pulseflow.core.config import Config, get_config
from pulseflow.engine.adapter import ZERO_ADDRESS, ChainAdapter
from pulseflow.engine.context import ExecutionContext
from pulseflow.engine.exceptions import PoolNotFoundError, ResolutionError


# =============================================================================
# DESCRIPTORS
# =============================================================================

class _Descriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StaticAmount(_Descriptor):
    """Human-readable decimal, e.g. "1.5" -> 1.5 * 10**18"""
    type: Literal["static"] = "static"
    value: str = "0"

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_number(cls, v: Any) -> Any:
        if v is None:
            return "0"
        if isinstance(v, (int, float)):
            return str(v)
        return v


class PreviousOutputAmount(_Descriptor):
    """Percentage of a field of the previous node's output"""
    type: Literal["previousOutput"] = "previousOutput"
    field: str
    percentage: float = 100


class CurrentBalanceAmount(_Descriptor):
    """Removed option. Still parsed so old workflows fail with a clear message."""
    type: Literal["currentBalance"] = "currentBalance"
    token: Optional[str] = None
    percentage: float = 100


class LpRatioAmount(_Descriptor):
    """
    Amount of ``pairedToken`` matching another amount field at the pool's ratio.

    Either ``baseTokenField`` names a config field holding the base token, or
    ``baseToken`` holds a literal address (legacy form).
    """
    type: Literal["lpRatio"] = "lpRatio"
    base_amount_field: str = Field(alias="baseAmountField")
    base_token_field: Optional[str] = Field(default=None, alias="baseTokenField")
    base_token: Optional[str] = Field(default=None, alias="baseToken")
    paired_token: Optional[str] = Field(default=None, alias="pairedToken")


class VariableAmount(_Descriptor):
    """Value of a named variable bound earlier in the run"""
    type: Literal["variable"] = "variable"
    name: str


AmountDescriptor = Annotated[
    Union[StaticAmount, PreviousOutputAmount, CurrentBalanceAmount, LpRatioAmount, VariableAmount],
    Field(discriminator="type"),
]

_descriptor_adapter = TypeAdapter(AmountDescriptor)


class LpQuote(BaseModel):
    """Amount of ``baseToken`` that pairs with ``baseAmount`` of ``pairedToken``"""
    model_config = ConfigDict(populate_by_name=True)

    quoted_amount: str = Field(alias="quotedAmount")  # base units, as a string for JSON clients
    quoted_amount_formatted: str = Field(alias="quotedAmountFormatted")
    base_token: str = Field(alias="baseToken")
    paired_token: str = Field(alias="pairedToken")
    base_amount: str = Field(alias="baseAmount")
    pair_address: str = Field(alias="pairAddress")
    output_decimals: int = Field(alias="outputDecimals")


def parse_amount(raw: Any, field: Optional[str] = None) -> Union[AmountDescriptor, str, None]:
    """
    Parse a raw config value into a descriptor.

    Returns None for a missing amount and the string itself for legacy
    base-unit values.
    """
    if raw is None or isinstance(raw, BaseModel):
        return raw
    if isinstance(raw, bool):
        raise ResolutionError(f"Invalid amount for '{field}': {raw!r}", field=field)
    if isinstance(raw, int):
        return str(raw)
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        try:
            return _descriptor_adapter.validate_python(raw)
        except PydanticValidationError as e:
            raise ResolutionError(
                f"Invalid amount configuration for '{field}' (type={raw.get('type')!r}): "
                f"{e.errors()[0]['msg']}",
                field=field,
            ) from e
    raise ResolutionError(f"Invalid amount for '{field}': {raw!r}", field=field)


def to_base_units(value: str, decimals: int = 18) -> int:
    """
    Parse a decimal string into fixed point.

    Strings with more fractional digits than ``decimals`` are not valid
    decimal amounts and fall back to raw integer parsing, like any other
    string the decimal parser rejects.
    """
    value = (value or "").strip() or "0"
    try:
        scaled = Decimal(value).scaleb(decimals)
        if not scaled.is_finite() or scaled != scaled.to_integral_value():
            raise InvalidOperation(value)
        return int(scaled)
    except InvalidOperation:
        return int(value)


def format_units(value: int, decimals: int = 18) -> str:
    """Base units -> decimal string, keeping at least one fractional digit ("2.0")"""
    whole, frac = divmod(value, 10 ** decimals)
    frac_digits = str(frac).rjust(decimals, "0").rstrip("0") or "0"
    return f"{whole}.{frac_digits}"


# =============================================================================
# RESOLVER
# =============================================================================

class AmountResolver:
    """
    Resolves amount descriptors against the node config, the execution
    context and, for pool ratios, live pool reserves.
    """

    def __init__(self, adapter: ChainAdapter, config: Config = None):
        self.adapter = adapter
        self.config = config or get_config()

    def _to_chain_token(self, token: Optional[str]) -> Optional[str]:
        """Native coin symbol -> wrapped native address (pools hold the wrapped coin)"""
        if token and token.upper() == self.config.native_symbol.upper():
            return self.config.wrapped_native_address
        return token

    def _is_native(self, token: Optional[str]) -> bool:
        if not token:
            return False
        return (
            token.upper() == self.config.native_symbol.upper()
            or token.lower() == self.config.wrapped_native_address.lower()
        )

    async def resolve_field(
        self,
        node_config: Dict[str, Any],
        field: str,
        context: ExecutionContext,
    ) -> int:
        """Resolve the amount stored under ``field`` of a node config"""
        return await self.resolve(node_config.get(field), node_config, context, field=field)

    async def resolve(
        self,
        descriptor: Any,
        node_config: Dict[str, Any],
        context: ExecutionContext,
        field: Optional[str] = None,
    ) -> int:
        """
        Resolve a descriptor (or raw config value) to an integer amount.

        Raises:
            ResolutionError: missing data, unknown descriptor or removed option
        """
        parsed = parse_amount(descriptor, field)

        if parsed is None:
            return 0

        if isinstance(parsed, str):
            try:
                return int(parsed.strip() or "0")
            except ValueError:
                raise ResolutionError(
                    f"Invalid base-unit amount for '{field}': {parsed!r}", field=field
                )

        if isinstance(parsed, StaticAmount):
            try:
                return to_base_units(parsed.value, self.config.token_decimals)
            except ValueError:
                raise ResolutionError(
                    f"Invalid amount for '{field}': {parsed.value!r}", field=field
                )

        if isinstance(parsed, PreviousOutputAmount):
            return self._resolve_previous_output(parsed, context, field)

        if isinstance(parsed, CurrentBalanceAmount):
            raise ResolutionError(
                'Wallet balance option has been removed. '
                'Use "Custom Amount" or "Previous Output" instead.',
                field=field,
            )

        if isinstance(parsed, LpRatioAmount):
            return await self._resolve_lp_ratio(parsed, node_config, context, field)

        if isinstance(parsed, VariableAmount):
            if parsed.name not in context.variables:
                raise ResolutionError(
                    f"Variable '{parsed.name}' is not defined (used by '{field}')", field=field
                )
            return int(context.variables[parsed.name])

        raise ResolutionError(f"Unknown amount configuration for '{field}'", field=field)

    def _resolve_previous_output(
        self,
        descriptor: PreviousOutputAmount,
        context: ExecutionContext,
        field: Optional[str],
    ) -> int:
        if context.previous_node_id is None:
            raise ResolutionError(
                f"No previous node output available for '{field}'", field=field
            )

        previous = context.previous_output
        if previous is None:
            raise ResolutionError(
                f"Previous node {context.previous_node_id} has no output", field=field
            )

        raw_value = previous.get(descriptor.field)
        if raw_value is None:
            raise ResolutionError(
                f"Previous node output does not have field: {descriptor.field}", field=field
            )

        try:
            value = int(Decimal(str(raw_value)))
        except (InvalidOperation, ValueError):
            raise ResolutionError(
                f"Previous node output field '{descriptor.field}' is not numeric: {raw_value!r}",
                field=field,
            )

        # Basis points keep the percentage out of float math on the amount
        keep_bps = math.floor(descriptor.percentage * 100)
        return value * keep_bps // 10000

    async def _resolve_lp_ratio(
        self,
        descriptor: LpRatioAmount,
        node_config: Dict[str, Any],
        context: ExecutionContext,
        field: Optional[str],
    ) -> int:
        base_field = descriptor.base_amount_field
        base_config = node_config.get(base_field)
        if not base_config:
            raise ResolutionError(
                f"LP ratio base amount field '{base_field}' not found in node config",
                field=field,
            )

        base_descriptor = parse_amount(base_config, base_field)
        if isinstance(base_descriptor, LpRatioAmount):
            raise ResolutionError(
                f"LP ratio base amount field '{base_field}' cannot itself be an LP ratio",
                field=field,
            )

        base_amount = await self.resolve(base_descriptor, node_config, context, field=base_field)
        if base_amount == 0:
            return 0

        if descriptor.base_token_field:
            base_token = node_config.get(descriptor.base_token_field)
        else:
            # Legacy literal: the node's own token wins over a stale saved address
            base_token = node_config.get("token") or descriptor.base_token

        base_token = self._to_chain_token(base_token)
        paired_token = self._to_chain_token(descriptor.paired_token)
        if not base_token or not paired_token:
            raise ResolutionError(
                "LP ratio calculation requires both tokens to be specified", field=field
            )

        pair_address, reserve_base, reserve_paired = await self._pool_reserves(base_token, paired_token, field)

        # Inverted config: the base amount is denominated in the native coin
        # while the paired token is that same coin, so the ratio flips.
        if (
            self.config.native_symbol.lower() in base_field.lower()
            and self._is_native(descriptor.paired_token)
        ):
            reserve_base, reserve_paired = reserve_paired, reserve_base

        if reserve_base == 0 or reserve_paired == 0:
            raise ResolutionError(
                f"Pool {pair_address} has zero reserves", field=field
            )

        return base_amount * reserve_paired // reserve_base

    async def _pool_reserves(self, base_token: str, paired_token: str, field: Optional[str]) -> tuple:
        """(pair address, reserve of base token, reserve of paired token)"""
        pair_address = await self.adapter.get_pair(base_token, paired_token)
        if not pair_address or pair_address.lower() == ZERO_ADDRESS:
            raise PoolNotFoundError("No LP exists between the specified tokens", field=field)

        reserves = await self.adapter.get_reserves(pair_address)
        reserve_base, reserve_paired = reserves.reserves_for(base_token)
        return pair_address, reserve_base, reserve_paired

    async def quote_lp(self, base_token: str, paired_token: str, base_amount: str) -> LpQuote:
        """
        Quote how much ``base_token`` pairs with ``base_amount`` of ``paired_token``.

        ``base_amount`` is a human-readable decimal in the paired token's
        units; the native symbol is accepted for ``paired_token``.

        Raises:
            ResolutionError: no pool, an empty pool or an unparseable amount
        """
        try:
            amount_in = to_base_units(str(base_amount), self.config.token_decimals)
        except ValueError:
            raise ResolutionError(f"Invalid amount: {base_amount!r}", field="baseAmount")
        if amount_in < 0:
            raise ResolutionError(f"Invalid amount: {base_amount!r}", field="baseAmount")

        base = self._to_chain_token(base_token)
        pair_address, reserve_base, reserve_paired = await self._pool_reserves(
            base, self._to_chain_token(paired_token), "pairedToken"
        )
        if reserve_base == 0 or reserve_paired == 0:
            raise ResolutionError(f"Pool {pair_address} has zero reserves", field="pairedToken")

        quoted = amount_in * reserve_base // reserve_paired
        decimals = await self.adapter.get_token_decimals(base)
        return LpQuote(
            quoted_amount=str(quoted),
            quoted_amount_formatted=format_units(quoted, decimals),
            base_token=base_token,
            paired_token=paired_token,
            base_amount=str(base_amount),
            pair_address=pair_address,
            output_decimals=decimals,
        )
