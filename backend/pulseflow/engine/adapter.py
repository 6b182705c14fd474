# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Chain Adapter interface.

The engine never signs, estimates gas or encodes ABI calls itself. Everything
that touches the chain goes through a ChainAdapter implementation, which also
owns serialization of the per-workflow signing key across concurrent runs.

All amounts are integers in base units (18 implied decimals for PLS and most
tokens). Adapters raise ChainOperationError (or any exception carrying
``code`` / ``short_message`` / ``reason`` / ``tx_hash`` attributes) on failure.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ContractKind(str, Enum):
    """What a contract address turned out to be"""
    TOKEN = "token"
    PLAYGROUND_TOKEN = "playgroundToken"  # ERC-20 with a parent() contract
    LP_PAIR = "lpPair"
    UNKNOWN = "unknown"  # No contract, or one that answers neither interface


class TxReceipt(BaseModel):
    """Outcome of a state-changing transaction"""
    success: bool = True
    tx_hash: Optional[str] = None
    gas_price: int = 0  # wei
    gas_used: int = 0
    outputs: Dict[str, Any] = Field(default_factory=dict)  # Type-specific fields, e.g. amountOut


class PoolReserves(BaseModel):
    """Pair reserves as reported by the pool contract"""
    pair_address: str
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    total_supply: int = 0

    def reserves_for(self, token: str) -> tuple:
        """(reserve of ``token``, reserve of the other token)"""
        if self.token0.lower() == token.lower():
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0


class LpPosition(BaseModel):
    """Wallet's share of a liquidity pool"""
    lp_balance: int
    token0: str
    token1: str
    token0_amount: int
    token1_amount: int
    ratio: float


class ChainAdapter(ABC):
    """Async boundary between the workflow engine and the blockchain"""

    # -- Wallet --

    @abstractmethod
    async def get_wallet_address(self, workflow_id: str) -> str:
        """Address of the workflow's dedicated wallet"""

    # -- Swaps --

    @abstractmethod
    async def swap_exact_tokens_for_tokens(
        self, workflow_id: str, amount_in: int, amount_out_min: int,
        path: List[str], to: str, deadline: int,
    ) -> TxReceipt:
        ...

    @abstractmethod
    async def swap_exact_native_for_tokens(
        self, workflow_id: str, amount_in: int, amount_out_min: int,
        path: List[str], to: str, deadline: int,
    ) -> TxReceipt:
        ...

    @abstractmethod
    async def swap_exact_tokens_for_native(
        self, workflow_id: str, amount_in: int, amount_out_min: int,
        path: List[str], to: str, deadline: int,
    ) -> TxReceipt:
        ...

    # -- Liquidity --

    @abstractmethod
    async def add_liquidity(
        self, workflow_id: str, token_a: str, token_b: str,
        amount_a_desired: int, amount_b_desired: int,
        amount_a_min: int, amount_b_min: int, to: str, deadline: int,
    ) -> TxReceipt:
        ...

    @abstractmethod
    async def add_liquidity_native(
        self, workflow_id: str, token: str, amount_token_desired: int,
        amount_native: int, amount_token_min: int, amount_native_min: int,
        to: str, deadline: int,
    ) -> TxReceipt:
        ...

    @abstractmethod
    async def remove_liquidity(
        self, workflow_id: str, token_a: str, token_b: str, liquidity: int,
        amount_a_min: int, amount_b_min: int, to: str, deadline: int,
    ) -> TxReceipt:
        ...

    @abstractmethod
    async def remove_liquidity_native(
        self, workflow_id: str, token: str, liquidity: int,
        amount_token_min: int, amount_native_min: int, to: str, deadline: int,
    ) -> TxReceipt:
        ...

    # -- Transfers --

    @abstractmethod
    async def transfer_token(self, workflow_id: str, token: str, to: str, amount: int) -> TxReceipt:
        ...

    @abstractmethod
    async def transfer_native(self, workflow_id: str, to: str, amount: int) -> TxReceipt:
        ...

    @abstractmethod
    async def burn_token(self, workflow_id: str, token: str, amount: int) -> TxReceipt:
        ...

    @abstractmethod
    async def claim_token(self, workflow_id: str, token: str, amount: int) -> TxReceipt:
        ...

    # -- Reads --

    @abstractmethod
    async def get_native_balance(self, workflow_id: str) -> int:
        ...

    @abstractmethod
    async def get_token_balance(self, workflow_id: str, token: str) -> int:
        ...

    @abstractmethod
    async def get_lp_position(self, workflow_id: str, pair_address: str) -> LpPosition:
        ...

    @abstractmethod
    async def get_pair(self, token_a: str, token_b: str) -> str:
        """Pair address, or ZERO_ADDRESS when no pool exists"""

    @abstractmethod
    async def get_reserves(self, pair_address: str) -> PoolReserves:
        ...

    @abstractmethod
    async def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        ...

    @abstractmethod
    async def get_amounts_in(self, amount_out: int, path: List[str]) -> List[int]:
        ...

    # -- Contract inspection --

    @abstractmethod
    async def get_contract_kind(self, address: str) -> ContractKind:
        """
        Classify the contract at ``address``.

        LP pairs also answer name(), so pair detection takes precedence over
        token detection. Lookup failures are reported as UNKNOWN.
        """

    async def get_token_decimals(self, token: str) -> int:
        return 18

    # -- Run control --

    async def is_cancelled(self, workflow_id: str, run_id: str) -> bool:
        """Whether the run has been marked cancelled. Polled before every node."""
        return False
