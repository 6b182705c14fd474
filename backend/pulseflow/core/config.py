# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
PulseFlow Configuration - Single source of truth.
YAML is king. Env vars ONLY for deployment overrides (RPC URL, log level).

- ALL configuration in plain text (YAML)
- NO hidden state - everything inspectable via `cat`, `grep`
"""

import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pulseflow.core.errors import ConfigurationError


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Chain --
    native_symbol: str = "PLS"
    wrapped_native_address: str = "0xA1077a294dDE1B09bB078844df40758a5D0f9a27"
    rpc_url: str = "https://rpc.pulsechain.com"
    token_decimals: int = 18

    # -- Execution policy --
    default_slippage: float = 0.01
    tx_deadline_seconds: int = 1200
    max_loop_count: int = 3
    max_delay_seconds: int = 10
    default_delay_seconds: int = 10
    default_max_gas_gwei: float = 100.0
    run_timeout_seconds: float = 900.0

    # -- Paths --
    workflows_path: str = "/app/workflows"

    # -- History MCP --
    history_port: int = 7004
    history_enabled: bool = False
    http_timeout: float = 10.0

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def history_mcp_url(self) -> str:
        return f"http://localhost:{self.history_port}"


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = "/app/configs/engine.yaml") -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Raises:
        ConfigurationError: file exists but is not valid YAML
    """
    if not Path(path).exists():
        return Config()

    with open(path) as f:
        try:
            y = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", config_file=path)

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()

    return Config(
        # Chain
        native_symbol=get(y, "chain", "native_symbol") or defaults.native_symbol,
        wrapped_native_address=get(y, "chain", "wrapped_native") or defaults.wrapped_native_address,
        rpc_url=os.getenv("PULSEFLOW_RPC_URL") or get(y, "chain", "rpc_url") or defaults.rpc_url,
        token_decimals=get(y, "chain", "decimals") or defaults.token_decimals,

        # Execution policy
        default_slippage=get(y, "execution", "default_slippage", default=defaults.default_slippage),
        tx_deadline_seconds=get(y, "execution", "deadline_seconds") or defaults.tx_deadline_seconds,
        max_loop_count=get(y, "execution", "max_loop_count") or defaults.max_loop_count,
        max_delay_seconds=get(y, "execution", "max_delay_seconds") or defaults.max_delay_seconds,
        default_delay_seconds=get(y, "execution", "default_delay_seconds") or defaults.default_delay_seconds,
        default_max_gas_gwei=get(y, "execution", "default_max_gas_gwei") or defaults.default_max_gas_gwei,
        run_timeout_seconds=get(y, "execution", "run_timeout_seconds") or defaults.run_timeout_seconds,

        # Paths
        workflows_path=get(y, "paths", "workflows") or defaults.workflows_path,

        # History MCP
        history_port=get(y, "history", "port") or defaults.history_port,
        history_enabled=bool(get(y, "history", "enabled", default=defaults.history_enabled)),
        http_timeout=get(y, "history", "timeout") or defaults.http_timeout,

        # Logging
        log_level=os.getenv("LOG_LEVEL") or get(y, "logging", "level") or defaults.log_level,
        log_format=get(y, "logging", "format") or defaults.log_format,
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("PULSEFLOW_CONFIG_PATH", "/app/configs/engine.yaml")
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
