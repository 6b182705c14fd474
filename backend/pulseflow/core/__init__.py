# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for PulseFlow.

This package contains:
- config: Configuration management
- errors: Custom exceptions
- logging: Structured logging
"""

from pulseflow.core.config import get_config, Config
from pulseflow.core.errors import PulseFlowError, NotFoundError, ValidationError
from pulseflow.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "PulseFlowError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
