# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared test fixtures.
"""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pulseflow.core.config import Config
from tests.fakes import FakeChain


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def chain():
    """Fresh in-memory chain"""
    return FakeChain()


@pytest.fixture
def config():
    """Engine config with library defaults (no YAML)"""
    return Config()


@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays"""
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
