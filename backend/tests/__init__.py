# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for PulseFlow

Structure:
- engine/: workflow engine tests against an in-memory chain
- unit/: service, API and configuration tests
"""
