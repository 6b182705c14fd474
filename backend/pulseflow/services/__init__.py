# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Service layer for PulseFlow.

Hosts workflow runs on top of the engine.
"""

from pulseflow.services.workflow_service import (
    ActiveRun,
    FileWorkflowStore,
    WorkflowService,
    WorkflowStore,
)

__all__ = [
    "ActiveRun",
    "FileWorkflowStore",
    "WorkflowService",
    "WorkflowStore",
]
