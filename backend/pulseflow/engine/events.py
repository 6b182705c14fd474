# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Log Sinks

Receive progress events from the runner. The engine does not care whether or
how events are stored; a failing sink never fails a run.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from pulseflow.core.logging import get_engine_logger, log_event
from pulseflow.engine.models import (
    BranchTakenEvent,
    CancelledEvent,
    NodeCompleteEvent,
    NodeErrorEvent,
    NodeStartEvent,
    ProgressEvent,
    RunOutcome,
)


class ExecutionLogSink(ABC):
    """Receives ProgressEvents for persistence or streaming"""

    async def start_run(self, workflow_id: str, run_id: str) -> None:
        """Called once before the first node of a run"""

    @abstractmethod
    async def emit(self, event: ProgressEvent) -> None:
        ...

    async def finish_run(self, outcome: RunOutcome) -> None:
        """Called once with the terminal outcome of a run"""

    async def close(self) -> None:
        """Release resources held by the sink"""


def describe_event(event: ProgressEvent) -> str:
    """One-line human description of an event"""
    if isinstance(event, NodeStartEvent):
        return f"Node '{event.node_id}' ({event.node_type}) started"
    if isinstance(event, NodeCompleteEvent):
        return f"Node '{event.node_id}' ({event.node_type}) completed"
    if isinstance(event, NodeErrorEvent):
        return f"Node '{event.node_id}' ({event.node_type}) failed: {event.error.user_message}"
    if isinstance(event, BranchTakenEvent):
        targets = ", ".join(event.targets) or "no edge"
        return f"Condition '{event.node_id}' took branch '{event.branch}' -> {targets}"
    if isinstance(event, CancelledEvent):
        return f"Execution cancelled by user before node '{event.node_id}'"
    return f"Event {event.type} on node '{event.node_id}'"


class LoggingEventSink(ExecutionLogSink):
    """Writes each event as a structured log line"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_engine_logger("events")

    async def emit(self, event: ProgressEvent) -> None:
        level = "ERROR" if isinstance(event, NodeErrorEvent) else "INFO"
        log_event(
            self.logger,
            describe_event(event),
            level=level,
            **event.model_dump(mode="json"),
        )

    async def finish_run(self, outcome: RunOutcome) -> None:
        log_event(
            self.logger,
            f"Workflow run finished with status: {outcome.status}",
            level="INFO" if outcome.status != "failed" else "WARNING",
            run_event="run_finished",
            workflow_id=outcome.workflow_id,
            run_id=outcome.run_id,
            status=outcome.status,
            iterations=outcome.iterations,
            nodes_executed=len(outcome.results),
        )


class HistoryEventSink(ExecutionLogSink):
    """
    Logs workflow execution to History MCP.

    Fails gracefully if History MCP is unavailable.
    """

    def __init__(self, history_mcp_url: str, timeout: float = 10.0, client: httpx.AsyncClient = None):
        self.history_mcp_url = history_mcp_url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.enabled = True  # Will be set to False if History MCP unavailable
        self.sessions: Dict[str, str] = {}  # run_id -> session_id
        self.logger = get_engine_logger("history")

    async def _call_tool(self, tool: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.post(
            f"{self.history_mcp_url}/mcp/call_tool",
            json={"tool": tool, "arguments": arguments},
        )
        response.raise_for_status()
        result = response.json()
        content = result.get("content", [{}])[0]
        return json.loads(content.get("text", "{}"))

    async def start_run(self, workflow_id: str, run_id: str) -> None:
        """Create a History MCP session for the run"""
        if not self.enabled:
            return

        try:
            data = await self._call_tool(
                "create_session",
                {
                    "title": f"Workflow: {workflow_id}",
                    "metadata": {
                        "type": "workflow_run",
                        "workflow_id": workflow_id,
                        "run_id": run_id,
                    },
                },
            )
        except (httpx.HTTPError, ValueError, IndexError, AttributeError) as e:
            self.logger.warning(f"History MCP unavailable: {e}")
            self.enabled = False  # Disable for this sink
            return

        if data.get("success"):
            self.sessions[run_id] = data.get("session_id")

    async def emit(self, event: ProgressEvent) -> None:
        session_id = self.sessions.get(event.run_id)
        if not session_id or not self.enabled:
            return

        try:
            await self._call_tool(
                "append_message",
                {
                    "session_id": session_id,
                    "type": "system",
                    "content": describe_event(event),
                    "metadata": {"event": event.type, **event.model_dump(mode="json")},
                },
            )
        except (httpx.HTTPError, ValueError, IndexError, AttributeError) as e:
            self.logger.warning(f"Failed to log {event.type} for node {event.node_id}: {e}")

    async def finish_run(self, outcome: RunOutcome) -> None:
        session_id = self.sessions.pop(outcome.run_id, None)
        if not session_id or not self.enabled:
            return

        try:
            await self._call_tool(
                "append_message",
                {
                    "session_id": session_id,
                    "type": "system",
                    "content": f"Workflow completed with status: {outcome.status}",
                    "metadata": {
                        "event": "workflow_complete",
                        **outcome.summary(),
                    },
                },
            )
        except (httpx.HTTPError, ValueError, IndexError, AttributeError) as e:
            self.logger.warning(f"Failed to log workflow completion: {e}")

    async def close(self) -> None:
        """Close HTTP client"""
        await self.client.aclose()
