# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Runner

Graph traversal engine: walks the node graph from the start node, dispatches
nodes strictly one at a time, follows condition branches, repeats the whole
chain for loop nodes and polls for cancellation before every node.

A run ends in exactly one of three states:
- RunSuccess: every reachable node of every iteration completed
- RunFailed: structural validation failed, or the first node failure
- RunCancelled: cancellation was observed before a node was dispatched
"""

import inspect
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pulseflow.core.config import Config, get_config
from pulseflow.core.logging import get_engine_logger, log_event
from .adapter import ChainAdapter
from .classifier import classify_error
from .context import create_context, restart_iteration
from .dispatcher import NodeDispatcher
from .events import ExecutionLogSink
from .exceptions import WorkflowValidationError
from .models import (
    BranchTakenEvent,
    CancelledEvent,
    NodeCompleteEvent,
    NodeErrorEvent,
    NodeRunResult,
    NodeStartEvent,
    NodeType,
    ProgressEvent,
    RunCancelled,
    RunFailed,
    RunOutcome,
    RunSuccess,
    WorkflowEdge,
    WorkflowGraph,
)
from .validation import reachable_from, validate_workflow_graph


ProgressCallback = Callable[[ProgressEvent], Any]
CancelCheck = Callable[[str, str], Awaitable[bool]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_run_id() -> str:
    return f"run_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def handle_matches_branch(handle: Optional[str], branch: str) -> bool:
    """Condition outputs are labeled "output-true"/"output-false" (or bare)"""
    return handle in (branch, f"output-{branch}")


class WorkflowRunner:
    """
    Sequential workflow runner.

    Independent runs share nothing but the adapter; create one runner per
    run or reuse one across runs, both are safe.
    """

    def __init__(
        self,
        adapter: ChainAdapter,
        dispatcher: NodeDispatcher = None,
        config: Config = None,
        sinks: Sequence[ExecutionLogSink] = None,
        on_progress: ProgressCallback = None,
        cancel_check: CancelCheck = None,
    ):
        self.adapter = adapter
        self.config = config or get_config()
        self.dispatcher = dispatcher or NodeDispatcher(adapter, config=self.config)
        self.sinks = list(sinks or [])
        self.on_progress = on_progress
        self.cancel_check = cancel_check
        self.logger = get_engine_logger("runner")

    async def run(self, workflow_id: str, graph: WorkflowGraph, run_id: str = None) -> RunOutcome:
        """
        Execute a workflow graph.

        Never raises for node, cancellation-poll or validation failures; those
        are reported as RunFailed. Task cancellation from the host propagates.
        """
        run_id = run_id or new_run_id()
        started_at = _now()
        results: List[NodeRunResult] = []

        await self._start_sinks(workflow_id, run_id)

        # Structural errors: fail before any node is dispatched
        try:
            start_id = validate_workflow_graph(graph)
        except WorkflowValidationError as e:
            outcome = RunFailed(
                run_id=run_id,
                workflow_id=workflow_id,
                started_at=started_at,
                completed_at=_now(),
                iterations=0,
                error=classify_error(e),
            )
            return await self.finish(outcome)

        adjacency = self._build_adjacency_map(graph)
        nodes = {node.id: node for node in graph.nodes}

        log_event(
            self.logger, "Workflow run started", run_event="run_started",
            workflow_id=workflow_id, run_id=run_id,
            reachable_nodes=len(reachable_from(graph, start_id)),
        )

        context = create_context()
        iteration = 0
        max_iterations = 1

        while iteration < max_iterations:
            iteration += 1
            if iteration > 1:
                context = restart_iteration(context, iteration - 1)

            executed = set()
            frontier = deque(edge.target for edge in adjacency[start_id])

            while frontier:
                node_id = frontier.popleft()
                if node_id in executed:
                    continue
                node = nodes.get(node_id)
                if node is None:
                    continue
                node_type = NodeType.parse(node.type)
                if node_type == NodeType.START:
                    continue

                base = dict(
                    workflow_id=workflow_id,
                    run_id=run_id,
                    node_id=node.id,
                    node_type=node_type.value,
                    iteration=iteration,
                )

                try:
                    cancelled = await self._is_cancelled(workflow_id, run_id)
                except Exception as e:
                    return await self._node_failed(e, base, started_at, results)

                if cancelled:
                    await self._emit(CancelledEvent(timestamp=_now(), **base))
                    outcome = RunCancelled(
                        run_id=run_id,
                        workflow_id=workflow_id,
                        started_at=started_at,
                        completed_at=_now(),
                        iterations=iteration,
                        results=results,
                        node_id=node.id,
                        node_type=node_type.value,
                    )
                    return await self.finish(outcome)

                executed.add(node_id)
                await self._emit(NodeStartEvent(timestamp=_now(), **base))

                try:
                    output, context = await self.dispatcher.execute(workflow_id, node, context)
                except Exception as e:
                    return await self._node_failed(e, base, started_at, results)

                results.append(NodeRunResult(
                    node_id=node.id,
                    node_type=node_type.value,
                    iteration=iteration,
                    output=output,
                ))
                await self._emit(NodeCompleteEvent(timestamp=_now(), output=output, **base))

                outgoing = adjacency.get(node_id, [])
                if node_type == NodeType.CONDITION:
                    branch = output["branch"]
                    # No matching edge: this path ends here without error
                    targets = [
                        edge.target for edge in outgoing
                        if handle_matches_branch(edge.source_handle, branch)
                    ]
                    await self._emit(BranchTakenEvent(
                        timestamp=_now(), branch=branch, targets=targets, **base
                    ))
                else:
                    targets = [edge.target for edge in outgoing]

                frontier.extend(t for t in targets if t not in executed)

                if node_type == NodeType.LOOP:
                    max_iterations = min(max(int(output["loopCount"]), 1), self.config.max_loop_count)

        outcome = RunSuccess(
            run_id=run_id,
            workflow_id=workflow_id,
            started_at=started_at,
            completed_at=_now(),
            iterations=iteration,
            results=results,
            context=context,
        )
        return await self.finish(outcome)

    async def _node_failed(
        self,
        exc: Exception,
        base: Dict[str, Any],
        started_at: str,
        results: List[NodeRunResult],
    ) -> RunOutcome:
        """Classify a failure at the pending node and end the run"""
        error = classify_error(exc)
        log_event(
            self.logger,
            f"Node {base['node_id']} ({base['node_type']}) failed: {error.user_message}",
            level="ERROR",
            workflow_id=base["workflow_id"], run_id=base["run_id"],
            technical_details=error.technical_details,
        )
        await self._emit(NodeErrorEvent(timestamp=_now(), error=error, **base))
        outcome = RunFailed(
            run_id=base["run_id"],
            workflow_id=base["workflow_id"],
            started_at=started_at,
            completed_at=_now(),
            iterations=base["iteration"],
            results=results,
            error=error,
            node_id=base["node_id"],
            node_type=base["node_type"],
        )
        return await self.finish(outcome)

    def _build_adjacency_map(self, graph: WorkflowGraph) -> Dict[str, List[WorkflowEdge]]:
        """Build map of node_id -> outgoing edges, in definition order"""
        adjacency: Dict[str, List[WorkflowEdge]] = {node.id: [] for node in graph.nodes}

        for edge in graph.edges:
            adjacency[edge.source].append(edge)

        return adjacency

    async def _is_cancelled(self, workflow_id: str, run_id: str) -> bool:
        """Host-side flag first, then the adapter's own predicate"""
        if self.cancel_check is not None and await self.cancel_check(workflow_id, run_id):
            return True
        return bool(await self.adapter.is_cancelled(workflow_id, run_id))

    async def _emit(self, event: ProgressEvent) -> None:
        """Deliver an event to the callback and every sink. Delivery failures never fail the run."""
        if self.on_progress is not None:
            try:
                result = self.on_progress(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.warning(f"Progress callback failed on {event.type}: {e}")

        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                self.logger.warning(f"Sink {type(sink).__name__} failed on {event.type}: {e}")

    async def _start_sinks(self, workflow_id: str, run_id: str) -> None:
        for sink in self.sinks:
            try:
                await sink.start_run(workflow_id, run_id)
            except Exception as e:
                self.logger.warning(f"Sink {type(sink).__name__} failed to start run: {e}")

    async def finish(self, outcome: RunOutcome) -> RunOutcome:
        """Deliver a terminal outcome to every sink and log it. Hosts that end a run early call this too."""
        for sink in self.sinks:
            try:
                await sink.finish_run(outcome)
            except Exception as e:
                self.logger.warning(f"Sink {type(sink).__name__} failed to finish run: {e}")

        log_event(
            self.logger, f"Workflow run {outcome.status}", run_event="run_finished",
            workflow_id=outcome.workflow_id, run_id=outcome.run_id,
            status=outcome.status, iterations=outcome.iterations,
            nodes_executed=len(outcome.results),
        )
        return outcome
