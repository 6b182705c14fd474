# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Service

Loads workflow graphs and hosts runs: registers active runs, enforces the run
wall-clock budget and lets callers stop a running workflow.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from pulseflow.core.errors import NotFoundError, ValidationError
from pulseflow.core.logging import get_service_logger
from pulseflow.engine.amounts import AmountResolver, LpQuote
from pulseflow.engine.exceptions import PoolNotFoundError, ResolutionError
from pulseflow.engine.executor import WorkflowRunner, new_run_id
from pulseflow.engine.models import (
    NodeCompleteEvent,
    NodeRunResult,
    NodeType,
    ParsedError,
    ProgressEvent,
    RunFailed,
    RunOutcome,
    WorkflowGraph,
)
from pulseflow.engine.preflight import NodeConfigValidator, NodeValidationResult

logger = get_service_logger("workflow")


# =============================================================================
# STORE
# =============================================================================

class WorkflowStore(ABC):
    """Read access to saved workflow definitions"""

    @abstractmethod
    async def list_workflows(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        """Raw definition. Raises NotFoundError."""

    async def get_graph(self, workflow_id: str) -> WorkflowGraph:
        """Parsed node graph. Raises NotFoundError or ValidationError."""
        workflow_data = await self.get_workflow(workflow_id)
        try:
            return WorkflowGraph.model_validate(workflow_data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Workflow '{workflow_id}' is not a valid node graph: {e.error_count()} error(s)",
                field="definition",
                details={"errors": e.errors(include_url=False)},
            )


class FileWorkflowStore(WorkflowStore):
    """One JSON file per workflow: ``<workflows_dir>/<workflow_id>.json``"""

    def __init__(self, workflows_dir: Path):
        self.workflows_dir = Path(workflows_dir)
        self.workflows_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileWorkflowStore initialized with directory: {workflows_dir}")

    async def list_workflows(self) -> List[Dict[str, Any]]:
        """List all workflow definitions"""
        workflows = []

        for file in sorted(self.workflows_dir.glob("*.json")):
            try:
                workflow_data = json.loads(file.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping invalid workflow file {file.name}: {e}")
                continue
            workflows.append({
                "workflow_id": file.stem,
                "name": workflow_data.get("name"),
                "node_count": len(workflow_data.get("nodes", [])),
                "filename": file.name,
            })

        logger.info(f"Listed {len(workflows)} workflows")
        return workflows

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        """Get a specific workflow definition"""
        file_path = self.workflows_dir / f"{workflow_id}.json"

        if not file_path.exists():
            raise NotFoundError("Workflow", workflow_id)

        try:
            return json.loads(file_path.read_text())
        except json.JSONDecodeError as e:
            raise ValidationError(f"Workflow '{workflow_id}' is not valid JSON: {e}", field="definition")


# =============================================================================
# SERVICE
# =============================================================================

@dataclass
class ActiveRun:
    """A run currently hosted by the service"""
    run_id: str
    workflow_id: str
    started_at: str
    cancelled: bool = False
    results: List[NodeRunResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "started_at": self.started_at,
            "cancelled": self.cancelled,
            "nodes_completed": len(self.results),
        }


class WorkflowService:
    """
    Hosts workflow runs.

    Responsibilities:
    - Loading definitions via a WorkflowStore
    - Running workflows via WorkflowRunner with a wall-clock budget
    - Stopping running workflows (cooperative cancellation)
    - Pre-flight node checks and pool quotes for the editor
    """

    def __init__(
        self,
        store: WorkflowStore,
        runner_factory: Callable[..., WorkflowRunner],
        run_timeout: float = 900.0,
        validator: Optional[NodeConfigValidator] = None,
        resolver: Optional[AmountResolver] = None,
    ):
        self.store = store
        self.runner_factory = runner_factory
        self.run_timeout = run_timeout
        self.validator = validator
        self.resolver = resolver
        self._active: Dict[str, ActiveRun] = {}  # run_id -> ActiveRun
        logger.info(f"WorkflowService initialized (run timeout {run_timeout}s)")

    async def list_workflows(self) -> List[Dict[str, Any]]:
        return await self.store.list_workflows()

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        """Get a specific workflow definition"""
        workflow_data = await self.store.get_workflow(workflow_id)
        logger.info(f"Retrieved workflow: {workflow_id}")
        return workflow_data

    async def run_workflow(self, workflow_id: str) -> RunOutcome:
        """
        Execute a workflow to completion, failure, cancellation or timeout.

        Raises:
            NotFoundError: workflow does not exist
            ValidationError: stored definition is not a node graph
        """
        graph = await self.store.get_graph(workflow_id)

        active = ActiveRun(
            run_id=new_run_id(),
            workflow_id=workflow_id,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

        async def cancel_check(_workflow_id: str, _run_id: str) -> bool:
            return active.cancelled

        def collect(event: ProgressEvent) -> None:
            if isinstance(event, NodeCompleteEvent):
                active.results.append(NodeRunResult(
                    node_id=event.node_id,
                    node_type=event.node_type,
                    iteration=event.iteration,
                    output=event.output,
                ))

        runner = self.runner_factory(cancel_check=cancel_check, on_progress=collect)

        self._active[active.run_id] = active
        logger.info(f"Executing workflow: {workflow_id} (run {active.run_id})")
        try:
            outcome = await asyncio.wait_for(
                runner.run(workflow_id, graph, run_id=active.run_id),
                timeout=self.run_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Workflow run {active.run_id} exceeded timeout ({self.run_timeout}s)")
            message = f"Workflow run exceeded its time budget ({self.run_timeout:g}s)"
            outcome = RunFailed(
                run_id=active.run_id,
                workflow_id=workflow_id,
                started_at=active.started_at,
                completed_at=datetime.now(timezone.utc).isoformat(),
                iterations=max((r.iteration for r in active.results), default=0),
                results=list(active.results),
                error=ParsedError(
                    category="unknown",
                    retryable=True,
                    user_message=message,
                    technical_details=message,
                ),
            )
            # The runner was cancelled before it could close out its sinks
            outcome = await runner.finish(outcome)
        finally:
            self._active.pop(active.run_id, None)

        logger.info(f"Workflow run {active.run_id} finished with status: {outcome.status}")
        return outcome

    async def stop_workflow(self, workflow_id: str) -> Dict[str, Any]:
        """
        Mark every active run of a workflow as cancelled.

        Runs stop before their next node; a node already dispatched completes.
        """
        runs = [run for run in self._active.values() if run.workflow_id == workflow_id]
        if not runs:
            raise NotFoundError("Running execution", workflow_id)

        for run in runs:
            run.cancelled = True

        logger.info(f"Cancellation requested for workflow {workflow_id}: {[r.run_id for r in runs]}")
        return {
            "message": "Execution cancelled by user",
            "workflow_id": workflow_id,
            "run_ids": [run.run_id for run in runs],
        }

    def active_runs(self) -> List[Dict[str, Any]]:
        return [run.to_dict() for run in self._active.values()]

    async def validate_node(
        self,
        workflow_id: str,
        node_type: str,
        form_data: Dict[str, Any],
    ) -> NodeValidationResult:
        """
        Pre-flight check of one node's form data for a saved workflow.

        Raises:
            NotFoundError: workflow does not exist
            ValidationError: unknown node type
        """
        await self.store.get_workflow(workflow_id)

        try:
            parsed_type = NodeType.parse(node_type)
        except ValueError:
            raise ValidationError(f"Unknown node type: {node_type}", field="nodeType")

        return await self.validator.validate(workflow_id, parsed_type, form_data)

    async def quote_lp(self, base_token: str, paired_token: str, base_amount: str) -> LpQuote:
        """
        Raises:
            NotFoundError: no pool exists for the pair
            ValidationError: empty pool or unparseable amount
        """
        try:
            return await self.resolver.quote_lp(base_token, paired_token, base_amount)
        except PoolNotFoundError:
            raise NotFoundError("Liquidity pool", f"{base_token}/{paired_token}")
        except ResolutionError as e:
            raise ValidationError(str(e), field=e.field)
