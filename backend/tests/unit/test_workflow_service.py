# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for WorkflowService

Tests workflow loading, run hosting, stop requests and the run time budget.
"""

import asyncio
import json
from pathlib import Path
from tempfile import TemporaryDirectory

import httpx
import pytest

from pulseflow.core.errors import NotFoundError, ValidationError
from pulseflow.engine.amounts import AmountResolver
from pulseflow.engine.dispatcher import NodeDispatcher
from pulseflow.engine.events import HistoryEventSink
from pulseflow.engine.executor import WorkflowRunner
from pulseflow.engine.models import RunCancelled, RunFailed, RunSuccess
from pulseflow.engine.preflight import NodeConfigValidator
from pulseflow.services.workflow_service import FileWorkflowStore, WorkflowService
from tests.fakes import TOKEN_A, TOKEN_B, edge, node


@pytest.fixture
def temp_workflows_dir():
    """Create temporary directory for test workflows"""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def gate():
    """
    Wait nodes signal "sleeping" and block until "open" is set.

    The events are created by arm() inside the test so they bind to its loop.
    """
    return {}


def arm(gate):
    gate["open"] = asyncio.Event()
    gate["sleeping"] = asyncio.Event()


@pytest.fixture
def runner_factory(chain, config, gate):
    async def blocking_sleep(seconds):
        gate["sleeping"].set()
        await gate["open"].wait()

    def factory(**kwargs):
        dispatcher = NodeDispatcher(chain, config=config, sleep=blocking_sleep)
        return WorkflowRunner(chain, dispatcher=dispatcher, config=config, **kwargs)

    return factory


@pytest.fixture
def workflow_service(temp_workflows_dir, runner_factory):
    """Create WorkflowService instance with temp directory"""
    return WorkflowService(FileWorkflowStore(temp_workflows_dir), runner_factory, run_timeout=5.0)


def save_workflow(directory: Path, workflow_id: str, nodes, edges, name="Test"):
    (directory / f"{workflow_id}.json").write_text(
        json.dumps({"name": name, "nodes": nodes, "edges": edges})
    )


SIMPLE = (
    [node("s", "start"), node("bal", "checkBalance")],
    [edge("s", "bal")],
)

WITH_WAIT = (
    [node("s", "start"), node("pause", "wait", delay=5), node("send", "transfer", token=TOKEN_A, amount="1")],
    [edge("s", "pause"), edge("pause", "send")],
)


class TestFileWorkflowStore:
    """Test FileWorkflowStore"""

    def test_creates_directory_if_not_exists(self, temp_workflows_dir):
        """Should create workflows directory if it doesn't exist"""
        new_dir = temp_workflows_dir / "new_workflows"
        assert not new_dir.exists()

        FileWorkflowStore(new_dir)
        assert new_dir.exists()

    @pytest.mark.asyncio
    async def test_list_workflows(self, temp_workflows_dir):
        save_workflow(temp_workflows_dir, "alpha", *SIMPLE, name="Alpha")
        (temp_workflows_dir / "broken.json").write_text("{not json")

        workflows = await FileWorkflowStore(temp_workflows_dir).list_workflows()

        assert workflows == [{"workflow_id": "alpha", "name": "Alpha", "node_count": 2, "filename": "alpha.json"}]

    @pytest.mark.asyncio
    async def test_get_missing_workflow(self, temp_workflows_dir):
        with pytest.raises(NotFoundError) as exc_info:
            await FileWorkflowStore(temp_workflows_dir).get_workflow("ghost")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_json(self, temp_workflows_dir):
        (temp_workflows_dir / "broken.json").write_text("{not json")

        with pytest.raises(ValidationError):
            await FileWorkflowStore(temp_workflows_dir).get_workflow("broken")

    @pytest.mark.asyncio
    async def test_invalid_graph(self, temp_workflows_dir):
        (temp_workflows_dir / "odd.json").write_text(json.dumps({"nodes": "none"}))

        with pytest.raises(ValidationError) as exc_info:
            await FileWorkflowStore(temp_workflows_dir).get_graph("odd")
        assert exc_info.value.field == "definition"


class TestRunWorkflow:
    """Test run_workflow method"""

    @pytest.mark.asyncio
    async def test_runs_to_success(self, workflow_service, temp_workflows_dir):
        save_workflow(temp_workflows_dir, "simple", *SIMPLE)

        outcome = await workflow_service.run_workflow("simple")

        assert isinstance(outcome, RunSuccess)
        assert outcome.workflow_id == "simple"
        assert outcome.run_id.startswith("run_")
        assert workflow_service.active_runs() == []

    @pytest.mark.asyncio
    async def test_missing_workflow(self, workflow_service):
        with pytest.raises(NotFoundError):
            await workflow_service.run_workflow("ghost")

    @pytest.mark.asyncio
    async def test_stop_cancels_before_next_node(self, workflow_service, temp_workflows_dir, gate, chain):
        save_workflow(temp_workflows_dir, "slow", *WITH_WAIT)
        arm(gate)

        task = asyncio.create_task(workflow_service.run_workflow("slow"))
        await asyncio.wait_for(gate["sleeping"].wait(), 1)

        response = await workflow_service.stop_workflow("slow")
        gate["open"].set()
        outcome = await task

        assert response["message"] == "Execution cancelled by user"
        assert response["run_ids"] == [outcome.run_id]
        assert isinstance(outcome, RunCancelled)
        assert outcome.node_id == "send"
        assert [r.node_id for r in outcome.results] == ["pause"]
        assert chain.called("transfer_token") == []
        assert workflow_service.active_runs() == []

    @pytest.mark.asyncio
    async def test_active_runs_listed_while_running(self, workflow_service, temp_workflows_dir, gate):
        save_workflow(temp_workflows_dir, "slow", *WITH_WAIT)
        arm(gate)

        task = asyncio.create_task(workflow_service.run_workflow("slow"))
        await asyncio.wait_for(gate["sleeping"].wait(), 1)

        active = workflow_service.active_runs()
        gate["open"].set()
        await task

        assert len(active) == 1
        assert active[0]["workflow_id"] == "slow"
        assert active[0]["cancelled"] is False
        assert active[0]["nodes_completed"] == 0

    @pytest.mark.asyncio
    async def test_stop_without_running_execution(self, workflow_service):
        with pytest.raises(NotFoundError):
            await workflow_service.stop_workflow("idle")

    @pytest.mark.asyncio
    async def test_time_budget(self, temp_workflows_dir, runner_factory, gate):
        """A run that exceeds the budget fails as retryable"""
        save_workflow(temp_workflows_dir, "slow", *WITH_WAIT)
        arm(gate)
        service = WorkflowService(FileWorkflowStore(temp_workflows_dir), runner_factory, run_timeout=0.05)

        outcome = await service.run_workflow("slow")

        assert isinstance(outcome, RunFailed)
        assert outcome.error.category == "unknown"
        assert outcome.error.retryable is True
        assert "time budget" in outcome.error.user_message
        assert outcome.results == []
        assert service.active_runs() == []

    @pytest.mark.asyncio
    async def test_time_budget_closes_history_session(self, temp_workflows_dir, runner_factory, gate):
        """The timed-out run still gets its terminal record and its session is released"""
        tools = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            tools.append(body["tool"])
            payload = {"success": True, "session_id": "sess-1"}
            return httpx.Response(200, json={"content": [{"type": "text", "text": json.dumps(payload)}]})

        sink = HistoryEventSink("http://history:7004", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        save_workflow(temp_workflows_dir, "slow", *WITH_WAIT)
        arm(gate)
        service = WorkflowService(
            FileWorkflowStore(temp_workflows_dir),
            lambda **kwargs: runner_factory(sinks=[sink], **kwargs),
            run_timeout=0.05,
        )

        outcome = await service.run_workflow("slow")
        await sink.close()

        assert isinstance(outcome, RunFailed)
        assert sink.sessions == {}
        assert tools == ["create_session", "append_message", "append_message"]


class TestEditorHelpers:
    """Pre-flight checks and pool quotes"""

    @pytest.fixture
    def service(self, temp_workflows_dir, runner_factory, chain, config):
        return WorkflowService(
            FileWorkflowStore(temp_workflows_dir),
            runner_factory,
            validator=NodeConfigValidator(chain, config),
            resolver=AmountResolver(chain, config),
        )

    @pytest.mark.asyncio
    async def test_validate_node_accepts_legacy_type_names(self, service, temp_workflows_dir):
        save_workflow(temp_workflows_dir, "wf", *SIMPLE)

        result = await service.validate_node("wf", "burn", {"token": "0x1234"})

        assert result.hard_errors == {"token": "Invalid address format"}

    @pytest.mark.asyncio
    async def test_validate_node_unknown_type(self, service, temp_workflows_dir):
        save_workflow(temp_workflows_dir, "wf", *SIMPLE)

        with pytest.raises(ValidationError) as exc:
            await service.validate_node("wf", "teleport", {})
        assert exc.value.field == "nodeType"

    @pytest.mark.asyncio
    async def test_validate_node_missing_workflow(self, service):
        with pytest.raises(NotFoundError):
            await service.validate_node("ghost", "wait", {"delay": 1})

    @pytest.mark.asyncio
    async def test_quote_without_pool_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.quote_lp(TOKEN_A, TOKEN_B, "1")

    @pytest.mark.asyncio
    async def test_quote_bad_amount_is_validation_error(self, service, chain):
        chain.add_pool(TOKEN_A, TOKEN_B, 4000, 1000)

        with pytest.raises(ValidationError) as exc:
            await service.quote_lp(TOKEN_A, TOKEN_B, "lots")
        assert exc.value.field == "baseAmount"
