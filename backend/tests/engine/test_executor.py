# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the workflow runner
"""

from unittest.mock import AsyncMock

import pytest

from pulseflow.engine.dispatcher import NodeDispatcher
from pulseflow.engine.events import ExecutionLogSink
from pulseflow.engine.exceptions import ChainOperationError
from pulseflow.engine.executor import WorkflowRunner, handle_matches_branch
from pulseflow.engine.models import (
    BranchTakenEvent,
    CancelledEvent,
    NodeCompleteEvent,
    NodeErrorEvent,
    RunCancelled,
    RunFailed,
    RunSuccess,
)
from tests.fakes import ONE, TOKEN_A, TOKEN_B, edge, graph, node, previous, static


class ListSink(ExecutionLogSink):
    """Collects events in memory"""

    def __init__(self):
        self.events = []
        self.started = []
        self.outcomes = []

    async def start_run(self, workflow_id, run_id):
        self.started.append(run_id)

    async def emit(self, event):
        self.events.append(event)

    async def finish_run(self, outcome):
        self.outcomes.append(outcome)


class BrokenSink(ExecutionLogSink):
    async def start_run(self, workflow_id, run_id):
        raise RuntimeError("sink down")

    async def emit(self, event):
        raise RuntimeError("sink down")

    async def finish_run(self, outcome):
        raise RuntimeError("sink down")


class RecordingDispatcher(NodeDispatcher):
    """Remembers the context each node was dispatched with"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.seen = []

    async def execute(self, workflow_id, node, context):
        self.seen.append((node.id, context.current_iteration, context.previous_node_id, dict(context.variables)))
        return await super().execute(workflow_id, node, context)


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def dispatcher(chain, config, no_sleep):
    return RecordingDispatcher(chain, config=config, sleep=no_sleep, clock=lambda: 0)


@pytest.fixture
def runner(chain, config, dispatcher, sink):
    """Runner with an in-memory chain and sink"""
    return WorkflowRunner(chain, dispatcher=dispatcher, config=config, sinks=[sink])


def dispatched(dispatcher):
    return [node_id for node_id, *_ in dispatcher.seen]


def test_handle_matches_branch():
    assert handle_matches_branch("output-true", "true")
    assert handle_matches_branch("true", "true")
    assert not handle_matches_branch("output-false", "true")
    assert not handle_matches_branch(None, "true")


@pytest.mark.asyncio
async def test_swap_then_transfer_half(runner, chain, sink):
    """Transfer 50% of what the swap produced"""
    chain.swap_amount_out = 1000
    g = graph(
        [
            node("s", "start"),
            node("swap", "swap", amountIn=static("1"), path=[TOKEN_A, TOKEN_B]),
            node("send", "transfer", token=TOKEN_B, amount=previous("amountOut", 50), to="0xfriend"),
        ],
        [edge("s", "swap"), edge("swap", "send")],
    )

    outcome = await runner.run("wf-1", g)

    assert isinstance(outcome, RunSuccess)
    assert [r.node_id for r in outcome.results] == ["swap", "send"]
    assert chain.called("transfer_token")[0]["amount"] == 500
    assert outcome.iterations == 1
    assert sink.started == [outcome.run_id]
    assert sink.outcomes == [outcome]


@pytest.mark.asyncio
async def test_false_branch_without_edge_ends_quietly(runner, chain, sink):
    """Balance below threshold, only a true edge: the run still succeeds"""
    chain.native_balance = ONE // 2
    g = graph(
        [
            node("s", "start"),
            node("bal", "checkBalance"),
            node("cond", "condition", conditionType="plsBalance", operator=">", value=static("1")),
            node("send", "transferPLS", plsAmount=static("0.1")),
        ],
        [edge("s", "bal"), edge("bal", "cond"), edge("cond", "send", "output-true")],
    )

    outcome = await runner.run("wf-1", g)

    assert isinstance(outcome, RunSuccess)
    assert len(outcome.results) == 2
    assert chain.called("transfer_native") == []
    branch = [e for e in sink.events if isinstance(e, BranchTakenEvent)]
    assert branch[0].branch == "false"
    assert branch[0].targets == []


@pytest.mark.asyncio
async def test_condition_follows_only_matching_branch(runner, chain, dispatcher):
    chain.native_balance = 2 * ONE
    g = graph(
        [
            node("s", "start"),
            node("cond", "condition", conditionType="plsBalance", value=static("1")),
            node("yes", "checkBalance"),
            node("no", "wait", delay=1),
        ],
        [edge("s", "cond"), edge("cond", "yes", "output-true"), edge("cond", "no", "output-false")],
    )

    outcome = await runner.run("wf-1", g)

    assert isinstance(outcome, RunSuccess)
    assert dispatched(dispatcher) == ["cond", "yes"]


@pytest.mark.asyncio
async def test_reachable_nodes_run_once_in_order(runner, dispatcher):
    """Diamond: the join node runs once; orphans never run"""
    g = graph(
        [
            node("s", "start"),
            node("a", "checkBalance"),
            node("b", "checkBalance"),
            node("join", "checkBalance"),
            node("orphan", "checkBalance"),
        ],
        [edge("s", "a"), edge("s", "b"), edge("a", "join"), edge("b", "join")],
    )

    outcome = await runner.run("wf-1", g)

    assert isinstance(outcome, RunSuccess)
    assert dispatched(dispatcher) == ["a", "b", "join"]


@pytest.mark.asyncio
async def test_start_node_is_never_dispatched(runner, dispatcher):
    g = graph([node("s", "start", ignored=True), node("a", "checkBalance")], [edge("s", "a"), edge("a", "s")])

    outcome = await runner.run("wf-1", g)

    assert [r.node_id for r in outcome.results] == ["a"]
    assert dispatched(dispatcher) == ["a"]


@pytest.mark.asyncio
async def test_async_progress_callback(chain, config, dispatcher):
    """Coroutine callbacks are awaited once per event"""
    on_progress = AsyncMock()
    runner = WorkflowRunner(chain, dispatcher=dispatcher, config=config, on_progress=on_progress)
    g = graph([node("s", "start"), node("a", "checkBalance")], [edge("s", "a")])

    await runner.run("wf-1", g)

    assert on_progress.await_count == 2
    assert on_progress.await_args_list[0].args[0].type == "node_start"


@pytest.mark.asyncio
async def test_events_in_order(runner, sink):
    g = graph([node("s", "start"), node("a", "checkBalance"), node("b", "checkBalance")],
              [edge("s", "a"), edge("a", "b")])

    await runner.run("wf-1", g)

    assert [(e.type, e.node_id) for e in sink.events] == [
        ("node_start", "a"), ("node_complete", "a"),
        ("node_start", "b"), ("node_complete", "b"),
    ]


class TestLoops:

    @pytest.mark.asyncio
    async def test_loop_repeats_chain(self, runner, dispatcher):
        """Each pass starts clean; variables carry over"""
        g = graph(
            [
                node("s", "start"),
                node("var", "variable", variableName="budget", value="7"),
                node("loop", "loop", loopCount=3),
            ],
            [edge("s", "var"), edge("var", "loop")],
        )

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunSuccess)
        assert outcome.iterations == 3
        assert [r.iteration for r in outcome.results] == [1, 1, 2, 2, 3, 3]
        assert dispatcher.seen[0] == ("var", 0, None, {})
        assert dispatcher.seen[1] == ("loop", 0, "var", {"budget": 7})
        assert dispatcher.seen[2] == ("var", 1, None, {"budget": 7})
        assert outcome.context.current_iteration == 2
        assert outcome.results[-1].output == {"loopCount": 3, "currentIteration": 2, "shouldLoop": True}

    @pytest.mark.asyncio
    async def test_loop_count_is_capped(self, runner):
        g = graph([node("s", "start"), node("loop", "loop", loopCount=50)], [edge("s", "loop")])

        outcome = await runner.run("wf-1", g)

        assert outcome.iterations == 3
        assert len(outcome.results) == 3


class TestFailures:

    @pytest.mark.asyncio
    async def test_structural_failure_dispatches_nothing(self, runner, chain, sink):
        g = graph([node("a", "checkBalance")], [])

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunFailed)
        assert outcome.node_id is None
        assert outcome.iterations == 0
        assert outcome.error.category == "config"
        assert "no start node" in outcome.error.user_message
        assert chain.calls == []
        assert sink.outcomes == [outcome]

    @pytest.mark.asyncio
    async def test_failing_node_blocks_downstream(self, runner, chain, sink):
        g = graph(
            [
                node("s", "start"),
                node("bal", "checkBalance"),
                node("send", "transfer", amount="1"),
                node("after", "checkTokenBalance", token=TOKEN_A),
            ],
            [edge("s", "bal"), edge("bal", "send"), edge("send", "after")],
        )

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunFailed)
        assert outcome.node_id == "send"
        assert outcome.node_type == "transfer"
        assert outcome.error.category == "config"
        assert outcome.error.field == "token"
        assert [r.node_id for r in outcome.results] == ["bal"]
        assert chain.called("get_token_balance") == []
        errors = [e for e in sink.events if isinstance(e, NodeErrorEvent)]
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_adapter_error_is_classified(self, runner, chain):
        chain.failures["transfer_token"] = ChainOperationError(
            "insufficient funds for gas * price + value", code="INSUFFICIENT_FUNDS"
        )
        g = graph(
            [node("s", "start"), node("send", "transfer", token=TOKEN_A, amount="1")],
            [edge("s", "send")],
        )

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunFailed)
        assert outcome.error.category == "blockchain"
        assert outcome.error.retryable is False
        assert outcome.error.user_message == "Wallet has insufficient funds for this transaction."

    @pytest.mark.asyncio
    async def test_gas_guard_stops_run(self, runner, chain, dispatcher):
        chain.gas_price = 150 * 10 ** 9
        g = graph(
            [
                node("s", "start"),
                node("swap", "swap", amountIn="1", path=[TOKEN_A, TOKEN_B]),
                node("guard", "gasGuard", maxGasPrice=100),
                node("send", "transferPLS", plsAmount="1"),
            ],
            [edge("s", "swap"), edge("swap", "guard"), edge("guard", "send")],
        )

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunFailed)
        assert outcome.node_id == "guard"
        assert outcome.error.category == "blockchain"
        assert outcome.error.retryable is True
        assert "150.00 gwei" in outcome.error.user_message
        assert dispatched(dispatcher) == ["swap", "guard"]

    @pytest.mark.asyncio
    async def test_sink_and_callback_failures_are_ignored(self, chain, config, dispatcher):
        def broken_callback(event):
            raise RuntimeError("callback down")

        runner = WorkflowRunner(
            chain, dispatcher=dispatcher, config=config,
            sinks=[BrokenSink()], on_progress=broken_callback,
        )
        g = graph([node("s", "start"), node("a", "checkBalance")], [edge("s", "a")])

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunSuccess)


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_before_next_node(self, chain, config, dispatcher, sink):
        """Flag set after node 'a' completes: 'b' never runs"""
        state = {"cancelled": False}

        async def on_progress(event):
            if isinstance(event, NodeCompleteEvent) and event.node_id == "a":
                state["cancelled"] = True

        async def cancel_check(workflow_id, run_id):
            return state["cancelled"]

        runner = WorkflowRunner(
            chain, dispatcher=dispatcher, config=config, sinks=[sink],
            on_progress=on_progress, cancel_check=cancel_check,
        )
        g = graph(
            [node("s", "start"), node("a", "checkBalance"), node("b", "checkBalance"), node("c", "checkBalance")],
            [edge("s", "a"), edge("a", "b"), edge("b", "c")],
        )

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunCancelled)
        assert outcome.node_id == "b"
        assert [r.node_id for r in outcome.results] == ["a"]
        assert dispatched(dispatcher) == ["a"]
        assert isinstance(sink.events[-1], CancelledEvent)

    @pytest.mark.asyncio
    async def test_adapter_cancellation_flag(self, runner, chain, dispatcher):
        chain.cancelled = True
        g = graph([node("s", "start"), node("a", "checkBalance")], [edge("s", "a")])

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunCancelled)
        assert outcome.node_id == "a"
        assert outcome.results == []
        assert dispatcher.seen == []

    @pytest.mark.asyncio
    async def test_unreachable_cancellation_store_fails_run(self, chain, config, dispatcher, sink):
        async def cancel_check(workflow_id, run_id):
            raise ConnectionError("connect ECONNREFUSED cancellation store")

        runner = WorkflowRunner(
            chain, dispatcher=dispatcher, config=config, sinks=[sink], cancel_check=cancel_check,
        )
        g = graph([node("s", "start"), node("a", "checkBalance")], [edge("s", "a")])

        outcome = await runner.run("wf-1", g)

        assert isinstance(outcome, RunFailed)
        assert outcome.node_id == "a"
        assert outcome.error.category == "network"
        assert outcome.error.retryable is True
        assert dispatcher.seen == []
        assert isinstance(sink.events[-1], NodeErrorEvent)
        assert sink.outcomes == [outcome]

    @pytest.mark.asyncio
    async def test_summary_excludes_context(self, runner):
        g = graph([node("s", "start"), node("a", "checkBalance")], [edge("s", "a")])

        outcome = await runner.run("wf-1", g)
        summary = outcome.summary()

        assert summary["status"] == "success"
        assert "context" not in summary
        assert summary["results"][0]["output"] == {"balance": 0, "token": "PLS"}
