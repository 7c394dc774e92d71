"""
Tests for the task pipeline around the agent loop.
"""

import pytest

from computer_use_agent.agent import ComputerUseAgent
from computer_use_agent.errors import PipelineInputError, TranscriptWriteError
from computer_use_agent.models import Message, RunStatus, StepRole
from computer_use_agent.pipeline import Pipeline, PipelineContext, PipelineStep, run_task
from computer_use_agent.transcript import InMemoryTranscriptStore

from conftest import FakeChatModel, ai, tool_call


def task(text):
    return [Message(role="user", content=text)]


@pytest.mark.asyncio
async def test_new_task_creates_session_and_transcript(make_agent, store):
    model = FakeChatModel([
        ai("", tool_call("screenshot")),
        ai("", tool_call("mouse_move", (640, 300))),
        ai("", tool_call("left_click")),
        ai("", tool_call("type", text="cats")),
        ai("", tool_call("key", text="Return")),
        ai("Here are the results for cats"),
    ])

    result = await run_task(make_agent(model, max_steps=10), store, task("search for cats"))

    assert result.status == RunStatus.SUCCESS
    assert result.response == "Here are the results for cats"
    assert await store.has_session(result.session_id)
    steps = await store.steps(result.session_id)
    assert len(steps) == 11
    assert all(s.role in (StepRole.ASSISTANT, StepRole.TOOL) for s in steps)
    assert not any(r.is_error for s in steps for r in s.tool_results)
    finals = [s for s in steps if s.metadata and s.metadata.get("final")]
    assert len(finals) == 1


@pytest.mark.asyncio
async def test_caller_session_id_is_adopted(make_agent, store):
    result = await run_task(make_agent(FakeChatModel([ai("ok")])), store, task("hi"), session_id="mine")

    assert result.session_id == "mine"
    assert await store.has_session("mine")


@pytest.mark.asyncio
async def test_existing_session_is_reused(make_agent, store):
    await store.create_session(session_id="s1")
    agent = make_agent(FakeChatModel([ai("ok")]))

    await run_task(agent, store, task("first"), session_id="s1")
    await run_task(agent, store, task("second"), session_id="s1")

    assert len(store.sessions) == 1
    assert len(await store.steps("s1")) == 2


@pytest.mark.asyncio
async def test_exhausted_run_persists_best_effort_answer(make_agent, store):
    model = FakeChatModel([ai("partial answer", tool_call("mouse_move", (1, 1)))])

    result = await run_task(make_agent(model, max_steps=1), store, task("forever"))

    steps = await store.steps(result.session_id)
    assert result.status == RunStatus.BUDGET_EXHAUSTED
    assert len(steps) == 3
    assert steps[-1].text == "partial answer"
    assert steps[-1].metadata == {"final": True, "status": "budget_exhausted"}


@pytest.mark.asyncio
async def test_empty_messages_are_rejected(make_agent, store):
    with pytest.raises(PipelineInputError):
        await run_task(make_agent(FakeChatModel([ai("ok")])), store, [])
    assert store.sessions == {}


@pytest.mark.asyncio
async def test_message_without_content_is_rejected(make_agent, store):
    with pytest.raises(PipelineInputError, match="no content"):
        await run_task(make_agent(FakeChatModel([ai("ok")])), store, task(""))


@pytest.mark.asyncio
async def test_on_error_runs_before_error_propagates():
    handled = []

    async def explode(context):
        raise RuntimeError("boom")

    async def record(error, context):
        handled.append((str(error), context.session_id))

    async def never(context):
        raise AssertionError("later steps must not run")

    pipeline = Pipeline([
        PipelineStep(name="explode", execute=explode, on_error=record),
        PipelineStep(name="never", execute=never),
    ])

    with pytest.raises(RuntimeError, match="boom"):
        await pipeline.execute(PipelineContext(messages=task("x"), session_id="s1"))

    assert handled == [("boom", "s1")]


class FinalWriteFailingStore(InMemoryTranscriptStore):
    """Accepts loop steps but rejects the best-effort final answer"""

    async def append(self, session_id, step):
        if step.metadata and step.metadata.get("status") == "budget_exhausted":
            raise TranscriptWriteError("disk full")
        await super().append(session_id, step)


@pytest.mark.asyncio
async def test_final_write_failure_is_fatal(executor, registry, browser_factory, config, overlay):
    store = FinalWriteFailingStore()
    model = FakeChatModel([ai("partial", tool_call("mouse_move", (1, 1)))])
    agent = ComputerUseAgent(model, executor, store, config=config.model_copy(update={"max_steps": 1}), overlay=overlay)

    with pytest.raises(TranscriptWriteError, match="disk full"):
        await run_task(agent, store, task("forever"), session_id="s1")

    assert browser_factory.launched[0].closed
    assert "s1" not in registry
    last = (await store.steps("s1"))[-1]
    assert last.metadata["status"] == "fatal"
    assert last.metadata["error"] == "disk full"
