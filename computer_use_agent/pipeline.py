"""
Named pre/post steps around one agent run.

Default sequence: validate the messages, make sure a session exists, run the
agent loop, persist the final answer if the loop did not already.
"""
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional

from .agent import ComputerUseAgent, to_langchain_messages
from .errors import PipelineInputError
from .models import Message, RunResult, RunStatus, Step, StepRole
from .transcript import DEFAULT_SESSION_NAME, TranscriptStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    messages: List[Message]
    session_id: Optional[str] = None
    result: Optional[RunResult] = None
    final_persisted: bool = False


ErrorHook = Callable[[Exception, PipelineContext], Awaitable[None]]


@dataclass
class PipelineStep:
    name: str
    execute: Callable[[PipelineContext], Awaitable[PipelineContext]]
    on_error: Optional[ErrorHook] = None


class Pipeline:
    """Runs steps in order; a failing step's on_error runs before the error propagates"""

    def __init__(self, steps: List[PipelineStep]):
        self.steps = steps

    async def execute(self, context: PipelineContext) -> PipelineContext:
        for step in self.steps:
            try:
                context = await step.execute(context)
            except Exception as e:
                logger.error(f"Error in pipeline step {step.name}: {e}")
                if step.on_error is not None:
                    await step.on_error(e, context)
                raise
        return context


# ==============================================================
# DEFAULT STEPS
# ==============================================================

async def validate_messages(context: PipelineContext) -> PipelineContext:
    if not context.messages:
        raise PipelineInputError("At least one message is required")
    if not context.messages[-1].content:
        raise PipelineInputError("Invalid message format: last message has no content")
    return context


def ensure_session_step(store: TranscriptStore, name: str = DEFAULT_SESSION_NAME) -> PipelineStep:
    async def ensure_session(context: PipelineContext) -> PipelineContext:
        if context.session_id is None:
            session_id = await store.create_session(name)
            logger.info(f"🆕 Created session {session_id}")
            return replace(context, session_id=session_id)
        # Caller-chosen ids are adopted so their steps have somewhere to go
        if not await store.has_session(context.session_id):
            await store.create_session(name, session_id=context.session_id)
        return context

    return PipelineStep(name="ensure_session", execute=ensure_session)


def run_agent_step(agent: ComputerUseAgent) -> PipelineStep:
    async def run_agent(context: PipelineContext) -> PipelineContext:
        result = await agent.run(context.session_id, to_langchain_messages(context.messages))
        # The loop records its own final step only when the model finished
        return replace(context, result=result, final_persisted=result.status == RunStatus.SUCCESS)

    return PipelineStep(name="run_agent", execute=run_agent)


def abort_session_hook(agent: ComputerUseAgent) -> ErrorHook:
    """on_error for steps after the loop: record the failure and release the browser"""
    async def abort_session(error: Exception, context: PipelineContext) -> None:
        if context.session_id is not None:
            await agent.abort(context.session_id, error)

    return abort_session


def persist_final_step(
    store: TranscriptStore,
    on_error: Optional[ErrorHook] = None,
) -> PipelineStep:
    async def persist_final(context: PipelineContext) -> PipelineContext:
        if context.final_persisted or context.result is None:
            return context
        await store.append(context.session_id, Step(
            role=StepRole.ASSISTANT,
            text=context.result.response,
            metadata={"final": True, "status": context.result.status.value},
        ))
        return replace(context, final_persisted=True)

    return PipelineStep(name="persist_final", execute=persist_final, on_error=on_error)


def build_pipeline(agent: ComputerUseAgent, store: TranscriptStore) -> Pipeline:
    return Pipeline([
        PipelineStep(name="validate_messages", execute=validate_messages),
        ensure_session_step(store),
        run_agent_step(agent),
        persist_final_step(store, on_error=abort_session_hook(agent)),
    ])


async def run_task(
    agent: ComputerUseAgent,
    store: TranscriptStore,
    messages: List[Message],
    session_id: Optional[str] = None,
) -> RunResult:
    """Submit a task: returns the answer and the (possibly new) session id"""
    context = await build_pipeline(agent, store).execute(
        PipelineContext(messages=messages, session_id=session_id)
    )
    return context.result
