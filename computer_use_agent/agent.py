"""
LangGraph-based computer-use agent loop.

The graph alternates between asking the model for the next action(s) and
executing them against the browser:

    call_model ──(tool calls)──> execute_tools ──> call_model ...
        │                             │
        └──(no tool calls)──> finalize └──(budget spent)──> exhausted

Every step is written to the transcript before the model is called again.
"""
import asyncio
import logging
import time
from typing import Annotated, Callable, List, Literal, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import AzureChatOpenAI
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from .config import AgentConfig
from .errors import ModelCallError, TranscriptWriteError
from .executor import ActionExecutor
from .markers import extract_markers
from .models import Message, RunResult, RunStatus, Step, StepRole, ToolCallRecord
from .overlay import OverlayChannel
from .prompts import SYSTEM_PROMPT
from .tools import (
    COMPUTER_TOOL_NAME,
    create_computer_tool,
    screenshot_message,
    tool_result_record,
)
from .transcript import TranscriptStore

logger = logging.getLogger(__name__)

StepHook = Callable[[Step], None]


# ==============================================================
# STATE DEFINITION
# ==============================================================

class AgentLoopState(TypedDict):
    """State that flows through the agent graph"""
    # Conversation the model sees, including tool results
    messages: Annotated[list[BaseMessage], add_messages]

    session_id: str
    step_number: int  # Model turns taken so far
    max_steps: int
    deadline: float  # time.monotonic() value after which no new step starts

    # Most recent non-empty assistant text (best-effort answer on exhaustion)
    last_text: str
    final_answer: Optional[str]
    status: str


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of parts"""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "\n".join(p for p in parts if p)


def to_langchain_messages(messages: Sequence[Message]) -> List[BaseMessage]:
    """Inbound chat history -> LangChain messages (tool turns are replayed as assistant turns)"""
    converted = []
    for msg in messages:
        if msg.role == "user":
            converted.append(HumanMessage(content=msg.content))
        elif msg.role == "system":
            converted.append(SystemMessage(content=msg.content))
        else:
            converted.append(AIMessage(content=msg.content))
    return converted


def _metadata_for(text: Optional[str], **extra) -> Optional[dict]:
    metadata = dict(extra)
    markers = extract_markers(text)
    if markers:
        metadata["markers"] = markers
    return metadata or None


class TranscriptWriter:
    """Appends steps for one session and runs the post-step hook"""

    def __init__(self, store: TranscriptStore, session_id: str, on_step: Optional[StepHook] = None):
        self.store = store
        self.session_id = session_id
        self.on_step = on_step

    async def write(self, step: Step) -> None:
        try:
            await self.store.append(self.session_id, step)
        except TranscriptWriteError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to save {step.role.value} step: {e}")
            raise TranscriptWriteError(f"Failed to save {step.role.value} step: {e}") from e
        if self.on_step is not None:
            self.on_step(step)


# ==============================================================
# GRAPH NODE: CALL MODEL
# ==============================================================

def create_call_model_node(llm_with_tools, system_prompt: str):
    async def call_model(state: AgentLoopState) -> dict:
        step = state["step_number"] + 1
        logger.info(f"\n{'='*60}")
        logger.info(f"Step {step}/{state['max_steps']} [{state['session_id']}]")
        logger.info(f"{'='*60}")
        logger.info("🤔 Agent deciding next action...")

        messages = [SystemMessage(content=system_prompt)] + state["messages"]
        try:
            response = await llm_with_tools.ainvoke(messages)
        except Exception as e:
            raise ModelCallError(f"Model call failed: {e}") from e

        text = message_text(response)
        if text:
            logger.info(f"💬 Assistant: {text[:200]}")
        if response.tool_calls:
            for call in response.tool_calls:
                logger.info(f"📌 Decision: {call['name']}({call['args']})")
        else:
            logger.info("📌 Decision: final answer")

        return {
            "messages": [response],
            "step_number": step,
            "last_text": text or state["last_text"],
        }

    return call_model


# ==============================================================
# GRAPH NODE: EXECUTE TOOLS
# ==============================================================

def create_execute_tools_node(computer_tool, writer: TranscriptWriter):
    """
    Runs the turn's tool calls one after another, in the order the model
    emitted them, then persists the results.
    """

    async def run_turn(ai_message: AIMessage) -> dict:
        text = message_text(ai_message) or None
        await writer.write(Step(
            role=StepRole.ASSISTANT,
            text=text,
            tool_calls=[
                ToolCallRecord(id=c["id"], name=c["name"], args=c["args"])
                for c in ai_message.tool_calls
            ],
            metadata=_metadata_for(text),
        ))

        tool_messages = []
        for call in ai_message.tool_calls:
            if call["name"] != COMPUTER_TOOL_NAME:
                tool_messages.append(ToolMessage(
                    content=f"Error: unknown tool {call['name']}",
                    tool_call_id=call["id"],
                    name=call["name"],
                    status="error",
                ))
                continue
            result = await computer_tool.ainvoke({**call, "type": "tool_call"})
            logger.info(f"🔧 Tool result: {str(result.content)[:100]}")
            tool_messages.append(result)

        results = [tool_result_record(m) for m in tool_messages]
        await writer.write(Step(role=StepRole.TOOL, tool_results=results))

        new_messages: List[BaseMessage] = list(tool_messages)
        image_message = screenshot_message(results)
        if image_message is not None:
            new_messages.append(image_message)
        return {"messages": new_messages}

    async def execute_tools(state: AgentLoopState) -> dict:
        # A cancelled request still finishes and records the in-flight step
        work = asyncio.ensure_future(run_turn(state["messages"][-1]))
        try:
            return await asyncio.shield(work)
        except asyncio.CancelledError:
            logger.warning("⚠️ Cancellation requested; finishing the current step first")
            await work
            raise

    return execute_tools


# ==============================================================
# GRAPH NODES: TERMINAL
# ==============================================================

def create_finalize_node(writer: TranscriptWriter, executor: ActionExecutor, overlay: Optional[OverlayChannel]):
    async def finalize(state: AgentLoopState) -> dict:
        text = message_text(state["messages"][-1])
        await writer.write(Step(
            role=StepRole.ASSISTANT,
            text=text,
            metadata=_metadata_for(text, final=True),
        ))
        if overlay is not None:
            await overlay.show_success(executor.registry.get(state["session_id"]))
        logger.info("✅ Task complete")
        return {"final_answer": text, "status": RunStatus.SUCCESS.value}

    return finalize


async def exhausted(state: AgentLoopState) -> dict:
    logger.info(f"⚠️ Budget exhausted after {state['step_number']} steps")
    return {"final_answer": state["last_text"], "status": RunStatus.BUDGET_EXHAUSTED.value}


# ==============================================================
# ROUTING FUNCTIONS
# ==============================================================

def route_after_model(state: AgentLoopState) -> Literal["execute_tools", "finalize"]:
    last_message = state["messages"][-1]
    if isinstance(last_message, AIMessage) and last_message.tool_calls:
        return "execute_tools"
    return "finalize"


def route_after_tools(state: AgentLoopState) -> Literal["call_model", "exhausted"]:
    if state["step_number"] >= state["max_steps"]:
        return "exhausted"
    if time.monotonic() >= state["deadline"]:
        logger.info("⚠️ Wall-clock budget reached")
        return "exhausted"
    return "call_model"


# ==============================================================
# GRAPH BUILDER
# ==============================================================

def create_agent_graph(
    llm_with_tools,
    computer_tool,
    writer: TranscriptWriter,
    executor: ActionExecutor,
    overlay: Optional[OverlayChannel] = None,
    system_prompt: str = SYSTEM_PROMPT,
):
    graph_builder = StateGraph(AgentLoopState)

    graph_builder.add_node("call_model", create_call_model_node(llm_with_tools, system_prompt))
    graph_builder.add_node("execute_tools", create_execute_tools_node(computer_tool, writer))
    graph_builder.add_node("finalize", create_finalize_node(writer, executor, overlay))
    graph_builder.add_node("exhausted", exhausted)

    graph_builder.set_entry_point("call_model")
    graph_builder.add_conditional_edges(
        "call_model",
        route_after_model,
        {"execute_tools": "execute_tools", "finalize": "finalize"},
    )
    graph_builder.add_conditional_edges(
        "execute_tools",
        route_after_tools,
        {"call_model": "call_model", "exhausted": "exhausted"},
    )
    graph_builder.add_edge("finalize", END)
    graph_builder.add_edge("exhausted", END)

    return graph_builder.compile()


def create_chat_model(config: AgentConfig) -> BaseChatModel:
    """Azure OpenAI chat model from config; raises ValueError without credentials"""
    config.require_model_credentials()
    llm = AzureChatOpenAI(
        api_key=config.api_key,
        api_version=config.api_version,
        azure_deployment=config.model,
        azure_endpoint=config.azure_endpoint
    )
    logger.info(f"✅ LLM client configured: {config.model}")
    return llm


# ==============================================================
# AGENT
# ==============================================================

class ComputerUseAgent:
    """
    Runs the bounded agent loop for one session at a time (many sessions may
    run concurrently on the same agent).
    """

    def __init__(
        self,
        model: BaseChatModel,
        executor: ActionExecutor,
        store: TranscriptStore,
        config: Optional[AgentConfig] = None,
        overlay: Optional[OverlayChannel] = None,
        system_prompt: str = SYSTEM_PROMPT,
        on_step: Optional[StepHook] = None,
    ):
        self.model = model
        self.executor = executor
        self.store = store
        self.config = config or AgentConfig()
        self.overlay = overlay
        self.system_prompt = system_prompt
        self.on_step = on_step

    async def run(self, session_id: str, messages: Sequence[BaseMessage]) -> RunResult:
        config = self.config
        computer_tool = create_computer_tool(
            self.executor, session_id, (config.display_width, config.display_height)
        )
        writer = TranscriptWriter(self.store, session_id, self.on_step)
        graph = create_agent_graph(
            self.model.bind_tools([computer_tool]),
            computer_tool,
            writer,
            self.executor,
            self.overlay,
            self.system_prompt,
        )

        initial_state = {
            "messages": list(messages),
            "session_id": session_id,
            "step_number": 0,
            "max_steps": config.max_steps,
            "deadline": time.monotonic() + config.max_duration_s,
            "last_text": "",
            "final_answer": None,
            "status": RunStatus.RUNNING.value,
        }

        logger.info(f"\n{'='*70}")
        logger.info(f"🚀 Starting computer-use agent [{session_id}]")
        logger.info(f"Max Steps: {config.max_steps}")
        logger.info(f"{'='*70}\n")

        # Two graph nodes per step, plus the terminal node
        run_config = {"recursion_limit": config.max_steps * 2 + 5}
        try:
            final_state = await graph.ainvoke(initial_state, config=run_config)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.abort(session_id, e)
            raise

        if config.close_on_finish:
            await self.release(session_id)

        return RunResult(
            response=final_state["final_answer"] or "",
            session_id=session_id,
            status=RunStatus(final_state["status"]),
            steps=final_state["step_number"],
        )

    async def release(self, session_id: str) -> None:
        await self.executor.registry.close(session_id)
        self.executor.forget(session_id)

    async def abort(self, session_id: str, error: Exception) -> None:
        """Best effort: tell the page, record the failure, free the browser"""
        logger.error(f"💥 Agent run failed [{session_id}]: {error}")
        if self.overlay is not None:
            await self.overlay.show_error(self.executor.registry.get(session_id), str(error))
        try:
            await self.store.append(session_id, Step(
                role=StepRole.ASSISTANT,
                text=None,
                metadata={"status": RunStatus.FATAL.value, "error": str(error)},
            ))
        except Exception as persist_error:
            logger.error(f"Failed to record run failure: {persist_error}")
        try:
            await self.release(session_id)
        except Exception as close_error:
            logger.error(f"Failed to release browser for {session_id}: {close_error}")
