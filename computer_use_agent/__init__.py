"""
Computer-use agent - an LLM drives a real Chrome browser through a LangGraph loop.

- Bounded tool-use loop with durable, append-only step transcripts
- Per-session browsers controlled over CDP
- Scale-factor aware mouse/keyboard/screenshot actions
- Heuristic action-space evaluator with adaptive pattern reliability
"""

from .agent import ComputerUseAgent, AgentLoopState, create_agent_graph, create_chat_model
from .config import AgentConfig
from .evaluator import ActionSpaceEvaluator
from .executor import ActionExecutor, key_sequence
from .models import (
    Action,
    ActionType,
    BrowserState,
    ImageOutcome,
    Message,
    RunResult,
    RunStatus,
    Step,
    StepRole,
    TextOutcome,
)
from .overlay import OverlayChannel
from .pipeline import Pipeline, PipelineStep, build_pipeline, run_task
from .registry import BrowserSessionRegistry
from .runtime import Runtime, build_runtime
from .transcript import InMemoryTranscriptStore, SQLiteTranscriptStore

__all__ = [
    'ComputerUseAgent',
    'AgentLoopState',
    'create_agent_graph',
    'create_chat_model',
    'AgentConfig',
    'ActionSpaceEvaluator',
    'ActionExecutor',
    'key_sequence',
    'Action',
    'ActionType',
    'BrowserState',
    'ImageOutcome',
    'Message',
    'RunResult',
    'RunStatus',
    'Step',
    'StepRole',
    'TextOutcome',
    'OverlayChannel',
    'Pipeline',
    'PipelineStep',
    'build_pipeline',
    'run_task',
    'BrowserSessionRegistry',
    'Runtime',
    'build_runtime',
    'InMemoryTranscriptStore',
    'SQLiteTranscriptStore',
]
