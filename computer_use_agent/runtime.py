"""
Wires the components together from an AgentConfig.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from langchain_core.language_models import BaseChatModel

from .agent import ComputerUseAgent, create_chat_model
from .config import AgentConfig
from .evaluator import ActionSpaceEvaluator
from .executor import ActionExecutor
from .overlay import OverlayChannel
from .registry import BrowserFactory, BrowserSessionRegistry
from .transcript import SQLiteTranscriptStore, TranscriptStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: AgentConfig
    overlay: OverlayChannel
    registry: BrowserSessionRegistry
    evaluator: ActionSpaceEvaluator
    executor: ActionExecutor
    store: TranscriptStore
    agent: ComputerUseAgent

    async def shutdown(self) -> None:
        await self.registry.close_all()


def build_runtime(
    config: Optional[AgentConfig] = None,
    model: Optional[BaseChatModel] = None,
    browser_factory: Optional[BrowserFactory] = None,
    store: Optional[TranscriptStore] = None,
) -> Runtime:
    config = config or AgentConfig.from_env()
    overlay = OverlayChannel(enabled=config.overlay_enabled)

    if browser_factory is None:
        registry = BrowserSessionRegistry.from_config(config, overlay)
    else:
        registry = BrowserSessionRegistry(
            browser_factory,
            overlay=overlay,
            viewport=(config.viewport_width, config.viewport_height),
            start_url=config.start_url,
        )

    evaluator = ActionSpaceEvaluator()
    executor = ActionExecutor(registry, config, overlay=overlay, evaluator=evaluator)
    store = store or SQLiteTranscriptStore(config.transcript_db_path)
    agent = ComputerUseAgent(
        model or create_chat_model(config),
        executor,
        store,
        config=config,
        overlay=overlay,
    )
    logger.info(f"✅ Runtime ready (scale factor {config.scale_factor}, max steps {config.max_steps})")
    return Runtime(
        config=config,
        overlay=overlay,
        registry=registry,
        evaluator=evaluator,
        executor=executor,
        store=store,
        agent=agent,
    )
