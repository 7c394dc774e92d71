"""Shared fakes and fixtures."""

import asyncio
import io
from typing import Callable, List, Optional, Union

import pytest
from langchain_core.messages import AIMessage
from PIL import Image

from computer_use_agent.agent import ComputerUseAgent
from computer_use_agent.config import AgentConfig
from computer_use_agent.evaluator import ActionSpaceEvaluator
from computer_use_agent.executor import ActionExecutor
from computer_use_agent.models import BrowserState, ElementState, ImageSize, Point
from computer_use_agent.overlay import OverlayChannel
from computer_use_agent.registry import BrowserSessionRegistry
from computer_use_agent.transcript import InMemoryTranscriptStore


def make_png(width: int = 1280, height: int = 800) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(255, 255, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeBrowser:
    """Records every capability call instead of driving Chrome."""

    def __init__(self, fail_on: Optional[set] = None, screenshot_size=(1280, 800)):
        self.calls: List[tuple] = []
        self.fail_on = fail_on or set()
        self.screenshot_size = screenshot_size
        self.closed = False

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    def calls_named(self, *names) -> List[tuple]:
        return [c for c in self.calls if c[0] in names]

    async def set_viewport(self, width, height):
        self._record("set_viewport", width, height)

    async def add_init_script(self, source):
        self._record("add_init_script", source)

    async def navigate(self, url):
        self._record("navigate", url)

    async def evaluate(self, expression):
        self._record("evaluate", expression)
        return None

    async def screenshot(self):
        self._record("screenshot")
        return make_png(*self.screenshot_size)

    async def move(self, x, y):
        self._record("move", x, y)

    async def click(self, x, y, button="left", click_count=1):
        self._record("click", x, y, button, click_count)

    async def mouse_down(self, x, y, button="left"):
        self._record("mouse_down", x, y, button)

    async def mouse_up(self, x, y, button="left"):
        self._record("mouse_up", x, y, button)

    async def type_text(self, text):
        self._record("type_text", text)

    async def key_down(self, key):
        self._record("key_down", key)

    async def key_up(self, key):
        self._record("key_up", key)

    async def key_press(self, key):
        self._record("key_press", key)

    async def describe(self):
        self._record("describe")
        return BrowserState(
            url="https://www.google.com/",
            title="Google",
            interactable_elements=[
                ElementState(type="input", text="Search", position=Point(x=640, y=300),
                             dimensions=ImageSize(width=500, height=40)),
            ],
        )

    async def close(self):
        self._record("close")
        self.closed = True


class FakeBrowserFactory:
    """Counts launches; optionally slow or failing."""

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None, **browser_kwargs):
        self.delay = delay
        self.error = error
        self.browser_kwargs = browser_kwargs
        self.launched: List[FakeBrowser] = []

    async def __call__(self) -> FakeBrowser:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        browser = FakeBrowser(**self.browser_kwargs)
        self.launched.append(browser)
        return browser


Response = Union[AIMessage, Exception, Callable[[list], AIMessage]]


class FakeChatModel:
    """
    Scripted stand-in for a LangChain chat model. Replays responses in order
    and repeats the last one once the script runs out.
    """

    def __init__(self, responses: List[Response]):
        self.responses = list(responses)
        self.calls: List[list] = []
        self.bound_tools: list = []

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages)
        # Fresh id each turn so add_messages appends instead of replacing
        return response.model_copy(update={"id": None})


_call_counter = 0


def tool_call(action: str, coordinate=None, text=None, call_id: Optional[str] = None) -> dict:
    global _call_counter
    _call_counter += 1
    args = {"action": action}
    if coordinate is not None:
        args["coordinate"] = list(coordinate)
    if text is not None:
        args["text"] = text
    return {"name": "computer", "args": args, "id": call_id or f"call_{_call_counter}", "type": "tool_call"}


def ai(text: str = "", *calls: dict) -> AIMessage:
    return AIMessage(content=text, tool_calls=list(calls))


@pytest.fixture
def config():
    return AgentConfig(
        mouse_move_delay_s=0,
        max_steps=5,
        start_url="about:blank",
        azure_endpoint="https://example.openai.azure.com/",
        api_key="test-key",
    )


@pytest.fixture
def browser_factory():
    return FakeBrowserFactory()


@pytest.fixture
def overlay():
    return OverlayChannel(enabled=True, timeout_s=0.5)


@pytest.fixture
def registry(browser_factory, overlay, config):
    return BrowserSessionRegistry(
        browser_factory,
        overlay=overlay,
        viewport=(config.viewport_width, config.viewport_height),
        start_url=config.start_url,
    )


@pytest.fixture
def evaluator():
    return ActionSpaceEvaluator()


@pytest.fixture
def executor(registry, config, overlay, evaluator):
    return ActionExecutor(registry, config, overlay=overlay, evaluator=evaluator)


@pytest.fixture
def store():
    return InMemoryTranscriptStore()


@pytest.fixture
def make_agent(executor, store, config, overlay):
    def build(model, on_step=None, **overrides):
        agent_config = config.model_copy(update=overrides) if overrides else config
        return ComputerUseAgent(
            model,
            executor,
            store,
            config=agent_config,
            overlay=overlay,
            on_step=on_step,
        )
    return build
