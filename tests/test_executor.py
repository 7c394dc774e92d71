"""
Tests for ActionExecutor: validation, pointer tracking, scaling, key combos.
"""

import asyncio
import base64
import io

import pytest
from PIL import Image

from computer_use_agent.config import AgentConfig
from computer_use_agent.errors import ActionExecutionError, ActionValidationError
from computer_use_agent.evaluator import CONTENT_SCANNING, ActionSpaceEvaluator
from computer_use_agent.executor import ActionExecutor, key_sequence
from computer_use_agent.models import Action, ActionType, ImageOutcome, TextOutcome
from computer_use_agent.registry import BrowserSessionRegistry

from conftest import FakeBrowserFactory


def move(x, y):
    return Action(type=ActionType.MOUSE_MOVE, coordinate=(x, y))


def click():
    return Action(type=ActionType.LEFT_CLICK)


def scaled_executor(scale_factor, factory=None, **browser_kwargs):
    factory = factory or FakeBrowserFactory(**browser_kwargs)
    registry = BrowserSessionRegistry(factory, start_url=None)
    config = AgentConfig(scale_factor=scale_factor, mouse_move_delay_s=0)
    return ActionExecutor(registry, config), factory


class TestKeySequence:
    def test_single_key_is_one_press(self):
        assert key_sequence("a") == [("press", "a")]

    def test_xdotool_names_are_mapped(self):
        assert key_sequence("Return") == [("press", "Enter")]
        assert key_sequence("KP_5") == [("press", "Numpad5")]
        assert key_sequence("Page_Down") == [("press", "PageDown")]

    def test_unmapped_names_pass_through(self):
        assert key_sequence("Escape") == [("press", "Escape")]

    def test_combination_releases_in_reverse(self):
        assert key_sequence("ctrl+shift+t") == [
            ("down", "Control"),
            ("down", "Shift"),
            ("press", "t"),
            ("up", "Shift"),
            ("up", "Control"),
        ]

    def test_combination_maps_main_key(self):
        assert key_sequence("ctrl+Return") == [
            ("down", "Control"),
            ("press", "Enter"),
            ("up", "Control"),
        ]

    def test_lone_plus_is_a_literal_key(self):
        assert key_sequence("+") == [("press", "+")]


class TestValidation:
    @pytest.mark.asyncio
    async def test_click_without_coordinate_or_history_is_rejected(self, executor, browser_factory):
        with pytest.raises(ActionValidationError, match="no previous mouse position"):
            await executor.execute("s1", click())

        assert browser_factory.launched == []
        assert executor.cursor("s1") is None

    @pytest.mark.asyncio
    async def test_move_requires_coordinate(self, executor, browser_factory):
        with pytest.raises(ActionValidationError, match="Coordinates required for mouse move"):
            await executor.execute("s1", Action(type=ActionType.MOUSE_MOVE))
        assert browser_factory.launched == []

    @pytest.mark.asyncio
    async def test_drag_requires_coordinate(self, executor):
        with pytest.raises(ActionValidationError, match="left click drag"):
            await executor.execute("s1", Action(type=ActionType.LEFT_CLICK_DRAG))

    @pytest.mark.asyncio
    async def test_type_requires_text(self, executor):
        with pytest.raises(ActionValidationError, match="Text required for type action"):
            await executor.execute("s1", Action(type=ActionType.TYPE, text=""))

    @pytest.mark.asyncio
    async def test_key_requires_text(self, executor):
        with pytest.raises(ActionValidationError, match="Key sequence required"):
            await executor.execute("s1", Action(type=ActionType.KEY))

    def test_unknown_action_type_in_dict_is_rejected(self, executor):
        with pytest.raises(ActionValidationError, match="Invalid action"):
            executor.validate("s1", {"type": "teleport"})

    def test_dict_actions_are_parsed(self, executor):
        action = executor.validate("s1", {"type": "mouse_move", "coordinate": [3, 4]})
        assert action == Action(type=ActionType.MOUSE_MOVE, coordinate=(3, 4))


class TestPointer:
    @pytest.mark.asyncio
    async def test_click_without_coordinate_uses_last_move(self, executor, browser_factory):
        await executor.execute("s1", move(320, 240))
        outcome = await executor.execute("s1", click())

        browser = browser_factory.launched[0]
        assert browser.calls_named("click") == [("click", 320, 240, "left", 1)]
        assert outcome == TextOutcome(value="clicked at coordinates (320, 240)")

    @pytest.mark.asyncio
    async def test_move_is_interpolated_from_origin(self, executor, browser_factory):
        outcome = await executor.execute("s1", move(200, 100))

        moves = browser_factory.launched[0].calls_named("move")
        assert len(moves) == 20
        assert moves[0] == ("move", 10, 5)
        assert moves[-1] == ("move", 200, 100)
        assert outcome.value == "moved cursor to (200, 100)"
        assert executor.cursor("s1").as_tuple() == (200, 100)

    @pytest.mark.asyncio
    async def test_click_with_coordinate_updates_pointer(self, executor, browser_factory):
        await executor.execute("s1", Action(type=ActionType.RIGHT_CLICK, coordinate=(15, 25)))
        await executor.execute("s1", Action(type=ActionType.DOUBLE_CLICK))

        clicks = browser_factory.launched[0].calls_named("click")
        assert clicks == [
            ("click", 15, 25, "right", 1),
            ("click", 15, 25, "left", 2),
        ]

    @pytest.mark.asyncio
    async def test_middle_click_outcome(self, executor):
        outcome = await executor.execute("s1", Action(type=ActionType.MIDDLE_CLICK, coordinate=(1, 2)))
        assert outcome.value == "middle clicked at coordinates (1, 2)"

    @pytest.mark.asyncio
    async def test_drag_starts_at_last_position(self, executor, browser_factory):
        await executor.execute("s1", move(50, 50))
        browser = browser_factory.launched[0]
        before = len(browser.calls)

        outcome = await executor.execute("s1", Action(type=ActionType.LEFT_CLICK_DRAG, coordinate=(150, 160)))

        pointer_calls = [c for c in browser.calls[before:] if c[0] in ("move", "mouse_down", "mouse_up")]
        assert pointer_calls == [
            ("move", 50, 50),
            ("mouse_down", 50, 50, "left"),
            ("move", 150, 160),
            ("mouse_up", 150, 160, "left"),
        ]
        assert outcome.value == "dragged from (50, 50) to (150, 160)"
        assert executor.cursor("s1").as_tuple() == (150, 160)

    @pytest.mark.asyncio
    async def test_cursor_position_without_history_reports_origin(self, executor, browser_factory):
        outcome = await executor.execute("s1", Action(type=ActionType.CURSOR_POSITION))

        assert outcome.value == "cursor position: (0, 0)"
        assert browser_factory.launched == []

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_pointer(self, executor, registry):
        await asyncio.gather(
            executor.execute("a", move(10, 20)),
            executor.execute("b", move(500, 400)),
        )
        await asyncio.gather(
            executor.execute("a", click()),
            executor.execute("b", click()),
        )

        assert registry.get("a").calls_named("click") == [("click", 10, 20, "left", 1)]
        assert registry.get("b").calls_named("click") == [("click", 500, 400, "left", 1)]

    @pytest.mark.asyncio
    async def test_other_session_cannot_click_without_history(self, executor):
        await executor.execute("a", move(10, 20))
        with pytest.raises(ActionValidationError):
            await executor.execute("b", click())


class TestKeyboard:
    @pytest.mark.asyncio
    async def test_type_text(self, executor, browser_factory):
        outcome = await executor.execute("s1", Action(type=ActionType.TYPE, text="cats"))

        assert browser_factory.launched[0].calls_named("type_text") == [("type_text", "cats")]
        assert outcome.value == "typed text: cats"

    @pytest.mark.asyncio
    async def test_key_combination_order(self, executor, browser_factory):
        outcome = await executor.execute("s1", Action(type=ActionType.KEY, text="ctrl+shift+t"))

        events = browser_factory.launched[0].calls_named("key_down", "key_press", "key_up")
        assert events == [
            ("key_down", "Control"),
            ("key_down", "Shift"),
            ("key_press", "t"),
            ("key_up", "Shift"),
            ("key_up", "Control"),
        ]
        assert outcome.value == "pressed key: ctrl+shift+t"


class TestScaling:
    @pytest.mark.asyncio
    async def test_coordinates_are_divided_by_scale_factor(self):
        executor, factory = scaled_executor(0.5)
        await executor.execute("s1", Action(type=ActionType.LEFT_CLICK, coordinate=(100, 50)))

        assert factory.launched[0].calls_named("click") == [("click", 200, 100, "left", 1)]

    @pytest.mark.parametrize("scale_factor, expected", [
        (0.5, (640, 400)),
        (1.0, (1280, 800)),
        (1.5, (1920, 1200)),
        (0.33, (422, 264)),
        (0.0003, (1, 1)),
    ])
    @pytest.mark.asyncio
    async def test_screenshot_is_resized(self, scale_factor, expected):
        executor, _ = scaled_executor(scale_factor)
        outcome = await executor.execute("s1", Action(type=ActionType.SCREENSHOT))

        assert isinstance(outcome, ImageOutcome)
        assert outcome.dimensions.original.width == 1280
        assert outcome.dimensions.original.height == 800
        assert (outcome.dimensions.scaled.width, outcome.dimensions.scaled.height) == expected

        image = Image.open(io.BytesIO(base64.b64decode(outcome.data)))
        assert image.size == expected

    @pytest.mark.asyncio
    async def test_screenshot_refreshes_evaluator_state(self, executor, evaluator):
        await executor.execute("s1", Action(type=ActionType.SCREENSHOT))
        assert evaluator.last_known_state.url == "https://www.google.com/"


class TestFailures:
    @pytest.mark.asyncio
    async def test_browser_fault_becomes_execution_error(self, overlay):
        factory = FakeBrowserFactory(fail_on={"click"})
        registry = BrowserSessionRegistry(factory, overlay=overlay, start_url=None)
        evaluator = ActionSpaceEvaluator()
        executor = ActionExecutor(registry, AgentConfig(mouse_move_delay_s=0), overlay=overlay, evaluator=evaluator)

        with pytest.raises(ActionExecutionError, match="click exploded"):
            await executor.execute("s1", Action(type=ActionType.LEFT_CLICK, coordinate=(5, 5)))

        assert evaluator.success_rate(CONTENT_SCANNING) == pytest.approx(0.94)
        overlay_updates = factory.launched[0].calls_named("evaluate")
        assert any('"variant": "error"' in call[1] for call in overlay_updates)

    @pytest.mark.asyncio
    async def test_success_is_mirrored_to_overlay(self, executor, browser_factory):
        await executor.execute("s1", Action(type=ActionType.LEFT_CLICK, coordinate=(5, 5)))

        overlay_updates = browser_factory.launched[0].calls_named("evaluate")
        assert any('"stepType": "left_click"' in call[1] for call in overlay_updates)


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_browser_and_pointer(self, executor, registry, browser_factory):
        await executor.execute("s1", move(5, 5))
        outcome = await executor.execute("s1", Action(type=ActionType.CLOSE))

        assert outcome.value == "browser closed"
        assert "s1" not in registry
        assert browser_factory.launched[0].closed
        assert executor.cursor("s1") is None

    @pytest.mark.asyncio
    async def test_close_without_browser_launches_nothing(self, executor, browser_factory):
        await executor.execute("s1", Action(type=ActionType.CLOSE))
        assert browser_factory.launched == []
