"""
Turns abstract actions into calls against a session's browser.

Coordinates arrive in the model's logical display space and are divided by
the scale factor before they reach the browser. Screenshots travel the other
way: they are resized by the scale factor before the model sees them.
"""
import asyncio
import base64
import io
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from PIL import Image
from pydantic import ValidationError

from .browser import BrowserHandle
from .config import AgentConfig
from .errors import ActionExecutionError, ActionValidationError, ComputerUseError
from .evaluator import ActionSpaceEvaluator
from .models import (
    CLICK_ACTIONS,
    TARGET_ACTIONS,
    TEXT_ACTIONS,
    Action,
    ActionOutcome,
    ActionType,
    ImageOutcome,
    ImageSize,
    Point,
    ScreenshotDimensions,
    TextOutcome,
)
from .overlay import OverlayChannel
from .registry import BrowserSessionRegistry

logger = logging.getLogger(__name__)


# xdotool-style key names -> browser key names
KEY_MAPPING = {
    'Return': 'Enter',
    'KP_Enter': 'Enter',
    'BackSpace': 'Backspace',
    'space': ' ',
    'Up': 'ArrowUp',
    'Down': 'ArrowDown',
    'Left': 'ArrowLeft',
    'Right': 'ArrowRight',
    'Page_Up': 'PageUp',
    'Page_Down': 'PageDown',
    'KP_0': 'Numpad0',
    'KP_1': 'Numpad1',
    'KP_2': 'Numpad2',
    'KP_3': 'Numpad3',
    'KP_4': 'Numpad4',
    'KP_5': 'Numpad5',
    'KP_6': 'Numpad6',
    'KP_7': 'Numpad7',
    'KP_8': 'Numpad8',
    'KP_9': 'Numpad9',
}

MODIFIER_MAPPING = {
    'ctrl': 'Control',
    'control': 'Control',
    'alt': 'Alt',
    'shift': 'Shift',
    'cmd': 'Meta',
    'super': 'Meta',
    'meta': 'Meta',
}

KeyEvent = Tuple[str, str]  # ("down" | "press" | "up", key)


def map_key(name: str) -> str:
    return KEY_MAPPING.get(name, name)


def key_sequence(text: str) -> List[KeyEvent]:
    """
    Decompose "ctrl+shift+t" into modifier downs, one press, and modifier ups
    in reverse order. A single name is just a press.
    """
    parts = text.split('+')
    if len(parts) == 1 or not all(parts):
        return [("press", map_key(text))]

    modifiers = [MODIFIER_MAPPING.get(p.lower(), map_key(p)) for p in parts[:-1]]
    main_key = map_key(parts[-1])
    return (
        [("down", m) for m in modifiers]
        + [("press", main_key)]
        + [("up", m) for m in reversed(modifiers)]
    )


def _fmt(x: float, y: float) -> str:
    return f"({x:g}, {y:g})"


Handler = Callable[[str, Optional[BrowserHandle], Action], Awaitable[ActionOutcome]]

# These never need a live browser
_BROWSERLESS = frozenset({ActionType.CURSOR_POSITION, ActionType.CLOSE})


class ActionExecutor:
    """The only component that acts on a live browser"""

    def __init__(
        self,
        registry: BrowserSessionRegistry,
        config: Optional[AgentConfig] = None,
        overlay: Optional[OverlayChannel] = None,
        evaluator: Optional[ActionSpaceEvaluator] = None,
    ):
        config = config or AgentConfig()
        self.registry = registry
        self.overlay = overlay
        self.evaluator = evaluator
        self.scale_factor = config.scale_factor
        self.move_steps = config.mouse_move_steps
        self.move_delay_s = config.mouse_move_delay_s
        # Last-known logical pointer per session
        self._pointers: Dict[str, Point] = {}

        self._handlers: Dict[ActionType, Handler] = {
            ActionType.MOUSE_MOVE: self._mouse_move,
            ActionType.LEFT_CLICK: self._click("left", 1, "clicked"),
            ActionType.RIGHT_CLICK: self._click("right", 1, "right clicked"),
            ActionType.MIDDLE_CLICK: self._click("middle", 1, "middle clicked"),
            ActionType.DOUBLE_CLICK: self._click("left", 2, "double clicked"),
            ActionType.LEFT_CLICK_DRAG: self._drag,
            ActionType.TYPE: self._type,
            ActionType.KEY: self._key,
            ActionType.SCREENSHOT: self._screenshot,
            ActionType.CURSOR_POSITION: self._cursor_position,
            ActionType.CLOSE: self._close,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor handler for: {sorted(m.value for m in missing)}")

    # ==============================================================
    # POINTER
    # ==============================================================

    def cursor(self, session_id: str) -> Optional[Point]:
        """Last-known logical position, or None if the session never moved"""
        return self._pointers.get(session_id)

    def _cursor_or_origin(self, session_id: str) -> Point:
        return self._pointers.get(session_id) or Point()

    def to_device(self, x: float, y: float) -> Tuple[int, int]:
        return round(x / self.scale_factor), round(y / self.scale_factor)

    # ==============================================================
    # ENTRY POINT
    # ==============================================================

    def validate(self, session_id: str, action: Union[Action, Dict[str, Any]]) -> Action:
        """Reject malformed actions before anything touches the browser"""
        if not isinstance(action, Action):
            try:
                action = Action.model_validate(action)
            except ValidationError as e:
                raise ActionValidationError(f"Invalid action: {e}") from e

        label = action.type.value.replace('_', ' ')
        if action.type in TARGET_ACTIONS and action.coordinate is None:
            raise ActionValidationError(f"Coordinates required for {label}")
        if (
            action.type in CLICK_ACTIONS
            and action.coordinate is None
            and session_id not in self._pointers
        ):
            raise ActionValidationError(
                f"Coordinates required for {label}: no previous mouse position in this session"
            )
        if action.type in TEXT_ACTIONS and not action.text:
            raise ActionValidationError(
                "Text required for type action" if action.type == ActionType.TYPE
                else "Key sequence required for key action"
            )
        return action

    async def execute(self, session_id: str, action: Union[Action, Dict[str, Any]]) -> ActionOutcome:
        action = self.validate(session_id, action)

        handle = None
        if action.type not in _BROWSERLESS:
            # BrowserLaunchError propagates: without a browser the session is unusable
            handle = await self.registry.ensure(session_id)

        logger.info(f"🖱️ [{session_id}] {action.type.value} coordinate={action.coordinate} text={action.text!r}")
        try:
            outcome = await self._handlers[action.type](session_id, handle, action)
        except ComputerUseError:
            raise
        except Exception as e:
            logger.error(f"❌ [{session_id}] {action.type.value} failed: {e}")
            if self.evaluator is not None:
                self.evaluator.record_outcome(action, success=False)
            await self._mirror_error(session_id, f"{action.type.value} failed: {e}")
            raise ActionExecutionError(f"{action.type.value} failed: {e}") from e

        if self.evaluator is not None and action.type not in _BROWSERLESS:
            self.evaluator.record_outcome(action, success=True)
        if self.overlay is not None and action.type != ActionType.CLOSE:
            summary = outcome.value if isinstance(outcome, TextOutcome) else "captured screenshot"
            await self.overlay.show_step(self.registry.get(session_id), action.type.value, summary, action.coordinate)
        return outcome

    async def _mirror_error(self, session_id: str, text: str) -> None:
        if self.overlay is not None:
            await self.overlay.show_error(self.registry.get(session_id), text)

    # ==============================================================
    # HANDLERS
    # ==============================================================

    async def _mouse_move(self, session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
        start = self._cursor_or_origin(session_id)
        target_x, target_y = action.coordinate

        # Interpolated so the cursor marker glides instead of jumping
        for i in range(1, self.move_steps + 1):
            progress = i / self.move_steps
            x = start.x + (target_x - start.x) * progress
            y = start.y + (target_y - start.y) * progress
            await handle.move(*self.to_device(x, y))
            self._pointers[session_id] = Point(x=x, y=y)
            if self.move_delay_s:
                await asyncio.sleep(self.move_delay_s)

        self._pointers[session_id] = Point(x=target_x, y=target_y)
        return TextOutcome(value=f"moved cursor to {_fmt(target_x, target_y)}")

    def _click(self, button: str, click_count: int, verb: str) -> Handler:
        async def click(session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
            if action.coordinate is not None:
                x, y = action.coordinate
            else:
                x, y = self._pointers[session_id].as_tuple()
            await handle.click(*self.to_device(x, y), button=button, click_count=click_count)
            self._pointers[session_id] = Point(x=x, y=y)
            return TextOutcome(value=f"{verb} at coordinates {_fmt(x, y)}")
        return click

    async def _drag(self, session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
        start = self._cursor_or_origin(session_id)
        target_x, target_y = action.coordinate
        start_device = self.to_device(start.x, start.y)
        target_device = self.to_device(target_x, target_y)

        await handle.move(*start_device)
        await handle.mouse_down(*start_device)
        await handle.move(*target_device)
        await handle.mouse_up(*target_device)
        self._pointers[session_id] = Point(x=target_x, y=target_y)
        return TextOutcome(value=f"dragged from {_fmt(start.x, start.y)} to {_fmt(target_x, target_y)}")

    async def _type(self, session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
        await handle.type_text(action.text)
        return TextOutcome(value=f"typed text: {action.text}")

    async def _key(self, session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
        for event, key in key_sequence(action.text):
            if event == "down":
                await handle.key_down(key)
            elif event == "up":
                await handle.key_up(key)
            else:
                await handle.key_press(key)
        return TextOutcome(value=f"pressed key: {action.text}")

    async def _screenshot(self, session_id: str, handle: BrowserHandle, action: Action) -> ActionOutcome:
        png = await handle.screenshot()
        image = Image.open(io.BytesIO(png))
        original = ImageSize(width=image.width, height=image.height)
        scaled = ImageSize(
            width=max(1, round(image.width * self.scale_factor)),
            height=max(1, round(image.height * self.scale_factor)),
        )
        if scaled != original:
            image = image.resize((scaled.width, scaled.height), Image.LANCZOS)
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            png = buffer.getvalue()

        if self.evaluator is not None:
            await self._refresh_evaluator(session_id, handle)

        return ImageOutcome(
            data=base64.b64encode(png).decode("ascii"),
            dimensions=ScreenshotDimensions(original=original, scaled=scaled),
        )

    async def _refresh_evaluator(self, session_id: str, handle: BrowserHandle) -> None:
        try:
            self.evaluator.observe(await handle.describe())
        except Exception as e:
            logger.warning(f"[{session_id}] Could not refresh browser state: {e}")

    async def _cursor_position(self, session_id: str, handle: Optional[BrowserHandle], action: Action) -> ActionOutcome:
        point = self._cursor_or_origin(session_id)
        return TextOutcome(value=f"cursor position: {_fmt(point.x, point.y)}")

    async def _close(self, session_id: str, handle: Optional[BrowserHandle], action: Action) -> ActionOutcome:
        await self.registry.close(session_id)
        self._pointers.pop(session_id, None)
        return TextOutcome(value="browser closed")

    def forget(self, session_id: str) -> None:
        self._pointers.pop(session_id, None)
