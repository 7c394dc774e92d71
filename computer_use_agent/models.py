"""
Data models for the computer-use agent.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field


class ActionType(str, Enum):
    """Every browser action the executor knows how to perform"""
    MOUSE_MOVE = "mouse_move"
    LEFT_CLICK = "left_click"
    RIGHT_CLICK = "right_click"
    MIDDLE_CLICK = "middle_click"
    DOUBLE_CLICK = "double_click"
    LEFT_CLICK_DRAG = "left_click_drag"
    TYPE = "type"
    KEY = "key"
    SCREENSHOT = "screenshot"
    CURSOR_POSITION = "cursor_position"
    CLOSE = "close"


# Clicks act at the last-known position when no coordinate is given
CLICK_ACTIONS = frozenset({
    ActionType.LEFT_CLICK,
    ActionType.RIGHT_CLICK,
    ActionType.MIDDLE_CLICK,
    ActionType.DOUBLE_CLICK,
})
# These always need an explicit target
TARGET_ACTIONS = frozenset({ActionType.MOUSE_MOVE, ActionType.LEFT_CLICK_DRAG})
TEXT_ACTIONS = frozenset({ActionType.TYPE, ActionType.KEY})


class Point(BaseModel):
    """A logical screen coordinate"""
    x: float = 0
    y: float = 0

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


class Action(BaseModel):
    """One requested browser action (what the model sends as tool input)"""
    type: ActionType
    coordinate: Optional[Tuple[float, float]] = None  # Logical pixels, before scaling
    text: Optional[str] = None


class ImageSize(BaseModel):
    width: int
    height: int


class ScreenshotDimensions(BaseModel):
    """Lets callers map model coordinates back onto device pixels"""
    original: ImageSize
    scaled: ImageSize


class TextOutcome(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class ImageOutcome(BaseModel):
    kind: Literal["image"] = "image"
    data: str  # Base64 encoded
    encoding: Literal["base64"] = "base64"
    media_type: str = "image/png"
    dimensions: Optional[ScreenshotDimensions] = None


ActionOutcome = Annotated[Union[TextOutcome, ImageOutcome], Field(discriminator="kind")]


class ToolCallRecord(BaseModel):
    """A tool call exactly as the model emitted it"""
    id: str
    name: str
    args: Dict[str, Any] = {}


class ToolResultRecord(BaseModel):
    """The outcome paired with one tool call"""
    tool_call_id: str
    name: str
    outcome: ActionOutcome
    is_error: bool = False


class StepRole(str, Enum):
    ASSISTANT = "assistant"
    TOOL = "tool"


class Step(BaseModel):
    """One persisted record of the agent loop"""
    role: StepRole
    text: Optional[str] = None
    tool_calls: List[ToolCallRecord] = []
    tool_results: List[ToolResultRecord] = []
    metadata: Optional[Dict[str, Any]] = None


class ElementState(BaseModel):
    """An element on the page as last observed"""
    type: str  # Tag name, e.g. "a", "button"
    text: str = ""
    is_visible: bool = True
    is_interactable: bool = True
    position: Optional[Point] = None
    dimensions: Optional[ImageSize] = None
    attributes: Dict[str, str] = {}


class BrowserState(BaseModel):
    """Best-effort snapshot of the page; never used as ground truth for acting"""
    url: str = ""
    title: str = ""
    active_element: Optional[ElementState] = None
    visible_elements: List[ElementState] = []
    interactable_elements: List[ElementState] = []
    viewport: ImageSize = ImageSize(width=1280, height=800)


class ActionCandidate(BaseModel):
    """An action the evaluator considers, tied to the element it targets"""
    type: ActionType
    target: Optional[ElementState] = None
    coordinate: Optional[Tuple[float, float]] = None
    text: Optional[str] = None

    def to_action(self) -> Action:
        return Action(type=self.type, coordinate=self.coordinate, text=self.text)


class Goal(BaseModel):
    type: Literal["navigate", "interact", "extract", "verify"] = "interact"
    target: str = ""


class PredictedEffect(BaseModel):
    state: Dict[str, Any] = {}
    probability: float
    timeframe: Literal["immediate", "delayed"] = "immediate"


class ActionEvaluation(BaseModel):
    utility: float
    epistemic_value: float
    confidence: float
    predicted_effect: PredictedEffect


class Message(BaseModel):
    """Inbound chat message"""
    role: Literal["user", "assistant", "system", "tool"]
    content: Union[str, List[Dict[str, Any]]]


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FATAL = "fatal"


class RunResult(BaseModel):
    """What a caller gets back from one agent run"""
    response: str
    session_id: str
    status: RunStatus
    steps: int = 0
