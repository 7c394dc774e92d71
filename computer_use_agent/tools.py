"""
The `computer` tool the model calls, bound to one session.

Tools are created via a factory so the executor and session id are injected
by closure, the same way every run gets its own tool instance.
"""
import logging
from typing import List, Optional, Sequence, Tuple

from langchain_core.messages import HumanMessage, ToolMessage
from langchain_core.tools import StructuredTool, ToolException
from pydantic import BaseModel, Field

from .errors import ActionExecutionError, ActionValidationError
from .executor import ActionExecutor
from .models import Action, ActionOutcome, ActionType, ImageOutcome, TextOutcome, ToolResultRecord

logger = logging.getLogger(__name__)

COMPUTER_TOOL_NAME = "computer"


class ComputerToolInput(BaseModel):
    """Arguments of the computer tool"""
    action: ActionType = Field(description="The action to perform")
    coordinate: Optional[List[int]] = Field(
        default=None,
        description="[x, y] pixel position for mouse_move, left_click_drag and clicks "
                    "(clicks without a coordinate act at the current cursor position)",
    )
    text: Optional[str] = Field(
        default=None,
        description="Text to type, or a key / key combination such as 'Return' or 'ctrl+s'",
    )


def computer_tool_description(display_width: int, display_height: int) -> str:
    return (
        "Use a mouse and keyboard to interact with a web browser, and take screenshots.\n"
        f"* The display is {display_width}x{display_height} pixels; coordinates are in that space.\n"
        "* Take a screenshot before acting if you are unsure what the page shows.\n"
        "* Move the mouse onto an element before clicking it, or pass a coordinate to the click.\n"
        "* Key names follow xdotool conventions (Return, BackSpace, Page_Down, ctrl+a)."
    )


def create_computer_tool(
    executor: ActionExecutor,
    session_id: str,
    display_size: Tuple[int, int],
) -> StructuredTool:
    """
    Create the computer tool for one session.

    Input-validation and execution faults are reported back to the model as
    error tool results; anything else (e.g. the browser cannot launch)
    propagates out of the tool call.
    """

    async def computer(
        action: ActionType,
        coordinate: Optional[List[int]] = None,
        text: Optional[str] = None,
    ) -> Tuple[str, ActionOutcome]:
        request = Action(
            type=action,
            coordinate=tuple(coordinate) if coordinate is not None else None,
            text=text,
        )
        try:
            outcome = await executor.execute(session_id, request)
        except (ActionValidationError, ActionExecutionError) as e:
            logger.warning(f"Computer action failed: {e}")
            raise ToolException(f"Error: {e}") from e
        return outcome_to_content(outcome), outcome

    return StructuredTool.from_function(
        coroutine=computer,
        name=COMPUTER_TOOL_NAME,
        description=computer_tool_description(*display_size),
        args_schema=ComputerToolInput,
        response_format="content_and_artifact",
        handle_tool_error=True,
        handle_validation_error=lambda e: f"Error: invalid computer action: {e}",
    )


def outcome_to_content(outcome: ActionOutcome) -> str:
    if isinstance(outcome, TextOutcome):
        return outcome.value
    if outcome.dimensions is not None:
        size = outcome.dimensions.scaled
        return f"screenshot captured ({size.width}x{size.height})"
    return "screenshot captured"


def tool_result_record(message: ToolMessage) -> ToolResultRecord:
    outcome = message.artifact
    if not isinstance(outcome, (TextOutcome, ImageOutcome)):
        outcome = TextOutcome(value=str(message.content))
    return ToolResultRecord(
        tool_call_id=message.tool_call_id,
        name=message.name or COMPUTER_TOOL_NAME,
        outcome=outcome,
        is_error=message.status == "error",
    )


def screenshot_message(results: Sequence[ToolResultRecord]) -> Optional[HumanMessage]:
    """
    Screenshots go back to the model as image parts of a user message, since
    tool messages carry text only.
    """
    images = [r.outcome for r in results if isinstance(r.outcome, ImageOutcome)]
    if not images:
        return None
    content = [{"type": "text", "text": "Screenshot after the last action:"}]
    for image in images:
        content.append({
            "type": "image_url",
            "image_url": {
                "url": f"data:{image.media_type};base64,{image.data}",
                "detail": "high"
            }
        })
    return HumanMessage(content=content)
