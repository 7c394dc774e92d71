"""
HTTP surface for the agent.

Routes:
    POST /computer-use        run a task (creates a session when none is given)
    POST /computer-control    perform one action directly
    GET  /sessions/{id}/steps read a session's transcript
    GET  /health
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    ActionExecutionError,
    ActionValidationError,
    BrowserLaunchError,
    PipelineInputError,
)
from .models import Action, ActionType, Message, RunStatus, Step
from .pipeline import run_task
from .runtime import Runtime

logger = logging.getLogger(__name__)


class TaskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    messages: List[Message]


class TaskResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str = Field(alias="sessionId")
    status: RunStatus


class ControlRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(default="default", alias="sessionId")
    action: ActionType
    coordinate: Optional[Tuple[float, float]] = None
    text: Optional[str] = None


def create_app(runtime: Runtime) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down: closing all browsers")
        await runtime.shutdown()

    app = FastAPI(title="Computer-use agent", lifespan=lifespan)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "healthy", "browsers": len(runtime.registry)}

    @app.post("/computer-use", response_model=TaskResponse, response_model_by_alias=True)
    async def computer_use(request: TaskRequest) -> TaskResponse:
        try:
            result = await run_task(runtime.agent, runtime.store, request.messages, request.session_id)
        except PipelineInputError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except Exception as e:
            logger.error(f"Computer-use task failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to run computer-use task: {e}",
            )
        return TaskResponse(response=result.response, session_id=result.session_id, status=result.status)

    @app.post("/computer-control")
    async def computer_control(request: ControlRequest) -> Dict[str, Any]:
        action = Action(type=request.action, coordinate=request.coordinate, text=request.text)
        try:
            outcome = await runtime.executor.execute(request.session_id, action)
        except ActionValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except (ActionExecutionError, BrowserLaunchError) as e:
            logger.error(f"Computer control action failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to perform computer control action",
            )
        return outcome.model_dump()

    @app.get("/sessions/{session_id}/steps", response_model=List[Step])
    async def session_steps(session_id: str) -> List[Step]:
        if not await runtime.store.has_session(session_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session {session_id}")
        return await runtime.store.steps(session_id)

    return app
