"""
HTTP Control Surface

Every endpoint requires the access token, passed either as
`Authorization: Bearer <token>` or as the `access_token` query parameter.
Agent events are streamed to clients as Server-Sent Events on /events.
"""

import asyncio
import logging
import secrets
from dataclasses import replace
from functools import partial
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from agent import Agent
from agent.errors import AgentError, CollaboratorError
from agent.models import Action, BoundingBox, to_jsonable
from config import config
from server.logging_config import setup_logging
from server.utils import encode_sse, get_local_ip

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "AlreadyActive": 409,
    "NotActive": 409,
    "AlreadyRecording": 409,
    "AlreadyCapturing": 409,
    "UnsupportedStep": 422,
    "InvalidParameters": 422,
    "CollaboratorFailure": 502,
    "PlanningFailure": 502,
    "PlaybackFailure": 502,
    "Timeout": 504,
}


# explicit null clears these, other fields ignore null
NULLABLE_CONFIG_FIELDS = ("task_timeout", "screenshot_dir")


class TaskRequest(BaseModel):
    description: str = Field(..., description="Natural language description of the task")
    priority: int = Field(0, description="Advisory priority, does not reorder the queue")


class PlaybackRequest(BaseModel):
    actions: List[Dict[str, Any]] = Field(..., description="Actions returned by /recording/stop")
    speed: float = Field(1.0, description="Speed multiplier, <= 0 means 1.0")


class AgentConfigRequest(BaseModel):
    """Partial update, fields left out keep their current value"""
    monitor_interval: Optional[float] = None
    context_history_size: Optional[int] = None
    max_task_history: Optional[int] = None
    recording_capacity: Optional[int] = None
    type_delay_ms: Optional[int] = None
    wait_ms: Optional[int] = None
    task_timeout: Optional[float] = None
    screenshot_dir: Optional[str] = None
    learning_enabled: Optional[bool] = None
    max_learning_events: Optional[int] = None


class CaptureRequest(BaseModel):
    interval_ms: int = Field(500, description="Delay between captures")
    display: int = Field(0, description="Display index, only 0 is supported")


class RegionRequest(BaseModel):
    x: int = 0
    y: int = 0
    width: int
    height: int


class WindowRequest(BaseModel):
    identifier: str
    identifier_type: str = Field("title", description="title or pid")


class LaunchRequest(BaseModel):
    path: str
    args: List[str] = Field(default_factory=list)


class CloseRequest(BaseModel):
    identifier: str
    identifier_type: str = Field("name", description="name or pid")


async def run_blocking(func, *args):
    """Run a blocking collaborator call in the default executor."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, partial(func, *args))
    except AgentError:
        raise
    except Exception as e:
        raise CollaboratorError(f"{getattr(func, '__name__', func)} failed: {e}") from e


def create_app(agent: Agent, access_token: str) -> FastAPI:
    """Build the FastAPI app around an already constructed agent."""

    async def verify_token(request: Request):
        token = request.headers.get("Authorization") or request.query_params.get("access_token")
        # Bearer token format
        if token and token.startswith("Bearer "):
            token = token[7:]
        if not token or not secrets.compare_digest(token, access_token):
            raise HTTPException(status_code=401, detail="Invalid access token")

    app = FastAPI(title="Desktop Agent", dependencies=[Depends(verify_token)])
    app.state.agent = agent

    @app.exception_handler(AgentError)
    async def agent_error_handler(request: Request, exc: AgentError):
        status_code = ERROR_STATUS.get(exc.kind, 500)
        return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})

    @app.post("/agent/start")
    async def start_agent():
        await agent.start()
        return {"message": "AI Agent started"}

    @app.post("/agent/stop")
    async def stop_agent():
        await agent.stop()
        return {"message": "AI Agent stopped"}

    @app.get("/agent/status")
    async def agent_status():
        return agent.status()

    @app.get("/agent/config")
    async def get_agent_config():
        return agent.get_config().to_dict()

    @app.put("/agent/config")
    async def update_agent_config(body: AgentConfigRequest):
        updates = {
            key: value for key, value in body.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_CONFIG_FIELDS
        }
        agent.update_config(replace(agent.get_config(), **updates))
        return agent.get_config().to_dict()

    @app.post("/tasks")
    async def submit_task(body: TaskRequest):
        task = await agent.submit_task(body.description, body.priority)
        return task.to_dict()

    @app.get("/tasks/{task_id}")
    async def get_task(task_id: str):
        task = agent.get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
        return task.to_dict()

    @app.post("/recording/start")
    async def start_recording():
        agent.start_recording()
        return {"message": "Recording started"}

    @app.post("/recording/stop")
    async def stop_recording():
        actions = agent.stop_recording()
        return {"actions": [a.to_dict() for a in actions]}

    @app.post("/recording/playback")
    async def playback(body: PlaybackRequest):
        try:
            actions = [Action.from_dict(item) for item in body.actions]
        except (KeyError, TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid action: {e}")
        await agent.playback_actions(actions, body.speed)
        return {"message": "Playback complete", "played": len(actions)}

    @app.post("/screenshot")
    async def screenshot():
        shot = await run_blocking(agent.screen.capture_screen, 0)
        return shot.to_dict()

    @app.get("/displays")
    async def displays():
        return await run_blocking(agent.screen.get_display_info)

    @app.post("/capture/start")
    async def start_capture(body: CaptureRequest):
        agent.screen.start_continuous_capture(body.interval_ms, body.display)
        return {"message": "Continuous capture started"}

    @app.post("/capture/stop")
    async def stop_capture():
        await run_blocking(agent.screen.stop_continuous_capture, 5.0)
        return {"message": "Continuous capture stopped"}

    def require_detector():
        if agent.detector is None:
            raise CollaboratorError("no UI detector configured")
        return agent.detector

    @app.get("/ui/elements")
    async def ui_elements():
        elements = await run_blocking(require_detector().detect_ui_elements)
        return {"elements": [e.to_dict() for e in elements]}

    @app.post("/ui/ocr")
    async def ocr(body: RegionRequest):
        region = BoundingBox(body.x, body.y, body.width, body.height)
        result = await run_blocking(require_detector().perform_ocr, region)
        return to_jsonable(result)

    @app.get("/windows")
    async def windows():
        return {"windows": to_jsonable(await run_blocking(agent.automation.get_all_windows))}

    @app.get("/windows/active")
    async def active_window():
        return to_jsonable(await run_blocking(agent.automation.get_active_window))

    @app.post("/windows/focus")
    async def focus_window(body: WindowRequest):
        await run_blocking(agent.automation.focus_window, body.identifier, body.identifier_type)
        return {"message": f"Focused {body.identifier}"}

    @app.post("/apps/launch")
    async def launch_app(body: LaunchRequest):
        await run_blocking(agent.automation.launch_application, body.path, body.args)
        return {"message": f"Launched {body.path}"}

    @app.post("/apps/close")
    async def close_app(body: CloseRequest):
        await run_blocking(agent.automation.close_application, body.identifier, body.identifier_type)
        return {"message": f"Closed {body.identifier}"}

    @app.get("/events")
    async def event_stream():
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def listener(name: str, payload: Any):
            # serialize in the emitting thread so later mutations are not observed
            item = {"event": name, "data": to_jsonable(payload)}
            loop.call_soon_threadsafe(queue.put_nowait, item)

        agent.event_bus.subscribe(listener)

        async def event_generator():
            yield encode_sse({"message": "Event stream started"})
            try:
                while True:
                    item = await queue.get()
                    yield encode_sse(item)
            finally:
                agent.event_bus.unsubscribe(listener)

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        )

    return app


def build_agent() -> Agent:
    """Wire the real collaborators from the global config."""
    from agent import ActionRecorder, EventBus, Planner
    from computer import GuiAction, ScreenCapture, UIDetector

    agent_config = config.agent
    event_bus = EventBus()
    recorder = ActionRecorder(agent_config.recording_capacity, event_bus)
    screen = ScreenCapture(event_bus=event_bus)
    automation = GuiAction(recorder=recorder)
    planner = Planner(**config.get_model_config("planning"))

    detector = None
    if config.grounding.is_complete():
        detector = UIDetector(screen, **config.get_model_config("grounding"))

    return Agent(
        screen=screen,
        automation=automation,
        planner=planner,
        detector=detector,
        config=agent_config,
        event_bus=event_bus,
        recorder=recorder,
    )


def main():
    """Run the HTTP control surface."""
    setup_logging(config.server.log_level)
    config.validate()

    access_token = config.server.access_token or secrets.token_hex(32)
    app = create_app(build_agent(), access_token)

    local_ip = get_local_ip()
    print("=" * 80)
    print(f"Generated Access Token: {access_token}")
    print(f"Agent API: http://{local_ip}:{config.server.port}/agent/status")
    print(f"Events (SSE): GET http://{local_ip}:{config.server.port}/events")
    print("All endpoints require Access Token in Authorization header or 'access_token' query")
    print("=" * 80)

    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
