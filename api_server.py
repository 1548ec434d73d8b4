"""
api_server.py – HTTP + WebSocket surface for the companion UI.

    GET  /health
    GET  /api/mode
    POST /api/prompts/generate
    POST /api/prompts/generate/batch
    POST /api/prompts/response
    POST /api/prompts/automatic
    POST /api/tasks/run
    WS   /ws

Errors are returned as ``{success: false, error, errorCode, details}``.
The pipeline is synchronous, so long-running calls go through the
threadpool and progress is pushed back onto the event loop.

Run with:  python api_server.py   (or  uvicorn api_server:app)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import lru_cache
from typing import Any, Callable, List, Optional

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from rich.logging import RichHandler

from assistant import ClaudeCliResponder, Responder, build_responder
from config import Settings
from errors import (
    ERROR_MESSAGES,
    AssistantError,
    ErrorCode,
    ServiceError,
    error_code_for,
    status_for_code,
)
from models import BatchSummary, Category, StepEvent, TaskResult, is_task_id
from orchestrator import Listener, Orchestrator

logger = logging.getLogger("sprint-testgen")

app = FastAPI(
    title="Sprint-TestGen API",
    description="Generate BrowserStack test cases from Jira tasks.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[Settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ── Request models ──────────────────────────────────────────────────────

class GeneratePromptRequest(BaseModel):
    taskId: str


class TaskSelection(BaseModel):
    taskId: str
    analyticsType: Optional[Category] = None


class BatchPromptRequest(BaseModel):
    tasks: List[TaskSelection] = Field(min_length=1)


class SubmitResponseRequest(BaseModel):
    taskId: str
    response: str = Field(min_length=1)
    taskTitle: Optional[str] = None
    analyticsType: Optional[Category] = None


class RunTasksRequest(BaseModel):
    taskIds: List[str] = Field(min_length=1)


# ── Errors ──────────────────────────────────────────────────────────────

class ApiError(Exception):
    def __init__(self, code: ErrorCode, details: str = "") -> None:
        super().__init__(details or ERROR_MESSAGES[code])
        self.code = code
        self.details = details


def _error_body(code: ErrorCode, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": ERROR_MESSAGES[code],
        "errorCode": code.value,
        "details": details,
    }


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=status_for_code(exc.code), content=_error_body(exc.code, exc.details))


@app.exception_handler(RequestValidationError)
async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body(ErrorCode.INVALID_REQUEST, jsonable_encoder(exc.errors())),
    )


@app.exception_handler(ServiceError)
async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    code = error_code_for(exc)
    logger.warning("%s %s → %s: %s", request.method, request.url.path, code.value, exc)
    return JSONResponse(status_code=status_for_code(code), content=_error_body(code, str(exc)))


@app.exception_handler(Exception)
async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    code = ErrorCode.INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=status_for_code(code), content=_error_body(code, str(exc)))


def _check_task_ids(task_ids: list[str]) -> None:
    invalid = [t for t in task_ids if not is_task_id(t)]
    if invalid:
        raise ApiError(ErrorCode.TASK_INVALID_FORMAT, f"Invalid task ID(s): {', '.join(invalid)}")


# ── Dependencies ────────────────────────────────────────────────────────

@lru_cache(maxsize=1)
def get_cli_responder() -> ClaudeCliResponder:
    return ClaudeCliResponder()


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    """Shared orchestrator for the prompt/response flow."""
    return Orchestrator.from_settings(responder=build_responder("manual"))


def get_run_factory() -> Callable[[Optional[Listener], Optional[Responder]], Orchestrator]:
    """Per-run orchestrators, each with its own progress listener."""

    def factory(listener: Optional[Listener] = None, responder: Optional[Responder] = None) -> Orchestrator:
        return Orchestrator.from_settings(responder=responder or build_responder(), listener=listener)

    return factory


# ── Serialisers ─────────────────────────────────────────────────────────

def _step_payload(event: StepEvent) -> dict[str, Any]:
    return {
        "taskId": event.task_id,
        "step": event.step,
        "total": event.total,
        "message": event.message,
        "status": event.status,
    }


def _task_payload(result: TaskResult) -> dict[str, Any]:
    return {
        "taskId": result.task_id,
        "success": result.success,
        "skipped": result.skipped,
        "error": result.error or None,
        "taskTitle": result.title,
        "analyticsType": result.category.value if result.category else None,
        "responseFile": result.response_file,
        "testCasesCount": len(result.test_cases),
        "browserStack": {
            "folderId": result.folder_id,
            "folderName": result.folder_name,
            "createdCount": result.created_count,
            "failedCount": result.failed_count,
            "createdTestCaseIds": result.created_ids,
            "failedTestCases": result.failed_cases,
            "testRun": (
                {
                    "identifier": result.test_run.identifier,
                    "name": result.test_run.name,
                    "testPlanId": result.test_run.test_plan_id,
                }
                if result.test_run
                else None
            ),
        },
    }


def _summary_payload(summary: BatchSummary) -> dict[str, Any]:
    return {
        "total": summary.total,
        "processed": summary.processed,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "totalCreated": summary.cases_created,
        "totalFailed": summary.cases_failed,
    }


# ── WebSocket connections ───────────────────────────────────────────────

class ConnectionManager:
    def __init__(self) -> None:
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict[str, Any]) -> None:
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.disconnect(connection)


manager = ConnectionManager()


def _run_tasks(
    orchestrator: Orchestrator,
    task_ids: list[str],
    send: Callable[[dict[str, Any]], None],
    cancelled: threading.Event,
) -> dict[str, Any]:
    """Process tasks one by one, non-interactively; runs in a worker thread."""
    completed = failed = 0
    total = len(task_ids)
    for task_id in task_ids:
        if cancelled.is_set():
            logger.info("Run cancelled before %s", task_id)
            break
        try:
            result = orchestrator.process_task(task_id, interactive=False)
        except Exception as exc:
            logger.error("Task %s aborted: %s", task_id, exc)
            failed += 1
            send({"event": "error", "success": False, "taskId": task_id, "error": str(exc)})
            continue
        if result.success:
            completed += 1
        elif not result.skipped:
            failed += 1
    return {
        "event": "completed",
        "success": failed == 0,
        "taskIds": task_ids,
        "completed": completed,
        "failed": failed,
        "cancelled": cancelled.is_set(),
        "message": f"Processed {completed}/{total} task(s) successfully",
    }


# ── Routes ──────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/mode")
async def get_mode(cli: ClaudeCliResponder = Depends(get_cli_responder)) -> dict[str, Any]:
    available = cli.is_available()
    return {
        "available": available,
        "mode": "automatic" if available else "manual",
        "message": cli.status_message(),
    }


@app.post("/api/prompts/generate")
def generate_prompt(
    body: GeneratePromptRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    _check_task_ids([body.taskId])
    result = orchestrator.prepare_prompt(body.taskId)
    return {
        "success": True,
        "data": {
            "taskId": body.taskId,
            "taskTitle": result.task_title,
            "prompt": result.prompt,
            "analyticsType": result.category.value if result.category else None,
            "hasKeywordMatch": result.has_keyword_match,
            "availableTypes": result.available_types,
            "promptFile": result.prompt_file,
        },
    }


@app.post("/api/prompts/generate/batch")
def generate_batch_prompt(
    body: BatchPromptRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    _check_task_ids([t.taskId for t in body.tasks])
    result = orchestrator.prepare_batch_prompt([(t.taskId, t.analyticsType) for t in body.tasks])
    return {
        "success": True,
        "data": {
            "prompt": result.prompt,
            "taskCount": len(result.task_ids),
            "taskIds": result.task_ids,
            "promptFile": result.prompt_file,
        },
    }


@app.post("/api/prompts/response")
def submit_response(
    body: SubmitResponseRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    _check_task_ids([body.taskId])
    result = orchestrator.submit_response(
        body.taskId, body.response, body.taskTitle, body.analyticsType
    )
    return {"success": True, "data": _task_payload(result)}


@app.post("/api/prompts/automatic")
def run_automatic(
    body: BatchPromptRequest,
    cli: ClaudeCliResponder = Depends(get_cli_responder),
    factory: Callable[..., Orchestrator] = Depends(get_run_factory),
) -> dict[str, Any]:
    _check_task_ids([t.taskId for t in body.tasks])
    if not cli.is_available():
        raise AssistantError(cli.status_message(), ErrorCode.CLAUDE_CLI_UNAVAILABLE)
    orchestrator = factory(None, cli)
    pinned = {t.taskId: t.analyticsType for t in body.tasks if t.analyticsType}
    summary = orchestrator.process_batch([t.taskId for t in body.tasks], False, pinned)
    return {
        "success": summary.failed == 0,
        "results": [_task_payload(r) for r in summary.results],
        **_summary_payload(summary),
    }


@app.post("/api/tasks/run", status_code=202)
async def run_tasks(
    body: RunTasksRequest,
    background: BackgroundTasks,
    factory: Callable[..., Orchestrator] = Depends(get_run_factory),
) -> dict[str, Any]:
    _check_task_ids(body.taskIds)
    loop = asyncio.get_running_loop()

    def send(payload: dict[str, Any]) -> None:
        asyncio.run_coroutine_threadsafe(manager.broadcast(payload), loop)

    orchestrator = factory(lambda event: send({"event": "step", **_step_payload(event)}), None)

    def job() -> None:
        send(_run_tasks(orchestrator, body.taskIds, send, threading.Event()))

    background.add_task(job)
    return {
        "success": True,
        "message": f"Started processing {len(body.taskIds)} task(s)",
        "taskIds": body.taskIds,
    }


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    factory: Callable[..., Orchestrator] = Depends(get_run_factory),
) -> None:
    await manager.connect(websocket)
    loop = asyncio.get_running_loop()
    cancelled = threading.Event()
    running: Optional[asyncio.Future] = None

    async def emit(payload: dict[str, Any]) -> None:
        if cancelled.is_set() and payload.get("event") != "completed":
            return
        try:
            await websocket.send_json(payload)
        except (WebSocketDisconnect, RuntimeError):
            cancelled.set()

    def send(payload: dict[str, Any]) -> None:
        asyncio.run_coroutine_threadsafe(emit(payload), loop)

    async def run(task_ids: list[str], flag: threading.Event) -> None:
        orchestrator = factory(lambda event: send({"event": "step", **_step_payload(event)}), None)
        outcome = await run_in_threadpool(_run_tasks, orchestrator, task_ids, send, flag)
        if not flag.is_set():
            await emit(outcome)

    try:
        while True:
            message = await websocket.receive_json()
            event = message.get("event") if isinstance(message, dict) else None
            if event == "run-tasks":
                task_ids = message.get("taskIds") or []
                if not task_ids:
                    await emit({"event": "error", "success": False, "error": "taskIds array is required"})
                    continue
                if running is not None and not running.done():
                    await emit({"event": "error", "success": False, "error": "A run is already in progress"})
                    continue
                cancelled = threading.Event()
                running = asyncio.ensure_future(run(list(task_ids), cancelled))
            elif event == "cancel":
                cancelled.set()
                logger.info("Client cancelled the current run")
            else:
                await emit({"event": "error", "success": False, "error": f"Unknown event: {event}"})
    except WebSocketDisconnect:
        cancelled.set()
    finally:
        manager.disconnect(websocket)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, markup=True)],
    )
    Settings.validate()
    uvicorn.run(app, host=Settings.API_HOST, port=Settings.API_PORT, log_level="info")


if __name__ == "__main__":
    main()
