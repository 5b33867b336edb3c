"""
FastAPI Backend with WebSocket Broadcasting for the To-Do Manager

Provides REST endpoints for every task-list operation (add, subtask, edit,
toggle, delete, reorder, AI expansion), the theme preference, and a
WebSocket stream that pushes the full task list to connected dashboards
after every change.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .expansion import (
    ExpansionGuard,
    ExpansionInFlightError,
    GeminiSubtaskGenerator,
    SubtaskGenerator,
    expand_task,
)
from .models import (
    ErrorResponse,
    ExpandRequest,
    ExpandResponse,
    HealthResponse,
    ReorderRequest,
    TaskCreateRequest,
    TaskEditRequest,
    TaskListResponse,
    TaskMutationResponse,
    ThemeResponse,
    create_error_response,
)
from .storage import TASKS_KEY, SqliteStorage
from .store import TaskStore
from .theme import ThemePreference

logger = logging.getLogger(__name__)

# Global instances for dependency injection, populated by the lifespan handler
store_instance: Optional[TaskStore] = None
theme_instance: Optional[ThemePreference] = None
generator_instance: Optional[SubtaskGenerator] = None
expansion_guard = ExpansionGuard()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ConnectionManager:
    """
    WebSocket connection manager with parallel broadcasting.

    Handles connection lifecycle, parallel message broadcasting to all
    clients, and removal of connections whose send fails.
    """

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._connection_lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept new WebSocket connection and add to active connections."""
        await websocket.accept()
        async with self._connection_lock:
            self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket):
        """Remove WebSocket from active connections registry."""
        async with self._connection_lock:
            self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, event_data: Dict[str, Any]) -> int:
        """
        Broadcast event to all connected WebSocket clients in parallel.

        Args:
            event_data: Event data to broadcast (will be JSON serialized)

        Returns:
            Number of clients that received the message
        """
        if not self.active_connections:
            logger.debug("No active connections for broadcast")
            return 0

        message = json.dumps(event_data)
        async with self._connection_lock:
            send_tasks = [self._send_safe(ws, message) for ws in self.active_connections.copy()]

        results = await asyncio.gather(*send_tasks, return_exceptions=True)
        successful_broadcasts = sum(1 for result in results if result is True)
        logger.debug(f"Broadcast completed: {successful_broadcasts}/{len(send_tasks)} successful")
        return successful_broadcasts

    async def _send_safe(self, websocket: WebSocket, message: str) -> bool:
        """Send to one connection, dropping it from the registry on failure."""
        try:
            await websocket.send_text(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send message to WebSocket: {e}")
            await self.disconnect(websocket)
            return False

    async def broadcast_tasks(self, action: str, tasks: List[Dict[str, Any]]) -> int:
        """Push the full task list after ``action`` changed it."""
        return await self.broadcast({
            "type": "tasks.changed",
            "action": action,
            "timestamp": _timestamp(),
            "data": {"tasks": tasks},
        })

    def get_connection_count(self) -> int:
        """Get current number of active WebSocket connections."""
        return len(self.active_connections)


connection_manager = ConnectionManager()


def get_store() -> TaskStore:
    """
    FastAPI dependency to provide the task store.

    Raises:
        HTTPException: If the store is not initialized
    """
    if store_instance is None:
        raise HTTPException(status_code=503, detail="Task store not available")
    return store_instance


def get_theme() -> ThemePreference:
    """FastAPI dependency to provide the theme preference."""
    if theme_instance is None:
        raise HTTPException(status_code=503, detail="Theme preference not available")
    return theme_instance


def get_generator() -> SubtaskGenerator:
    """FastAPI dependency to provide the AI subtask generator."""
    if generator_instance is None:
        raise HTTPException(status_code=503, detail="Subtask generator not available")
    return generator_instance


def get_expansion_guard() -> ExpansionGuard:
    return expansion_guard


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup/shutdown operations.

    Opens the SQLite key-value store and builds the task store, theme
    preference and subtask generator from environment settings.
    """
    global store_instance, theme_instance, generator_instance

    settings = Settings.from_env()
    try:
        storage = SqliteStorage(settings.database_path)
        store_instance = TaskStore(storage)
        theme_instance = ThemePreference(storage)
        generator_instance = GeminiSubtaskGenerator.from_settings(settings)
        logger.info(f"Task store initialized: {settings.database_path}")
        if not settings.gemini_api_key:
            logger.warning("GEMINI_API_KEY not set; AI expansion will report an error")
    except Exception as e:
        logger.error(f"Failed to initialize task store: {e}")
        raise

    yield

    expansion_guard.cancel()
    storage.close()
    store_instance = None
    theme_instance = None
    generator_instance = None
    logger.info("Task store closed")


app = FastAPI(
    title="To-Do Manager API",
    description="REST API with WebSocket updates for a parent/subtask to-do list",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _records(store: TaskStore) -> List[Dict[str, Any]]:
    return [task.to_record() for task in store.tasks]


async def _mutation_response(store: TaskStore, action: str, changed: bool,
                             task_id: Optional[int] = None,
                             removed_ids: Optional[List[int]] = None,
                             message: Optional[str] = None) -> TaskMutationResponse:
    if changed:
        await connection_manager.broadcast_tasks(action, _records(store))
    task = store.get_task(task_id) if task_id is not None else None
    return TaskMutationResponse(
        changed=changed,
        task=task.to_record() if task else None,
        removed_ids=removed_ids or [],
        message=message,
    )


@app.get("/healthz", response_model=HealthResponse)
async def health_check(store: TaskStore = Depends(get_store)):
    """Service health including storage reachability."""
    storage_connected = True
    try:
        store.storage.get(TASKS_KEY)
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        storage_connected = False

    return HealthResponse(
        status="healthy" if storage_connected else "degraded",
        storage_connected=storage_connected,
        task_count=len(store),
        active_websocket_connections=connection_manager.get_connection_count(),
        timestamp=_timestamp(),
    )


@app.websocket("/ws/updates")
async def websocket_updates(websocket: WebSocket, store: TaskStore = Depends(get_store)):
    """Real-time task list stream; a snapshot is sent on connect."""
    await connection_manager.connect(websocket)
    try:
        await websocket.send_text(json.dumps({
            "type": "tasks.snapshot",
            "timestamp": _timestamp(),
            "data": {"tasks": _records(store)},
        }))
        while True:
            # Clients only listen; inbound messages keep the connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await connection_manager.disconnect(websocket)


@app.get("/api/tasks", response_model=TaskListResponse)
async def list_tasks(store: TaskStore = Depends(get_store)):
    """Full ordered task sequence in its persisted record layout."""
    tasks = _records(store)
    return TaskListResponse(tasks=tasks, count=len(tasks))


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: int, store: TaskStore = Depends(get_store)):
    """Single task detail, with its subtasks when it is a parent."""
    task = store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    subtasks = [t.to_record() for t in store.tasks if t.is_subtask and t.parent_id == task_id]
    return {"success": True, "task": task.to_record(), "subtasks": subtasks}


@app.post("/api/tasks", response_model=TaskMutationResponse)
async def create_task(request: TaskCreateRequest, store: TaskStore = Depends(get_store)):
    """Add a task at the head of the list; blank text is ignored."""
    task = store.add_task(request.text)
    return await _mutation_response(store, "add_task", task is not None,
                                    task_id=task.id if task else None)


@app.post("/api/tasks/reorder", response_model=TaskMutationResponse)
async def reorder_tasks(request: ReorderRequest, store: TaskStore = Depends(get_store)):
    """Commit a drag-and-drop move; self drops and unknown targets are no-ops."""
    changed = store.reorder(request.active_id, request.over_id)
    return await _mutation_response(store, "reorder", changed, task_id=request.active_id)


@app.post("/api/tasks/expand", response_model=ExpandResponse,
          responses={409: {"model": ErrorResponse}})
async def expand_new_task(
    request: ExpandRequest,
    store: TaskStore = Depends(get_store),
    generator: SubtaskGenerator = Depends(get_generator),
    guard: ExpansionGuard = Depends(get_expansion_guard),
):
    """
    Add a parent task and AI-generated subtasks beneath it.

    Returns 409 while a previous expansion is still waiting on the service.
    A generation failure keeps the parent and reports ``error``.
    """
    try:
        result = await run_in_threadpool(expand_task, store, request.text, generator, guard)
    except ExpansionInFlightError as e:
        return JSONResponse(status_code=409, content=create_error_response(str(e), code=409))

    if result.parent is not None:
        await connection_manager.broadcast_tasks("expand", _records(store))
    return ExpandResponse(
        parent=result.parent.to_record() if result.parent else None,
        subtasks=[t.to_record() for t in result.subtasks],
        error=result.error,
        discarded=result.discarded,
    )


@app.post("/api/tasks/expand/cancel")
async def cancel_expansion(guard: ExpansionGuard = Depends(get_expansion_guard)):
    """Drop the result of the in-flight expansion, if any."""
    return {"success": True, "cancelled": guard.cancel() is not None}


@app.post("/api/tasks/{task_id}/subtasks", response_model=TaskMutationResponse)
async def create_subtask(task_id: int, store: TaskStore = Depends(get_store)):
    """Add an empty subtask after the parent's existing subtasks."""
    subtask = store.add_subtask(task_id)
    return await _mutation_response(store, "add_subtask", subtask is not None,
                                    task_id=subtask.id if subtask else None)


@app.patch("/api/tasks/{task_id}", response_model=TaskMutationResponse)
async def edit_task(task_id: int, request: TaskEditRequest, store: TaskStore = Depends(get_store)):
    """Replace a task's text."""
    changed = store.edit_task(task_id, request.text)
    return await _mutation_response(store, "edit_task", changed, task_id=task_id)


@app.post("/api/tasks/{task_id}/toggle", response_model=TaskMutationResponse)
async def toggle_task(task_id: int, store: TaskStore = Depends(get_store)):
    """Toggle completion with cascade to subtasks and parent."""
    changed = store.toggle_task(task_id)
    return await _mutation_response(store, "toggle_task", changed, task_id=task_id)


@app.delete("/api/tasks/{task_id}", response_model=TaskMutationResponse)
async def delete_task(task_id: int, store: TaskStore = Depends(get_store)):
    """Delete a task and all of its subtasks."""
    removed = store.delete_task(task_id)
    return await _mutation_response(store, "delete_task", bool(removed), removed_ids=removed)


@app.get("/api/theme", response_model=ThemeResponse)
async def get_theme_preference(theme: ThemePreference = Depends(get_theme)):
    return ThemeResponse(theme=theme.value, is_dark=theme.is_dark)


@app.post("/api/theme/toggle", response_model=ThemeResponse)
async def toggle_theme(theme: ThemePreference = Depends(get_theme)):
    theme.toggle()
    return ThemeResponse(theme=theme.value, is_dark=theme.is_dark)


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
