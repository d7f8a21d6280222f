"""
============================================================
 FLOWSTATE — Web Layer
 FastAPI + WebSocket hub. The browser page talks to the
 session engine only through these routes.
 Run:  python main.py   (or uvicorn flowstate.server:app)
============================================================
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Set

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

import config
from flowstate import database
from flowstate.engine import NoActiveSession, SessionEngine
from flowstate.models import EnergyLevel, Mode, StudyGoal

logger = logging.getLogger(__name__)


# ── Request Models ──────────────────────────────────────────
class SessionStart(BaseModel):
    study_goal: StudyGoal
    energy_level: EnergyLevel
    duration_minutes: int = Field(0, ge=0, le=max(config.DURATION_OPTIONS))  # 0 = unlimited


class CameraToggle(BaseModel):
    enabled: bool


class ModeSwitch(BaseModel):
    mode: Mode


class ChatMessage(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


# ── Connection Manager ──────────────────────────────────────
class ConnectionManager:
    """WebSocket hub: every engine event goes to every connected browser."""

    def __init__(self) -> None:
        self.clients: Set[WebSocket] = set()
        self.latest: Dict[str, dict] = {}
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.add(websocket)
        logger.info("[HUB] Client connected (total: %d)", len(self.clients))
        for message in list(self.latest.values()):
            try:
                await websocket.send_json(message)
            except Exception:
                self.disconnect(websocket)
                return

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.clients:
            self.clients.discard(websocket)
            logger.info("[HUB] Client disconnected (total: %d)", len(self.clients))

    async def broadcast(self, message: dict) -> None:
        dead = []
        for ws in list(self.clients):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    def publish(self, event: str, data: dict) -> None:
        """Sync entry point for the engine; the send happens on the loop."""
        message = {"event": event, "data": data}
        self.latest[event] = message
        if not self.clients:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def create_app(engine_factory: Optional[Callable[[Callable], SessionEngine]] = None,
               database_uri: str = config.DATABASE_URI) -> FastAPI:
    """Build the app. engine_factory(emit) lets callers inject a custom engine."""
    manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init_db(database_uri)
        factory = engine_factory or (lambda emit: SessionEngine(emit=emit))
        app.state.engine = factory(manager.publish)
        logger.info("[STARTUP] Engine ready (LLM %s)",
                    "online" if app.state.engine.llm.online else "offline")
        yield
        await app.state.engine.shutdown()

    app = FastAPI(title="FLOWSTATE", version=config.VERSION, lifespan=lifespan)
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NoActiveSession)
    async def no_session_handler(request: Request, exc: NoActiveSession):
        return JSONResponse(status_code=409, content={"detail": "No active session"})

    def engine_of(request: Request) -> SessionEngine:
        return request.app.state.engine

    # ── Routes ──────────────────────────────────────────────
    @app.get("/api/status")
    async def api_status(request: Request):
        return engine_of(request).status()

    @app.post("/api/session")
    async def start_session(body: SessionStart, request: Request):
        return await engine_of(request).start_session(
            body.study_goal.value, body.energy_level.value, body.duration_minutes)

    @app.get("/api/session")
    async def get_session(request: Request):
        engine = engine_of(request)
        if engine.session is None:
            raise NoActiveSession()
        return engine.snapshot()

    @app.post("/api/session/end")
    async def end_session(request: Request):
        return await engine_of(request).end_session()

    @app.delete("/api/session")
    async def exit_session(request: Request):
        await engine_of(request).reset_session()
        return {"status": "reset"}

    @app.post("/api/camera")
    async def toggle_camera(body: CameraToggle, request: Request):
        engine = engine_of(request)
        if body.enabled:
            ok = await engine.enable_camera()
        else:
            await engine.disable_camera()
            ok = True
        return {"ok": ok, **engine.status()}

    @app.post("/api/mode")
    async def switch_mode(body: ModeSwitch, request: Request):
        engine = engine_of(request)
        await engine.set_mode(body.mode)
        return engine.status()

    @app.post("/api/chat")
    async def chat(body: ChatMessage, request: Request):
        engine = engine_of(request)
        session = engine.session
        goal = session.study_goal.value if session else None
        energy = session.energy_level.value if session else None
        return StreamingResponse(
            engine.companion.sse(body.message, goal, energy),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/api/chat")
    async def chat_history(request: Request):
        return engine_of(request).companion.history

    @app.get("/api/sessions")
    async def recent_sessions(limit: int = config.RECENT_SESSION_LIMIT):
        return await asyncio.to_thread(database.get_recent_sessions, limit)

    # ── WebSocket ───────────────────────────────────────────
    @app.websocket("/ws")
    async def ws_live(websocket: WebSocket):
        engine: SessionEngine = websocket.app.state.engine
        await manager.connect(websocket)
        try:
            await websocket.send_json({"event": "system_status", "data": engine.status()})
            await websocket.send_json({"event": "telemetry_update", "data": engine.snapshot()})
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)
        except Exception:
            manager.disconnect(websocket)

    return app


app = create_app()
