"""
FastAPI application for the Data Mentor execution service.

This module wires the execution core into HTTP endpoints.  A session is
started for a topic, code is executed on the matching backend, and every
result is relayed to the mentor before the response is returned.  All
requests pass through an API-key check when a key is configured.

:func:`create_app` builds an application with its own database, worker and
session.  The module-level ``app`` is the instance served by uvicorn.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ..backends import InterpreterBridge, RelationalEngine
from ..config import Config
from ..errors import NoActiveSession, NotReady, ProtocolFault, SessionBusy
from ..models import (
    ChatRequest,
    ChatResponse,
    ExecuteRequest,
    ExecuteResponse,
    InterpreterStatus,
    ResetRequest,
    ResetResponse,
    SessionCreateRequest,
    SessionInfo,
    TableSchema,
)
from ..orchestrator import ExecutionOrchestrator
from ..mentor import build_mentor
from ..session import MentorAgent, MentorSession


logger = logging.getLogger("datamentor")

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[datamentor] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

logger.setLevel(logging.INFO)


def get_session(request: Request) -> MentorSession:
    return request.app.state.session


def create_app(config: Optional[Config] = None, agent: Optional[MentorAgent] = None) -> FastAPI:
    """Build the application and its execution backends."""
    config = config or Config.from_env()
    logger.setLevel(config.log_level)
    logger.info(
        "Loaded config: seed_path=%s, worker=%s, preload=%s, max_exec=%s, mentor=%s",
        config.seed_path or "<bundled>",
        config.worker_python,
        config.worker_preload,
        config.max_execution_seconds,
        config.mentor_model if config.mentor_api_key else "<offline>",
    )

    engine = RelationalEngine.from_path(config.seed_path)
    bridge = InterpreterBridge.from_config(config)
    orchestrator = ExecutionOrchestrator(engine, bridge, max_prompt_rows=config.max_prompt_rows)
    session = MentorSession(
        orchestrator,
        agent or build_mentor(config),
        boot_timeout=config.boot_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await bridge.close()
        engine.close()

    app = FastAPI(title="Data Mentor Execution Service", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.session = session

    @app.middleware("http")
    async def authenticate(request, call_next):
        """Middleware to enforce API key authentication on all requests."""
        path = request.url.path
        method = request.method
        client = getattr(request.client, "host", "unknown")

        logger.info("Incoming request: %s %s from %s", method, path, client)

        if config.api_key:
            provided_key = request.headers.get("x-api-key")
            if provided_key != config.api_key:
                logger.warning("Invalid API key for %s %s from %s", method, path, client)
                return JSONResponse(status_code=401, content={"detail": "Invalid API key"})

        response = await call_next(request)
        logger.info("Response: %s %s -> %s", method, path, response.status_code)
        return response

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Return a simple health check response."""
        return {"status": "ok"}

    @app.post("/v1/session", response_model=SessionInfo)
    async def start_session(
        req: SessionCreateRequest, session: MentorSession = Depends(get_session)
    ) -> SessionInfo:
        """Start (or switch) the learner's session.

        For the Pandas topic this also boots the interpreter worker.
        """
        try:
            reply = await session.start(req.topic, req.request)
        except SessionBusy as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except ProtocolFault as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return SessionInfo(
            topic=req.topic,
            reply=reply,
            starter_code=session.code,
            interpreter_ready=session.orchestrator.bridge.is_ready(),
            schema_info=session.orchestrator.schema,
        )

    @app.post("/v1/session/execute", response_model=ExecuteResponse)
    async def execute_code(
        req: ExecuteRequest, session: MentorSession = Depends(get_session)
    ) -> ExecuteResponse:
        """Execute code for the current topic and return the mentor's feedback."""
        try:
            result, reply = await session.run_code(req.code)
        except (NoActiveSession, SessionBusy) as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        except ProtocolFault as exc:
            logger.error("[/v1/session/execute] Interpreter fault: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))
        logger.info("[/v1/session/execute] Result kind: %s", result.kind)
        return ExecuteResponse(
            result=result,
            reply=reply,
            schema_info=session.orchestrator.schema,
        )

    @app.post("/v1/session/messages", response_model=ChatResponse)
    async def send_message(
        req: ChatRequest, session: MentorSession = Depends(get_session)
    ) -> ChatResponse:
        if not req.text.strip():
            raise HTTPException(status_code=400, detail="Message is empty")
        try:
            reply = await session.ask(req.text)
        except (NoActiveSession, SessionBusy) as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return ChatResponse(reply=reply)

    @app.get("/v1/schema", response_model=List[TableSchema])
    async def get_schema(session: MentorSession = Depends(get_session)) -> List[TableSchema]:
        """Return the tables currently in the practice database."""
        return session.orchestrator.refresh_schema()

    @app.post("/v1/database/reset", response_model=ResetResponse)
    async def reset_database(
        req: ResetRequest, session: MentorSession = Depends(get_session)
    ) -> ResetResponse:
        """Restore the seed data, discarding every change made by the learner."""
        if not req.confirm:
            raise HTTPException(
                status_code=400,
                detail="Reset discards all INSERT/UPDATE/DELETE changes; send confirm=true.",
            )
        try:
            result = session.reset_database()
        except SessionBusy as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return ResetResponse(result=result, schema_info=session.orchestrator.schema)

    @app.get("/v1/interpreter/status", response_model=InterpreterStatus)
    async def interpreter_status(session: MentorSession = Depends(get_session)) -> InterpreterStatus:
        bridge = session.orchestrator.bridge
        return InterpreterStatus(state=bridge.state, ready=bridge.is_ready())

    @app.post("/v1/interpreter/restart", response_model=InterpreterStatus)
    async def restart_interpreter(
        session: MentorSession = Depends(get_session),
    ) -> InterpreterStatus:
        """Replace the interpreter worker, e.g. after a fault or timeout."""
        if session.busy:
            raise HTTPException(status_code=409, detail="Another operation is still running.")
        bridge = session.orchestrator.bridge
        try:
            await bridge.restart()
        except ProtocolFault as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        return InterpreterStatus(state=bridge.state, ready=bridge.is_ready())


app = create_app()
