from __future__ import annotations

import contextlib
import json
import os
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ..config import Settings, load_settings
from ..domain.models import AppConfiguration
from ..errors import PreconditionNotMet, StageBusy
from ..images import request_from_base64, request_from_bytes
from ..logging import get_logger
from ..orchestrator.flow import SAVED_MESSAGE_SECONDS, InsightSession, build_session
from ..store.documents import DocumentWatcher


LOG = get_logger("frontend")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "image-insight-ui", "dist")


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


def _error(exc: Exception, status_code: int) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status_code)


def create_app(
    session: Optional[InsightSession] = None,
    *,
    settings: Optional[Settings] = None,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = True,
    poll_interval_sec: float = 2.0,
) -> Starlette:
    """Create a Starlette app exposing one session's actions as a JSON API."""

    settings = settings or (session.settings if session is not None else load_settings())
    session = session or build_session(settings)

    resolved_static_dir: Optional[str] = None
    if serve_static:
        if static_dir is not None:
            candidate = os.path.abspath(os.path.join(settings.root_dir, static_dir))
        else:
            candidate = os.path.abspath(os.path.join(settings.root_dir, DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)
    else:
        LOG.info("Static frontend serving disabled (API only mode).")

    watcher: Optional[DocumentWatcher] = None
    if session.config_store is not None:
        watcher = DocumentWatcher(session.config_store.store, poll_interval_sec=poll_interval_sec)

    @contextlib.asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        if watcher is not None:
            watcher.start()
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            session.close()

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "model": settings.gemini_model})

    async def state(_: Request) -> JSONResponse:
        return JSONResponse(session.snapshot())

    async def upload_image(request: Request) -> JSONResponse:
        content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
        try:
            if content_type == "application/json":
                body = await _json_body(request)
                image = request_from_base64(str(body.get("data") or ""), mime_type=body.get("mimeType"))
            else:
                image = request_from_bytes(
                    await request.body(),
                    filename=request.headers.get("x-filename"),
                    mime_type=content_type or None,
                )
        except PreconditionNotMet as exc:
            return _error(exc, 400)
        session.set_image(image)
        return JSONResponse({"mimeType": image.mime_type, "state": session.snapshot()})

    def _action(call: Callable[[], bool]) -> Callable[[Request], Any]:
        async def endpoint(_: Request) -> JSONResponse:
            try:
                ok = await run_in_threadpool(call)
            except StageBusy as exc:
                return _error(exc, 409)
            except PreconditionNotMet as exc:
                return _error(exc, 400)
            return JSONResponse({"ok": ok, "state": session.snapshot()})

        return endpoint

    async def get_config(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "config": session.config.to_document(),
                "configOpen": session.config_open,
                "showSavedMessage": session.show_saved_message,
            }
        )

    async def open_config(_: Request) -> JSONResponse:
        session.open_configuration()
        return JSONResponse({"configOpen": session.config_open})

    async def put_config(request: Request) -> JSONResponse:
        body = await _json_body(request)
        config = AppConfiguration.from_document(body)
        try:
            await run_in_threadpool(session.save_configuration, config)
        except PreconditionNotMet as exc:
            return _error(exc, 400)
        except Exception as exc:
            LOG.error(f"Saving configuration failed: {exc}")
            return _error(exc, 500)
        return JSONResponse(
            {
                "saved": True,
                "savedMessageSeconds": SAVED_MESSAGE_SECONDS,
                "config": session.config.to_document(),
            }
        )

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/state", state, methods=["GET"]),
        Route("/api/image", upload_image, methods=["POST"]),
        Route("/api/analyze", _action(session.analyze), methods=["POST"]),
        Route("/api/summarize", _action(session.summarize), methods=["POST"]),
        Route("/api/draft-email", _action(session.draft_email), methods=["POST"]),
        Route("/api/config", get_config, methods=["GET"]),
        Route("/api/config", put_config, methods=["PUT"]),
        Route("/api/config/open", open_config, methods=["POST"]),
    ]

    app = Starlette(debug=False, routes=routes, lifespan=lifespan)
    app.state.session = session

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if resolved_static_dir:
        app.mount("/", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")
    else:
        async def api_only(_: Request) -> JSONResponse:
            return JSONResponse({"detail": "Image insight API is running. Static frontend not served."})

        app.add_route("/", api_only, methods=["GET"])

    return app


__all__ = ["create_app"]
