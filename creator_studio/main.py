from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from creator_studio import db
from creator_studio.auth_routes import router as auth_router
from creator_studio.config import Settings
from creator_studio.connection_routes import router as connection_router
from creator_studio.connections import ConnectionManager
from creator_studio.errors import InvalidInput, WorkflowError
from creator_studio.graph_client import GraphClient
from creator_studio.identity import IdentityService
from creator_studio.publish_routes import router as publish_router
from creator_studio.publishing import PublishWorkflow
from creator_studio.token_cipher import TokenCipher
from creator_studio.upload_routes import router as upload_router
from creator_studio.uploads import UPLOADS_PATH, AssetStore
from creator_studio.user_routes import router as user_router

logger = logging.getLogger("creator-studio")

HTTP_TIMEOUT = 20.0


def create_app(
    settings: Settings | None = None,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    # httpx logs full request URLs, OAuth exchanges carry secrets in the query string
    logging.getLogger("httpx").setLevel(logging.WARNING)

    engine = db.create_db_engine(settings.database_url)
    db.init_db(engine)

    http = httpx.Client(timeout=HTTP_TIMEOUT, transport=transport)
    graph = GraphClient(settings, http)
    cipher = TokenCipher(settings.encryption_secret)
    if not cipher.enabled:
        logger.warning("config_warning reason=encryption_key_missing effect=connect_refused")
    connections = ConnectionManager(settings, graph, cipher)

    app = FastAPI(title="Creator Studio API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = db.create_session_factory(engine)
    app.state.http_client = http
    app.state.connections = connections
    app.state.publisher = PublishWorkflow(connections, graph, sleep=sleep)
    app.state.identity = IdentityService(settings, graph, http)
    app.state.assets = AssetStore(settings)

    upload_dir = Path(settings.upload_dir)
    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.exception("directory_create_failed path=%s", upload_dir)
    if upload_dir.exists():
        app.mount(UPLOADS_PATH, StaticFiles(directory=str(upload_dir)), name="uploads")

    @app.on_event("shutdown")
    def shutdown() -> None:
        http.close()
        engine.dispose()

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
        return JSONResponse(content={"error": exc.message, "code": exc.code}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return await workflow_error_handler(request, InvalidInput(_validation_message(exc)))

    @app.middleware("http")
    async def log_requests(request: Request, call_next) -> Response:
        start_time = time.perf_counter()
        response_status = 500
        try:
            response = await call_next(request)
            response_status = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                response_status,
                duration_ms,
            )

    @app.get("/")
    def root() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.head("/health")
    def health_head() -> Response:
        return Response(status_code=200)

    app.include_router(auth_router)
    app.include_router(connection_router)
    app.include_router(publish_router)
    app.include_router(upload_router)
    app.include_router(user_router)
    return app


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return InvalidInput.default_message
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def run() -> None:
    import uvicorn

    uvicorn.run("creator_studio.main:create_app", factory=True, host="0.0.0.0", port=8000)


__all__ = ["create_app", "run"]
