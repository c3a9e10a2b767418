"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware (CORS, request log)
- Register routes
"""

import time

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import RequestResponseEndpoint

from config import AppConfig
from observability import logger
from observability.logger import log_event

from server.routes import register_routes


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests pass an explicit AppConfig; the ASGI entry point loads it from
    the environment.
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(enabled=config.enable_json_logs)

    app = FastAPI(title="Voice Bridge Token API")

    app.state.config = config

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_log(request: Request, call_next: RequestResponseEndpoint) -> Response:  # pyright: ignore[reportUnusedFunction]
        started = time.monotonic()
        response = await call_next(request)
        log_event({
            "event_type": "HTTP_REQUEST",
            "method": request.method,
            "path": request.url.path,
            "user_agent": request.headers.get("user-agent", ""),
            "status": response.status_code,
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return response

    # Routes
    register_routes(app)

    return app
