"""
Route registration for the token API.

Responsibilities:
- Define HTTP endpoints
- Mint tokens from the configured API key
- Pull configuration from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from auth.candidates import mint_with_candidates
from auth.token_minter import credential_diagnostics
from config import AppConfig
from constants import NO_STORE_CACHE_CONTROL, TOKEN_ROUTE_PATH
from errors import ConfigError, MissingCredential
from observability.logger import log_event


_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _json(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={"Cache-Control": NO_STORE_CACHE_CONTROL},
    )


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.api_route(TOKEN_ROUTE_PATH, methods=_ALL_METHODS)
    async def token_endpoint(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        if request.method != "GET":
            return _json(405, {"error": "Method not allowed"})

        config: AppConfig = app.state.config
        hint: Any = request.query_params.getlist("expSeconds") or config.token_default_lifetime_s

        try:
            if not config.api_key.strip():
                raise MissingCredential()
            result = mint_with_candidates(
                config.api_key,
                hint,
                base_url=config.realtime_base_url,
            )

        except ConfigError as exc:
            diag = credential_diagnostics(config.api_key)
            log_event({
                "event_type": "TOKEN_MINT_REJECTED",
                "error": str(exc),
                "diag": diag,
            })
            return _json(400, {"error": str(exc), "diag": diag})

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "TOKEN_MINT_FATAL_ERROR",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return _json(500, {"error": str(exc) or type(exc).__name__})

        urls = list(result.urls)
        log_event({
            "event_type": "TOKEN_MINTED",
            "source": "http",
            "expires_at_ms": result.token.expires_at_ms,
            "candidates": len(urls),
        })
        return _json(200, {
            "token": result.token.token,
            "expiresAtMs": result.token.expires_at_ms,
            "wsUrl": urls[0] if urls else None,
            "wsUrls": urls,
        })
