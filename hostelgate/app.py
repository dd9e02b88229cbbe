from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hostelgate.api.error_handling import register_exception_handlers
from hostelgate.api.routes import router
from hostelgate.config import get_settings
from hostelgate.logging import bind_request_context, get_logger

logger = get_logger(__name__)

__version__ = "0.1.0"

_settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the key-value store on startup and close it on shutdown."""
    from hostelgate.service.runtime import get_runtime

    try:
        await get_runtime().startup()
    except Exception as exc:
        # The gate fails closed while the store is down, so keep serving
        logger.error("startup_store_connect_failed", error_type=type(exc).__name__, error=str(exc))

    yield

    try:
        await get_runtime().shutdown()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Hostel Gate", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Common local dev hosts; no wildcard while credentials are allowed
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=_settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "X-CSRF-Token",
        "X-Skip-Auth-Redirect",
        "X-Bypass-Cache",
        "X-Request-ID",
    ],
    expose_headers=["X-Request-ID", "API-Version"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every request with a correlation id and its tab id.

    The id comes from ``X-Request-ID`` when the client sends one and is
    echoed on the response.
    """
    correlation_id = bind_request_context(
        request.headers.get("X-Request-ID"), request.url.path
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("API-Version", __version__)
    # Authenticated responses must never be stored by proxies
    if request.url.path.startswith(_settings.api_prefix + "/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    if _settings.cookie_secure:
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
        )
    return response


register_exception_handlers(app)
app.include_router(router, prefix=_settings.api_prefix)


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report key-value store connectivity; 503 while the store is unreachable."""
    from hostelgate.service.runtime import get_runtime

    runtime = get_runtime()
    store: Dict[str, Any] = await runtime.health()
    healthy = bool(store.get("reachable"))
    if not healthy:
        logger.error("health_check_store_unreachable", **store)
    body = {
        "status": "healthy" if healthy else "unhealthy",
        "checks": {"store": store},
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)
