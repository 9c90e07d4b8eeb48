import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Database
from .errors import INTERNAL_MESSAGE
from .logs import json_log
from .routers.auth import router as auth_router
from .routers.dues import router as dues_router
from .routers.profile import router as profile_router
from .routers.receipts import router as receipts_router
from .routers.transactions import router as transactions_router

STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _db_health(db) -> tuple:
    try:
        return bool(db.ping()), None
    except Exception as exc:
        return False, str(exc)


def create_app(db: Optional[Database] = None) -> FastAPI:
    """
    Build the API around an explicit Database.

    The pool is opened on startup and closed on shutdown; nothing below the
    routers reaches for a global connection.
    """
    app = FastAPI(title="Cashbox Receipts API", version=settings.api_version)
    app.state.db = db or Database(settings.db_url, min_size=settings.db_pool_min, max_size=settings.db_pool_max)

    # Every error body is {"error": "..."}.
    @app.exception_handler(StarletteHTTPException)
    def _http_error(_req: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: RequestValidationError):
        content = {"error": "validation failed"}
        if settings.exposes_errors:
            content["errors"] = exc.errors()
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(Exception)
    def _unhandled_exception(req: Request, exc: Exception):
        rid = _current_request_id(req)
        json_log(
            "error",
            "http.request.unhandled",
            request_id=rid,
            method=req.method,
            path=req.url.path,
            error=str(exc),
        )
        content = {"error": INTERNAL_MESSAGE, "request_id": rid}
        if settings.exposes_errors:
            content["detail"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        if request.url.path != "/health":
            json_log(
                "info",
                "http.request",
                request_id=rid,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                client_ip=(request.client.host if request.client else None),
                duration_ms=int((time.time() - started) * 1000),
            )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(auth_router)
    app.include_router(profile_router)
    app.include_router(receipts_router)
    app.include_router(dues_router)
    app.include_router(transactions_router)

    @app.on_event("startup")
    def _startup():
        app.state.db.open()
        ok, err = _db_health(app.state.db)
        if ok:
            json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
        else:
            json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)

    @app.on_event("shutdown")
    def _shutdown():
        app.state.db.close()

    @app.get("/health")
    def health(req: Request):
        ok, err = _db_health(app.state.db)
        content = {
            "status": "ok" if ok else "degraded",
            "db": "ok" if ok else "down",
            "service": "cashbox-api",
            "version": settings.api_version,
            "started_at": STARTED_AT_UTC.isoformat(),
            "request_id": _current_request_id(req),
        }
        if not ok:
            if settings.exposes_errors:
                content["error"] = err
            return JSONResponse(status_code=503, content=content)
        return content

    return app


app = create_app()
