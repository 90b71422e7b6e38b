# main.py — TeamHub API Gateway
# Features:
# - Request correlation IDs (propagated into every log record)
# - Security headers
# - Uniform {"detail": {"code", "message"}, "request_id"} error bodies
# - Route permission table validated at import
# - Health check with DB verification

import os
import json
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import init_db, close_db, get_db_session
from errors import ErrorCode, ERROR_CATALOGUE
from logging_system import (
    RequestContext, configure_logging, set_current_context, reset_current_context,
)
from roles import validate_route_table

configure_logging()
logger = logging.getLogger("teamhub")

VERSION = "1.0.0"


def _check_startup_config():
    """Validate critical configuration on startup."""
    warnings = []

    for name in ("JWT_SECRET_KEY", "JWT_REFRESH_SECRET_KEY"):
        key = os.getenv(name, "")
        if not key or len(key) < 32:
            warnings.append(f"{name} is not set or shorter than 32 characters")
    if os.getenv("JWT_SECRET_KEY") and os.getenv("JWT_SECRET_KEY") == os.getenv("JWT_REFRESH_SECRET_KEY"):
        warnings.append("JWT_SECRET_KEY and JWT_REFRESH_SECRET_KEY must differ")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TeamHub %s...", VERSION)
    await init_db()
    _check_startup_config()
    yield
    logger.info("Shutting down TeamHub...")
    await close_db()


app = FastAPI(
    title="TeamHub",
    description="Team collaboration backoffice: users, teams, tasks, retrospectives, schedules",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    ctx = RequestContext.create(
        request_id=request.headers.get("X-Request-ID"),
        correlation_id=request.headers.get("X-Correlation-ID"),
    )
    request.state.request_id = ctx.request_id
    request.state.correlation_id = ctx.correlation_id
    token = set_current_context(ctx)

    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = ctx.request_id
        response.headers["X-Correlation-ID"] = ctx.correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            "%s %s -> %s (%.3fs)",
            request.method, request.url.path, response.status_code, duration,
        )
        return response
    finally:
        reset_current_context(token)


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

_STATUS_CODES = {
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if not isinstance(detail, dict):
        code = _STATUS_CODES.get(exc.status_code)
        if code is not None:
            detail = {"code": code.value, "message": str(detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": detail,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Sanitise errors to ensure JSON serialisability; never echo a submitted password.
    errors = []
    for err in exc.errors():
        loc = list(err.get("loc", []))
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": loc,
            "msg": str(err.get("msg", "")),
        }
        if "input" in err and not any("password" in str(part).lower() for part in loc):
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", type(exc).__name__, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": ERROR_CATALOGUE[ErrorCode.INTERNAL_ERROR][1],
            },
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (  # noqa: E402
    auth, users, admin, teams, tasks, retrospectives,
    schedules, documents, notifications, websocket_router,
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(teams.router)
app.include_router(tasks.router)
app.include_router(retrospectives.router)
app.include_router(schedules.router)
app.include_router(documents.router)
app.include_router(notifications.router)
app.include_router(websocket_router.router)

validate_route_table()


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        logger.error("Health check database ping failed: %s", type(e).__name__)
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
    }


@app.get("/")
async def root():
    return {
        "name": "TeamHub",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
    )
