from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import DEFAULT_JWT_SECRET, settings
from .database import init_db
from .errors import DeskError

from .api.users import router as users_router
from .api.visitors import router as visitors_router
from .api.appointments import router as appointments_router
from .api.visits import router as visits_router
from .api.queue import router as queue_router
from .api.issues import router as issues_router
from .api.resumes import router as resumes_router
from .api.reports import router as reports_router
from .api.analytics import router as analytics_router

logger = logging.getLogger(__name__)


def _validation_details(exc: RequestValidationError) -> list[Dict[str, Any]]:
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "invalid")})
    return details


def create_app() -> FastAPI:
    app = FastAPI(
        title="Constituency Desk API",
        version=settings.app_version,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Startup ---
    @app.on_event("startup")
    def _startup() -> None:
        # Creates missing tables and the partial unique indexes (idempotent)
        init_db()

    # --- Error envelope: {"error": ..., "details": ...} ---
    @app.exception_handler(DeskError)
    async def desk_error_handler(request: Request, exc: DeskError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "details": _validation_details(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail) if exc.detail else "HTTP error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {"ok": True, "env": settings.env}

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(users_router)
    app.include_router(visitors_router)
    app.include_router(appointments_router)
    app.include_router(visits_router)
    app.include_router(queue_router)
    app.include_router(issues_router)
    app.include_router(resumes_router)
    app.include_router(reports_router)
    app.include_router(analytics_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.is_prod and settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET must be set in production")

    import uvicorn

    # NOTE: init_db is handled by the FastAPI startup hook.
    uvicorn.run(
        "constituency_desk.main:app",
        host=settings.host,
        port=int(settings.port),
        reload=bool(settings.reload),
    )
