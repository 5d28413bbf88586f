from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.admin import router as admin_router
from .api.managers import router as managers_router
from .api.references import router as references_router
from .api.responses import error_response
from .api.users import router as users_router
from .config import Settings, settings as default_settings
from .database import init_db
from .errors import EnrollmentError
from .services import CoreServices, build_services

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"field": ".".join(loc) or "body", "reason": str(err.get("msg", "invalid"))})
    return out


def create_app(services: Optional[CoreServices] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the API. Pass a ready CoreServices (tests do); otherwise the
    services are built from settings on startup and closed on shutdown.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="Voter Enrollment API",
        version=settings.app_version,
        # no interactive docs in production
        docs_url=None if settings.is_prod else "/docs",
        redoc_url=None if settings.is_prod else "/redoc",
    )
    if services is not None:
        app.state.services = services

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Startup / shutdown ---
    @app.on_event("startup")
    def _startup() -> None:
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
            app.state.owns_services = True
        # Creates missing tables; never drops or alters existing ones
        init_db(app.state.services.engine)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        if getattr(app.state, "owns_services", False):
            app.state.services.close()

    # --- Error envelope ---
    @app.exception_handler(EnrollmentError)
    async def enrollment_error_handler(request: Request, exc: EnrollmentError):
        if exc.status_code >= 500:
            logger.error("request failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
        return error_response(request, exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(request, 400, "VALIDATION_ERROR", "Validation failed", _field_errors(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(request, exc.status_code, code, str(exc.detail))

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {"ok": True, "env": settings.env}

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(users_router)
    app.include_router(references_router)
    app.include_router(admin_router)
    app.include_router(managers_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(level=getattr(logging, str(default_settings.log_level).upper(), logging.INFO))
    import uvicorn

    # reload should be True in local dev, False in prod
    uvicorn.run(
        "enrollment.main:app",
        host=default_settings.host,
        port=int(default_settings.port),
        reload=bool(default_settings.reload),
    )
