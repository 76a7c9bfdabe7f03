"""
PHI Guard - Main API
Access control and compliance audit for healthcare records
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from phi_guard.api.middleware import AuditMiddleware
from phi_guard.repositories.actor_directory import ActorDirectory, InMemoryActorDirectory
from phi_guard.repositories.audit_store import AuditStore, InMemoryAuditStore
from phi_guard.rules.access_policy import AccessGate
from phi_guard.services.audit_service import AuditService
from phi_guard.services.audit_writer import AuditWriter
from phi_guard.services.auth_service import AuthService
from phi_guard.services.authenticator import TokenAuthenticator
from phi_guard.utils.config import Settings, get_settings
from phi_guard.utils.errors import PHIGuardError
from phi_guard.utils.log_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting PHI Guard")
    await app.state.audit_writer.start()
    yield
    await app.state.audit_writer.stop()
    logger.info("Shutting down PHI Guard")


def create_app(
    settings: Optional[Settings] = None,
    directory: Optional[ActorDirectory] = None,
    audit_store: Optional[AuditStore] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Repositories default to the in-memory implementations; pass real ones
    to back the service with a database.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    directory = directory or InMemoryActorDirectory()
    audit_store = audit_store or InMemoryAuditStore()
    audit_writer = AuditWriter(audit_store, settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Access control and compliance audit pipeline for healthcare records",
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.directory = directory
    app.state.audit_store = audit_store
    app.state.audit_writer = audit_writer
    app.state.authenticator = TokenAuthenticator(directory, audit_writer, settings)
    app.state.access_gate = AccessGate(audit_writer)
    app.state.auth_service = AuthService(directory, audit_writer, settings)
    app.state.audit_service = AuditService(audit_store, max_limit=settings.AUDIT_PAGE_MAX_LIMIT)

    app.add_middleware(
        AuditMiddleware,
        audit_writer=audit_writer,
        exempt_paths=settings.AUDIT_EXEMPT_PATHS,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    # Include routers
    from phi_guard.api.routes import auth, audit

    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(audit.router, prefix="/audit", tags=["Audit"])

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "status": "operational"
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "audit_writer": audit_writer.stats.as_dict(),
        }

    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PHIGuardError)
    async def phi_guard_error_handler(request: Request, exc: PHIGuardError):
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": _ERROR_TITLES.get(exc.status_code, "Server Error"),
                "message": exc.message,
                "code": exc.code,
            },
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Validation Error",
                "message": "Validation failed",
                "code": "validation_failed",
                "details": [
                    {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
                    for e in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Server Error",
                "message": "An unexpected error occurred",
                "code": "internal_error",
            },
        )


_ERROR_TITLES = {
    400: "Validation Error",
    401: "Access denied",
    403: "Access denied",
    404: "Not Found",
    409: "Duplicate Entry",
}


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("phi_guard.api.main:app", host="0.0.0.0", port=8000)
