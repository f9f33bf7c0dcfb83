import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import get_settings, Settings
from .core.logging import init_logging, request_context_middleware
from .db.migrate import apply_migrations
from .core import errors
from .routers import health, periods, employees, expense_types, claims, ledger

logger = logging.getLogger("benefit_ledger")


def create_app(settings_override: Optional[Settings] = None) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment (e.g., temp DB). Falls back to cached get_settings().
    The override is also wired into request dependencies.
    """
    settings = settings_override or get_settings()
    init_logging(debug=settings.debug)

    # Idempotent; fresh test databases get their tables here
    try:
        apply_migrations(settings.db_path)  # type: ignore[arg-type]
    except Exception:
        logger.exception("failed to apply migrations on startup")
        raise

    app = FastAPI(
        title=settings.app_name, debug=settings.debug, version=settings.version
    )
    if settings_override is not None:
        app.dependency_overrides[get_settings] = lambda: settings

    # Middleware (request / actor id, structured logging)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(errors.DomainError, errors.domain_error_handler)
    app.add_exception_handler(StarletteHTTPException, errors.http_error_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(periods.router)
    app.include_router(employees.router)
    app.include_router(expense_types.router)
    app.include_router(claims.router)
    app.include_router(ledger.router)

    @app.get("/")
    async def root():
        return {"message": "Benefit Basket Ledger API", "version": settings.version}

    return app


app = create_app()
