"""AumOS Access Ledger service entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from aumos_access_ledger.api.dependencies import build_container
from aumos_access_ledger.api.router import router
from aumos_access_ledger.errors import (
    AccessLedgerError,
    AuthenticationRequiredError,
    CacheUnavailableError,
    ConfigurationError,
    ImmutabilityViolationError,
    InvestigationCancelledError,
    NotFoundError,
    PersistenceFailureError,
    ValidationError,
)
from aumos_access_ledger.observability import get_logger, setup_logging
from aumos_access_ledger.settings import Settings

settings = Settings()
setup_logging(level=settings.log_level, format=settings.log_format)
logger = get_logger(__name__)

# Domain error -> (status code, generic client message)
_ERROR_RESPONSES: dict[type[AccessLedgerError], tuple[int, str]] = {
    AuthenticationRequiredError: (401, "Authentication required"),
    ValidationError: (400, "Invalid request"),
    NotFoundError: (404, "Not found"),
    ImmutabilityViolationError: (409, "Audit entry integrity violation"),
    InvestigationCancelledError: (409, "Investigation cancelled"),
    PersistenceFailureError: (503, "Audit ledger unavailable"),
    CacheUnavailableError: (503, "Decision cache unavailable"),
    ConfigurationError: (500, "Service misconfigured"),
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    container = app.state.container
    await container.startup()
    yield
    await container.shutdown()


def create_app(app_settings: Settings) -> FastAPI:
    """Build the FastAPI application around a freshly wired container."""
    application = FastAPI(
        title="AumOS Access Ledger",
        version=app_settings.version,
        lifespan=lifespan,
    )
    application.state.container = build_container(app_settings)
    application.include_router(router, prefix="/api/v1")

    @application.get("/live", tags=["health"])
    async def live() -> dict[str, str]:
        """Liveness check; never touches infrastructure."""
        return {"status": "ok", "service": app_settings.service_name}

    @application.exception_handler(AccessLedgerError)
    async def access_ledger_error_handler(request: Request, exc: AccessLedgerError) -> JSONResponse:
        status_code, message = next(
            (response for cls, response in _ERROR_RESPONSES.items() if isinstance(exc, cls)),
            (500, "Internal error"),
        )
        log = logger.error if status_code >= 500 else logger.warning
        log("Request failed", path=request.url.path, error_code=exc.code, error=exc.message)
        return JSONResponse(status_code=status_code, content={"code": exc.code, "message": message})

    return application


app: FastAPI = create_app(settings)
