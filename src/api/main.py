import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers import (
    service_request_estimate_routes,  # noqa: F401
    service_request_execution_routes,  # noqa: F401
)
from src.api.routers.service_requests import router as service_request_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Artisan Service Lifecycle API",
    version="0.1.0",
    description=(
        "Service-request lifecycle for a home-service marketplace: estimate negotiation, "
        "artisan assignment, dual validation, disputes and resolution.\n\n"
        "Rejected operations return a stable error `kind` and `code`; `INVALID_STATE` "
        "errors require re-reading the request before retrying."
    ),
    openapi_tags=[
        {
            "name": "Service Request Lifecycle",
            "description": "Intake, estimates, assignment, validation and dispute endpoints.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness checks.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)
logger = logging.getLogger(__name__)

app.include_router(service_request_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"])
@app.get("/api/v1/health", tags=["Health"], include_in_schema=False)
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/live", tags=["Health"])
@app.get("/api/v1/health/live", tags=["Health"], include_in_schema=False)
def health_live() -> dict[str, str]:
    return {"status": "live"}


@app.get("/health/ready", tags=["Health"])
@app.get("/api/v1/health/ready", tags=["Health"], include_in_schema=False)
def health_ready() -> dict[str, str]:
    return {"status": "ready"}
