from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse

from studyrag.api.middleware.rate_limit import RateLimitMiddleware
from studyrag.api.v1.api_router import v1_router
from studyrag.api.v1.errors import ApiError, api_error_exception_handler, error_body
from studyrag.core.settings import settings
from studyrag.domain.exceptions import IngestionError, IngestionErrorCode
from studyrag.infrastructure.container import ServiceContainer
from studyrag.infrastructure.observability.correlation import CorrelationMiddleware
from studyrag.infrastructure.observability.logger_config import configure_structlog

# Configure Structlog (JSON Logging)
configure_structlog()
logger = structlog.get_logger(__name__)
logger.info(
    "auth_runtime_mode",
    auth_mode="deployed" if settings.is_deployed_environment else "local_bypass",
    app_env=settings.APP_ENV,
    environment=settings.ENVIRONMENT,
)

INGESTION_ERROR_STATUS = {
    IngestionErrorCode.VALIDATION_ERROR: 422,
    IngestionErrorCode.INVALID_FILE: 400,
    IngestionErrorCode.FILE_TOO_LARGE: 413,
    IngestionErrorCode.DUPLICATE: 409,
    IngestionErrorCode.ALREADY_PROCESSING: 409,
    IngestionErrorCode.QUOTA_EXCEEDED: 429,
    IngestionErrorCode.LLM_QUOTA_EXCEEDED: 429,
    IngestionErrorCode.QUOTA_ERROR: 503,
    IngestionErrorCode.EMBEDDING_ERROR: 502,
    IngestionErrorCode.EXTRACTION_ERROR: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = ServiceContainer()
    app.state.container = container
    await container.startup()
    try:
        yield
    finally:
        await container.shutdown()


app = FastAPI(
    title="studyrag Ingestion and Retrieval API",
    description="PDF course material ingestion with quota gate and hybrid retrieval.",
    version="1.0.0",
    lifespan=lifespan,
)


# Register Middleware (Stack order: Last added runs FIRST)

# 2. Rate limiting (Inner)
app.add_middleware(RateLimitMiddleware)

# 1. Correlation Middleware (Outer) - Generates/Extracts Request ID
app.add_middleware(CorrelationMiddleware)


@app.exception_handler(ResponseValidationError)
async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    """
    Handles errors when the backend fails to match the output contract (response_model).
    """
    logger.error(
        "backend_contract_breach",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "INTERNAL_ERROR", "Internal Server Error: Data Contract Breach", jsonable_encoder(exc.errors())
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handles errors when the incoming data doesn't match the input contract.
    """
    logger.warning(
        "request_contract_breach",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("VALIDATION_ERROR", "Request validation failed", jsonable_encoder(exc.errors())),
    )


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError):
    """Domain errors raised outside the event stream (e.g. chunk re-embedding)."""
    status_code = INGESTION_ERROR_STATUS.get(exc.code, 500)
    logger.warning("ingestion_error_response", endpoint=str(request.url), code=exc.code.value)
    payload = exc.to_payload()
    return JSONResponse(
        status_code=status_code,
        content=error_body(payload["code"], payload["message"], {"isQuotaError": payload["isQuotaError"]}),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return await api_error_exception_handler(request, exc)


# Include Modular Routers
app.include_router(v1_router)


@app.get("/health")
def health_check():
    """
    Service health check.
    """
    return {"status": "ok", "service": "studyrag", "api_v1": "available"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
