from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from epg_guide.config import setup_logging
from epg_guide.database import close_db, init_db
from epg_guide.exceptions import (
    DecompressionError,
    EpgError,
    FetchError,
    NotFoundError,
    ParseError,
    ValidationError,
)
from epg_guide.schemas import ErrorDetail, StandardErrorResponse
from epg_guide.services.scheduler_service import epg_scheduler

from epg_guide.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    FetchError: 502,
    DecompressionError: 502,
    ParseError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting EPG Guide...")

    try:
        await init_db()
        await epg_scheduler.start()
    except Exception as e:
        logger.error(f"Failed to start EPG Guide: {e}", exc_info=True)
        raise

    logger.info("EPG Guide started successfully")

    yield

    logger.info("Shutting down EPG Guide...")

    try:
        epg_scheduler.shutdown()
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    await close_db()
    logger.info("EPG Guide stopped")


app = FastAPI(
    title="EPG Guide",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)


@app.exception_handler(EpgError)
async def epg_error_handler(request: Request, exc: EpgError):
    """Render pipeline and registry errors in the standard error shape"""
    status_code = _ERROR_STATUS.get(type(exc), 500)
    logger.warning(f"{request.method} {request.url.path} failed with {exc.code}: {exc.message}")

    body = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code=exc.code, message=exc.message, context=exc.context or None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.error(f"Validation details: {exc.errors()}")

    # Create a properly serializable error response
    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100]
        }
        errors.append(error_dict)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors
        }
    )
