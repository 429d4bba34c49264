"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fileforge.api.routes import router
from fileforge.config import CORS_ORIGINS, logger as config_logger
from fileforge.conversion.service import get_conversion_service, shutdown_conversion_service
from fileforge.errors import (
    ArtifactUnavailableError,
    ConversionError,
    ConversionTimeoutError,
    FileForgeError,
    NotFoundError,
    RateLimitError,
    UnsupportedConversionError,
    ValidationError,
)

logging.getLogger("uvicorn").setLevel(logging.INFO)

# Most specific first; FileForgeError catches the rest.
ERROR_STATUS = (
    (ValidationError, 400),
    (UnsupportedConversionError, 422),
    (ConversionTimeoutError, 504),
    (ConversionError, 500),
    (NotFoundError, 404),
    (ArtifactUnavailableError, 500),
    (RateLimitError, 429),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_conversion_service().start_sweeper()
    config_logger.info("FileForge API started")
    yield
    shutdown_conversion_service()
    config_logger.info("FileForge API shutting down")


app = FastAPI(
    title="FileForge Conversion API",
    description="Convert documents, images, audio, video and data files with job polling.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FileForgeError)
async def fileforge_error_handler(request: Request, exc: FileForgeError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    body = {"error": exc.code, "message": exc.message}
    headers = None
    if isinstance(exc, UnsupportedConversionError):
        body["permanent"] = True
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    if status >= 500:
        config_logger.warning("%s %s -> %s: %s", request.method, request.url.path, status, exc.code)
    return JSONResponse(status_code=status, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "request"
    message = f"Invalid {field}: {first.get('msg', 'malformed request')}"
    return JSONResponse(status_code=400, content={"error": ValidationError.code, "message": message})


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from fileforge.config import HOST, PORT
    uvicorn.run("fileforge.main:app", host=HOST, port=PORT)
