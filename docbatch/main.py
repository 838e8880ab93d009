"""FastAPI application entry point."""

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from docbatch.config import get_settings
from docbatch.db import create_tables, get_session_factory
from docbatch.schemas.request import ErrorResponse
from docbatch.services.bulk_client import BulkInferenceError
from docbatch.services.extraction import InvalidDocumentError, NotFoundError, RealtimeUnavailableError
from docbatch.services.gemini import ExtractionError
from docbatch.worker import BatchWorkers

logger = logging.getLogger(__name__)

app = FastAPI(title="DocBatch")

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup() -> None:
    create_tables()
    app.state.workers = None
    settings = get_settings()
    if not settings.run_workers:
        logger.info("batch workers disabled (DOCBATCH_RUN_WORKERS=false)")
        return
    try:
        workers = BatchWorkers(settings, get_session_factory())
    except ValueError as exc:
        logger.warning("batch workers not started: %s", exc)
        return
    workers.start()
    app.state.workers = workers


@app.on_event("shutdown")
def shutdown() -> None:
    workers: BatchWorkers | None = getattr(app.state, "workers", None)
    if workers is not None:
        workers.stop(timeout=30)


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, "not_found", exc)


@app.exception_handler(InvalidDocumentError)
async def _invalid_document_handler(request: Request, exc: InvalidDocumentError) -> JSONResponse:
    return _error(422, "invalid_document", exc)


@app.exception_handler(BulkInferenceError)
async def _bulk_inference_handler(request: Request, exc: BulkInferenceError) -> JSONResponse:
    return _error(502, "bulk_inference_error", exc)


@app.exception_handler(ExtractionError)
async def _extraction_handler(request: Request, exc: ExtractionError) -> JSONResponse:
    return _error(502, "extraction_error", exc)


@app.exception_handler(RealtimeUnavailableError)
async def _realtime_unavailable_handler(request: Request, exc: RealtimeUnavailableError) -> JSONResponse:
    return _error(503, "realtime_unavailable", exc)


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", exc)


# Import and register routers after app is defined.
from docbatch.api import admin, documents  # noqa: E402

app.include_router(documents.router, prefix="/documents", tags=["documents"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])
