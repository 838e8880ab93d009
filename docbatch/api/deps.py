"""FastAPI dependencies shared by the routers."""

from functools import lru_cache

from fastapi import Depends

from docbatch.config import Settings, get_settings
from docbatch.db import get_session_factory
from docbatch.services.extraction import ExtractionService
from docbatch.services.gemini import GeminiExtractor, make_client
from docbatch.services.stores import BatchJobStore, RequestStore


def get_request_store() -> RequestStore:
    return RequestStore(get_session_factory())


def get_job_store() -> BatchJobStore:
    return BatchJobStore(get_session_factory())


@lru_cache
def _extractor(api_key: str, model: str) -> GeminiExtractor:
    return GeminiExtractor(make_client(api_key), model)


def get_extraction_service(
    requests: RequestStore = Depends(get_request_store),
    settings: Settings = Depends(get_settings),
) -> ExtractionService:
    extractor = None
    if settings.gemini_api_key:
        extractor = _extractor(settings.gemini_api_key, settings.gemini_model)
    return ExtractionService(requests, extractor=extractor)
