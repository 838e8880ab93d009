"""Shared pytest fixtures."""

from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from docbatch.config import Settings
from docbatch.db import create_tables, make_engine, make_session_factory, utcnow
from docbatch.models.batch_job import BatchJob
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import BatchJobStatus, DocumentType, ProcessingMode, RequestStatus
from docbatch.services.stores import BatchJobStore, RequestStore

_SCHEMA = '{"type": "object", "properties": {"total": {"type": "number"}}}'


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        queue_size_threshold=3,
        max_retry_count=3,
        gemini_api_key="test-key",
        run_workers=False,
    )


@pytest.fixture()
def engine() -> Iterator[Engine]:
    """Fresh in-memory SQLite database per test."""
    eng = make_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def request_store(session_factory: sessionmaker[Session]) -> RequestStore:
    return RequestStore(session_factory)


@pytest.fixture()
def job_store(session_factory: sessionmaker[Session]) -> BatchJobStore:
    return BatchJobStore(session_factory)


@pytest.fixture()
def mock_bulk_client() -> MagicMock:
    """Mock Gemini batch client."""
    return MagicMock()


@pytest.fixture()
def mock_notifier() -> MagicMock:
    """Mock callback notifier."""
    return MagicMock()


@pytest.fixture()
def mock_httpx_client() -> MagicMock:
    """Mock httpx client."""
    return MagicMock()


@pytest.fixture()
def make_request(request_store: RequestStore) -> Callable[..., ExtractionRequest]:
    """Persist an ExtractionRequest; keyword arguments override the defaults."""

    def _make(
        status: RequestStatus = RequestStatus.QUEUED,
        created_at: datetime | None = None,
        **overrides: Any,
    ) -> ExtractionRequest:
        now = created_at or utcnow()
        fields: dict[str, Any] = {
            "document_bytes": b"Invoice total: 42.00",
            "document_name": "invoice.txt",
            "document_type": DocumentType.TEXT,
            "instruction": "Extract the invoice total",
            "output_schema": _SCHEMA,
            "processing_mode": ProcessingMode.BATCH,
            "normalized_text": None if status == RequestStatus.PENDING else "Invoice total: 42.00",
            "status": status,
            "retry_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return request_store.create(ExtractionRequest(**fields))

    return _make


@pytest.fixture()
def make_job(
    job_store: BatchJobStore, request_store: RequestStore
) -> Callable[..., BatchJob]:
    """Persist a BatchJob and point its member requests at it as BatchSubmitted."""

    def _make(
        requests: list[ExtractionRequest],
        status: BatchJobStatus = BatchJobStatus.SUBMITTED,
        remote_job_id: str | None = "batches/test-1",
        created_at: datetime | None = None,
    ) -> BatchJob:
        job = job_store.create(
            BatchJob(
                remote_job_id=remote_job_id,
                request_ids=[r.id for r in requests],
                status=status,
                total_requests=len(requests),
                completed_requests=0,
                failed_requests=0,
                created_at=created_at or utcnow(),
                submitted_at=None if status == BatchJobStatus.CREATED else utcnow(),
            )
        )
        for request in requests:
            request.status = RequestStatus.BATCH_SUBMITTED
            request.batch_job_id = job.id
            request_store.update(request)
        return job

    return _make
