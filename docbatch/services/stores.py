"""Repositories for extraction requests and batch jobs.

Each method opens its own short-lived session, so every call is a single-record
read-modify-write. Rows come back detached (the session factory is built with
``expire_on_commit=False``) and are written back with ``update()``.
"""

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from docbatch.db import utcnow
from docbatch.models.batch_job import BatchJob
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import BatchJobStatus, RequestStatus

logger = logging.getLogger(__name__)

# Statuses that must not carry a batch_job_id.
_UNBATCHED = (RequestStatus.QUEUED, RequestStatus.COMPLETED, RequestStatus.FAILED)


class RequestStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, request_id: str) -> ExtractionRequest | None:
        with self._session_factory() as db:
            return db.get(ExtractionRequest, request_id)

    def list_by_status(self, status: RequestStatus) -> list[ExtractionRequest]:
        with self._session_factory() as db:
            return (
                db.query(ExtractionRequest)
                .filter(ExtractionRequest.status == status)
                .order_by(ExtractionRequest.created_at.asc())
                .all()
            )

    def list_queued(self, limit: int) -> list[ExtractionRequest]:
        """Return up to *limit* Queued requests, oldest first."""
        with self._session_factory() as db:
            return (
                db.query(ExtractionRequest)
                .filter(ExtractionRequest.status == RequestStatus.QUEUED)
                .order_by(ExtractionRequest.created_at.asc(), ExtractionRequest.id.asc())
                .limit(limit)
                .all()
            )

    def count_queued(self) -> int:
        with self._session_factory() as db:
            return (
                db.query(func.count(ExtractionRequest.id))
                .filter(ExtractionRequest.status == RequestStatus.QUEUED)
                .scalar()
                or 0
            )

    def list_by_batch(self, batch_job_id: str) -> list[ExtractionRequest]:
        with self._session_factory() as db:
            return db.query(ExtractionRequest).filter(ExtractionRequest.batch_job_id == batch_job_id).all()

    def create(self, request: ExtractionRequest) -> ExtractionRequest:
        with self._session_factory() as db:
            db.add(request)
            db.commit()
        logger.info("created extraction request %s (%s)", request.id, request.status)
        return request

    def update(self, request: ExtractionRequest) -> None:
        """Replace the stored row with *request*, touching updated_at."""
        request.updated_at = utcnow()
        with self._session_factory() as db:
            db.merge(request)
            db.commit()

    def update_status(self, request_id: str, status: RequestStatus, error_message: str | None = None) -> None:
        now = utcnow()
        values: dict[str, object] = {"status": status, "updated_at": now}
        if error_message is not None:
            values["error_message"] = error_message
        if status in _UNBATCHED:
            values["batch_job_id"] = None
        if status.is_terminal:
            values["completed_at"] = now
        if status == RequestStatus.FAILED:
            values["result"] = None
        with self._session_factory() as db:
            db.query(ExtractionRequest).filter(ExtractionRequest.id == request_id).update(
                values, synchronize_session=False
            )
            db.commit()

    def update_result(self, request_id: str, result: str) -> None:
        """Store *result* and mark the request Completed."""
        now = utcnow()
        with self._session_factory() as db:
            db.query(ExtractionRequest).filter(ExtractionRequest.id == request_id).update(
                {
                    "result": result,
                    "error_message": None,
                    "status": RequestStatus.COMPLETED,
                    "batch_job_id": None,
                    "updated_at": now,
                    "completed_at": now,
                },
                synchronize_session=False,
            )
            db.commit()

    def list_all(self, skip: int = 0, take: int = 100) -> list[ExtractionRequest]:
        with self._session_factory() as db:
            return (
                db.query(ExtractionRequest)
                .order_by(ExtractionRequest.created_at.desc())
                .offset(skip)
                .limit(take)
                .all()
            )

    def list_recent(self, count: int = 50) -> list[ExtractionRequest]:
        return self.list_all(0, count)

    def count(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(ExtractionRequest.id)).scalar() or 0


class BatchJobStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, job_id: str) -> BatchJob | None:
        with self._session_factory() as db:
            return db.get(BatchJob, job_id)

    def get_by_remote_id(self, remote_job_id: str) -> BatchJob | None:
        with self._session_factory() as db:
            return db.query(BatchJob).filter(BatchJob.remote_job_id == remote_job_id).first()

    def list_by_status(self, *statuses: BatchJobStatus) -> list[BatchJob]:
        with self._session_factory() as db:
            return (
                db.query(BatchJob)
                .filter(BatchJob.status.in_(statuses))
                .order_by(BatchJob.created_at.asc())
                .all()
            )

    def list_in_flight(self) -> list[BatchJob]:
        """Jobs the poller still has to resolve (Submitted or Processing)."""
        return self.list_by_status(BatchJobStatus.SUBMITTED, BatchJobStatus.PROCESSING)

    def list_created(self, older_than: datetime) -> list[BatchJob]:
        with self._session_factory() as db:
            return (
                db.query(BatchJob)
                .filter(BatchJob.status == BatchJobStatus.CREATED, BatchJob.created_at < older_than)
                .order_by(BatchJob.created_at.asc())
                .all()
            )

    def create(self, job: BatchJob) -> BatchJob:
        with self._session_factory() as db:
            db.add(job)
            db.commit()
        logger.info("created batch job %s with %d requests", job.id, job.total_requests)
        return job

    def update(self, job: BatchJob) -> None:
        with self._session_factory() as db:
            db.merge(job)
            db.commit()

    def list_all(self, skip: int = 0, take: int = 100) -> list[BatchJob]:
        with self._session_factory() as db:
            return db.query(BatchJob).order_by(BatchJob.created_at.desc()).offset(skip).limit(take).all()

    def count(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(BatchJob.id)).scalar() or 0
