"""Batch submitter: converts pending requests and groups the queue into Gemini batch jobs.

One tick runs two phases:

1. Conversion: every Pending request is converted to text and moves to Queued,
   or to Failed if the converter rejects it. Each request is handled on its own,
   so one bad document never blocks the others.
2. Submission: if anything is queued, the oldest ``queue_size_threshold``
   requests become one BatchJob. The job row is written first (Created), the
   members are marked BatchSubmitted, then the batch is sent. If sending fails
   the members are put back in the queue and the Created job stays behind as an
   audit record.
"""

import logging
import threading
from collections.abc import Sequence

from docbatch.config import Settings
from docbatch.db import utcnow
from docbatch.models.batch_job import BatchJob
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import BatchJobStatus, RequestStatus
from docbatch.services.bulk_client import GeminiBatchClient
from docbatch.services.converter import DocumentConverter
from docbatch.services.stores import BatchJobStore, RequestStore
from docbatch.services.types import ConversionCounts

logger = logging.getLogger(__name__)


class BatchSubmitter:
    def __init__(
        self,
        requests: RequestStore,
        jobs: BatchJobStore,
        converter: DocumentConverter,
        bulk_client: GeminiBatchClient,
        settings: Settings,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._requests = requests
        self._jobs = jobs
        self._converter = converter
        self._bulk_client = bulk_client
        self._threshold = settings.queue_size_threshold
        self._stop_event = stop_event or threading.Event()

    def _stopping(self) -> bool:
        return self._stop_event.is_set()

    def tick(self) -> BatchJob | None:
        """Run the conversion phase, then the submission phase."""
        self.convert_pending()
        if self._stopping():
            return None
        return self.submit_queued()

    # ── Conversion ────────────────────────────────────────────────────────────

    def convert_pending(self) -> ConversionCounts:
        """Move every Pending request to Queued (converted) or Failed."""
        counts = ConversionCounts(converted=0, failed=0)
        pending = self._requests.list_by_status(RequestStatus.PENDING)
        if not pending:
            logger.debug("no pending requests to convert")
            return counts

        logger.info("converting %d pending requests", len(pending))
        for request in pending:
            if self._stopping():
                logger.info("stop requested, leaving remaining pending requests for the next run")
                break
            try:
                if self._convert_one(request):
                    counts["converted"] += 1
                else:
                    counts["failed"] += 1
            except Exception:
                logger.exception("failed to record conversion outcome for request %s", request.id)
        logger.info("conversion done: %d queued, %d failed", counts["converted"], counts["failed"])
        return counts

    def _convert_one(self, request: ExtractionRequest) -> bool:
        try:
            text = self._converter.convert(request.document_bytes, request.document_name)
        except Exception as exc:
            logger.error("failed to convert request %s (%s): %s", request.id, request.document_name, exc)
            request.status = RequestStatus.FAILED
            request.error_message = f"Failed to convert document to text: {exc}"
            request.result = None
            request.completed_at = utcnow()
            self._requests.update(request)
            return False

        request.normalized_text = text
        request.status = RequestStatus.QUEUED
        self._requests.update(request)
        logger.debug("request %s converted (%d chars)", request.id, len(text))
        return True

    # ── Submission ────────────────────────────────────────────────────────────

    def submit_queued(self) -> BatchJob | None:
        """Submit the oldest queued requests as one batch. No-op on an empty queue.

        Raises whatever the bulk client raised after returning the requests to
        the queue.
        """
        queued = self._requests.count_queued()
        logger.info("current queue size: %d (threshold %d)", queued, self._threshold)
        if queued == 0:
            return None

        requests = self._requests.list_queued(self._threshold)
        if not requests:
            return None
        return self._submit_batch(requests)

    def _submit_batch(self, requests: Sequence[ExtractionRequest]) -> BatchJob:
        job = BatchJob(
            request_ids=[r.id for r in requests],
            status=BatchJobStatus.CREATED,
            total_requests=len(requests),
            completed_requests=0,
            failed_requests=0,
            created_at=utcnow(),
        )
        self._jobs.create(job)
        logger.info("submitting batch %s with %d requests", job.id, len(requests))

        try:
            for request in requests:
                request.status = RequestStatus.BATCH_SUBMITTED
                request.batch_job_id = job.id
                self._requests.update(request)
            remote_job_id = self._bulk_client.submit(requests)
        except Exception:
            logger.exception("failed to submit batch %s, returning %d requests to the queue", job.id, len(requests))
            self._return_to_queue(requests)
            raise

        job.remote_job_id = remote_job_id
        job.status = BatchJobStatus.SUBMITTED
        job.submitted_at = utcnow()
        self._jobs.update(job)
        logger.info("batch %s submitted as %s", job.id, remote_job_id)
        return job

    def _return_to_queue(self, requests: Sequence[ExtractionRequest]) -> None:
        for request in requests:
            request.status = RequestStatus.QUEUED
            request.batch_job_id = None
            try:
                self._requests.update(request)
            except Exception:
                logger.exception("failed to return request %s to the queue", request.id)
