"""Batch result poller: resolves in-flight Gemini batch jobs and fans results back out.

Every in-flight job (Submitted or Processing) is checked on each tick:

- still running: progress counters are copied from the remote job;
- completed: each member request gets its result (plus a best-effort callback)
  or its per-request error. Per-request errors are final;
- failed, expired or cancelled: every member goes back to the queue until its
  retry budget runs out, after which it fails with the job-level message.

Jobs are independent: an exception while resolving one is logged and the scan
moves on to the next.
"""

import logging
import threading
from datetime import timedelta

from docbatch.config import Settings
from docbatch.db import utcnow
from docbatch.models.batch_job import BatchJob
from docbatch.models.status import BatchJobStatus, RequestStatus
from docbatch.services.bulk_client import GeminiBatchClient
from docbatch.services.callback import CallbackNotifier
from docbatch.services.stores import BatchJobStore, RequestStore
from docbatch.services.types import RemotePhase

logger = logging.getLogger(__name__)

MISSING_RESULT_MESSAGE = "No result returned by bulk inference"
ORPHANED_JOB_MESSAGE = "Orphaned batch job: submission never completed"


def _clamped_counts(job: BatchJob, completed: int, failed: int) -> tuple[int, int]:
    """Never-decreasing counters with completed + failed <= total."""
    total = job.total_requests
    completed = min(total, max(job.completed_requests, completed))
    failed = min(total - completed, max(job.failed_requests, failed))
    return completed, failed


class BatchResultPoller:
    def __init__(
        self,
        requests: RequestStore,
        jobs: BatchJobStore,
        bulk_client: GeminiBatchClient,
        notifier: CallbackNotifier,
        settings: Settings,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._requests = requests
        self._jobs = jobs
        self._bulk_client = bulk_client
        self._notifier = notifier
        self._max_retry_count = settings.max_retry_count
        self._orphan_grace = timedelta(minutes=settings.orphan_grace_minutes)
        self._stop_event = stop_event or threading.Event()

    def _stopping(self) -> bool:
        return self._stop_event.is_set()

    def tick(self) -> int:
        if self._orphan_grace > timedelta(0):
            self.reconcile_orphans()
        return self.poll()

    def poll(self) -> int:
        """Check every in-flight job once. Returns how many reached a final state."""
        jobs = self._jobs.list_in_flight()
        if not jobs:
            logger.debug("no in-flight batch jobs")
            return 0

        resolved = 0
        for job in jobs:
            if self._stopping():
                logger.info("stop requested, leaving remaining batch jobs for the next run")
                break
            if not job.remote_job_id:
                logger.warning("batch %s has no remote job id, skipping", job.id)
                continue
            try:
                if self.resolve(job):
                    resolved += 1
            except Exception:
                logger.exception("failed to process results for batch %s", job.id)
        return resolved

    def resolve(self, job: BatchJob) -> bool:
        """Check one job against the remote service. Returns True if it reached a final state."""
        if not job.remote_job_id:
            raise ValueError(f"batch {job.id} has no remote job id")
        status = self._bulk_client.status(job.remote_job_id)
        logger.info("batch %s (%s) state: %s", job.id, job.remote_job_id, status["raw_state"])

        if status["phase"] == RemotePhase.COMPLETED:
            self._handle_completed(job, job.remote_job_id)
            return True
        if status["phase"] == RemotePhase.FAILED:
            self._handle_failed(job, f"Batch job ended with state {status['raw_state']}")
            return True
        if status["phase"] == RemotePhase.UNRECOGNIZED:
            logger.warning("batch %s reported unrecognized state %s, polling again later", job.id, status["raw_state"])

        job.completed_requests, job.failed_requests = _clamped_counts(
            job, status["completed_count"], status["failed_count"]
        )
        job.status = BatchJobStatus.PROCESSING
        self._jobs.update(job)
        return False

    # ── Completed jobs ────────────────────────────────────────────────────────

    def _handle_completed(self, job: BatchJob, remote_job_id: str) -> None:
        outcome = self._bulk_client.fetch_results(remote_job_id)
        members = set(job.request_ids)
        completed = 0
        failed = 0

        for request_id in job.request_ids:
            if request_id in outcome["results"]:
                final = self._apply_result(job, request_id, outcome["results"][request_id])
            else:
                message = outcome["errors"].get(request_id, MISSING_RESULT_MESSAGE)
                final = self._apply_error(job, request_id, message)
            if final == RequestStatus.COMPLETED:
                completed += 1
            elif final == RequestStatus.FAILED:
                failed += 1

        strays = (set(outcome["results"]) | set(outcome["errors"])) - members
        if strays:
            logger.warning("batch %s returned %d results for unknown requests, ignoring", job.id, len(strays))

        if failed == 0:
            job.status = BatchJobStatus.COMPLETED
        elif completed == 0:
            job.status = BatchJobStatus.FAILED
            job.error_message = "All requests in the batch failed"
        else:
            job.status = BatchJobStatus.PARTIALLY_COMPLETED
        job.completed_requests = completed
        job.failed_requests = failed
        job.completed_at = utcnow()
        self._jobs.update(job)
        logger.info("batch %s %s: %d completed, %d failed", job.id, job.status, completed, failed)

    def _apply_result(self, job: BatchJob, request_id: str, output: str) -> RequestStatus | None:
        request = self._requests.get(request_id)
        if request is None:
            logger.warning("request %s of batch %s no longer exists", request_id, job.id)
            return None
        if request.status.is_terminal:
            return request.status
        if request.batch_job_id != job.id:
            logger.warning("request %s is no longer part of batch %s, skipping", request_id, job.id)
            return None

        try:
            self._requests.update_result(request_id, output)
        except Exception as exc:
            logger.exception("failed to store result for request %s", request_id)
            return self._apply_error(job, request_id, f"Failed to store result: {exc}")

        if request.callback_url:
            try:
                self._notifier.notify(request.callback_url, request_id, output)
            except Exception:
                logger.exception("callback for request %s failed", request_id)
        return RequestStatus.COMPLETED

    def _apply_error(self, job: BatchJob, request_id: str, message: str) -> RequestStatus | None:
        request = self._requests.get(request_id)
        if request is None:
            logger.warning("request %s of batch %s no longer exists", request_id, job.id)
            return None
        if request.status.is_terminal:
            return request.status
        if request.batch_job_id != job.id:
            logger.warning("request %s is no longer part of batch %s, skipping", request_id, job.id)
            return None
        try:
            self._requests.update_status(request_id, RequestStatus.FAILED, message)
        except Exception:
            logger.exception("failed to mark request %s as failed", request_id)
            return None
        logger.info("request %s failed in batch %s: %s", request_id, job.id, message)
        return RequestStatus.FAILED

    # ── Failed jobs ───────────────────────────────────────────────────────────

    def _handle_failed(self, job: BatchJob, error_message: str) -> None:
        logger.warning("batch %s failed: %s", job.id, error_message)
        for request_id in job.request_ids:
            try:
                self._retry_or_fail(job, request_id, error_message)
            except Exception:
                logger.exception("failed to reschedule request %s of batch %s", request_id, job.id)

        job.status = BatchJobStatus.FAILED
        job.error_message = error_message
        job.completed_at = utcnow()
        self._jobs.update(job)

    def _retry_or_fail(self, job: BatchJob, request_id: str, error_message: str) -> None:
        request = self._requests.get(request_id)
        if request is None:
            logger.warning("request %s of batch %s no longer exists", request_id, job.id)
            return
        if request.status.is_terminal or request.batch_job_id != job.id:
            return

        if request.retry_count < self._max_retry_count:
            request.retry_count += 1
            request.status = RequestStatus.QUEUED
            request.batch_job_id = None
            self._requests.update(request)
            logger.info("request %s queued for retry (attempt %d)", request_id, request.retry_count)
        else:
            self._requests.update_status(request_id, RequestStatus.FAILED, error_message)
            logger.info("request %s failed after %d retries", request_id, request.retry_count)

    # ── Orphans ───────────────────────────────────────────────────────────────

    def reconcile_orphans(self) -> int:
        """Close out Created jobs that never reached the remote service.

        Members still waiting on such a job go back to the queue without using
        up their retry budget. Returns the number of jobs closed.
        """
        cutoff = utcnow() - self._orphan_grace
        closed = 0
        for job in self._jobs.list_created(older_than=cutoff):
            if self._stopping():
                break
            try:
                for request in self._requests.list_by_batch(job.id):
                    if request.status == RequestStatus.BATCH_SUBMITTED:
                        request.status = RequestStatus.QUEUED
                        request.batch_job_id = None
                        self._requests.update(request)
                job.status = BatchJobStatus.FAILED
                job.error_message = ORPHANED_JOB_MESSAGE
                job.completed_at = utcnow()
                self._jobs.update(job)
                closed += 1
                logger.warning("closed orphaned batch job %s", job.id)
            except Exception:
                logger.exception("failed to reconcile orphaned batch job %s", job.id)
        return closed
