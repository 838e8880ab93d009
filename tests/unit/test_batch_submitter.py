"""Unit tests for BatchSubmitter."""

import threading
from collections.abc import Callable
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from docbatch.config import Settings
from docbatch.db import utcnow
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import BatchJobStatus, DocumentType, RequestStatus
from docbatch.services.batch_submitter import BatchSubmitter
from docbatch.services.bulk_client import BulkInferenceError
from docbatch.services.converter import DocumentConverter
from docbatch.services.stores import BatchJobStore, RequestStore


def _make_submitter(
    request_store: RequestStore,
    job_store: BatchJobStore,
    bulk_client: MagicMock,
    settings: Settings,
    stop_event: threading.Event | None = None,
) -> BatchSubmitter:
    return BatchSubmitter(request_store, job_store, DocumentConverter(), bulk_client, settings, stop_event=stop_event)


def _queue(make_request: Callable[..., ExtractionRequest], n: int) -> list[ExtractionRequest]:
    """Create *n* queued requests with strictly increasing created_at."""
    start = utcnow() - timedelta(minutes=10)
    return [make_request(created_at=start + timedelta(seconds=i)) for i in range(n)]


class TestConvertPending:
    def test_converts_pending_text_document_and_queues_it(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        req = make_request(status=RequestStatus.PENDING)
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        counts = submitter.convert_pending()

        assert counts == {"converted": 1, "failed": 0}
        stored = request_store.get(req.id)
        assert stored is not None
        assert stored.status == RequestStatus.QUEUED
        assert stored.normalized_text == "Invoice total: 42.00"

    def test_unconvertible_document_fails_with_prefixed_message(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        req = make_request(
            status=RequestStatus.PENDING,
            document_name="scan.png",
            document_type=DocumentType.IMAGE,
            document_bytes=b"\x89PNG",
        )
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        counts = submitter.convert_pending()

        assert counts == {"converted": 0, "failed": 1}
        stored = request_store.get(req.id)
        assert stored is not None
        assert stored.status == RequestStatus.FAILED
        assert stored.error_message is not None
        assert stored.error_message.startswith("Failed to convert document to text:")
        assert stored.result is None
        assert stored.completed_at is not None

    def test_one_bad_document_does_not_block_the_rest(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        bad = make_request(status=RequestStatus.PENDING, document_name="empty.txt", document_bytes=b"   ")
        good = make_request(status=RequestStatus.PENDING)
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        submitter.convert_pending()

        assert request_store.get(bad.id).status == RequestStatus.FAILED
        assert request_store.get(good.id).status == RequestStatus.QUEUED

    def test_stop_requested_leaves_pending_requests_untouched(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        req = make_request(status=RequestStatus.PENDING)
        stop = threading.Event()
        stop.set()
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings, stop_event=stop)

        counts = submitter.convert_pending()

        assert counts == {"converted": 0, "failed": 0}
        assert request_store.get(req.id).status == RequestStatus.PENDING

    def test_second_run_without_new_pending_is_a_noop(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        queued = make_request(status=RequestStatus.PENDING)
        failed = make_request(status=RequestStatus.PENDING, document_name="empty.txt", document_bytes=b"   ")
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)
        submitter.convert_pending()
        before = {r.id: (r.status, r.updated_at) for r in map(request_store.get, (queued.id, failed.id))}

        counts = submitter.convert_pending()

        assert counts == {"converted": 0, "failed": 0}
        after = {r.id: (r.status, r.updated_at) for r in map(request_store.get, (queued.id, failed.id))}
        assert after == before
        assert before[queued.id][0] == RequestStatus.QUEUED
        assert before[failed.id][0] == RequestStatus.FAILED


class TestSubmitQueued:
    def test_empty_queue_is_a_noop(self, request_store, job_store, mock_bulk_client, settings) -> None:
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        assert submitter.submit_queued() is None
        mock_bulk_client.submit.assert_not_called()
        assert job_store.count() == 0

    def test_submits_oldest_requests_up_to_threshold(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        requests = _queue(make_request, 5)
        mock_bulk_client.submit.return_value = "batches/abc"
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        job = submitter.submit_queued()

        assert job is not None
        assert job.request_ids == [r.id for r in requests[:3]]
        assert job.total_requests == 3
        assert job.remote_job_id == "batches/abc"
        assert job.status == BatchJobStatus.SUBMITTED
        assert job.submitted_at is not None
        for r in requests[:3]:
            stored = request_store.get(r.id)
            assert stored.status == RequestStatus.BATCH_SUBMITTED
            assert stored.batch_job_id == job.id
        for r in requests[3:]:
            stored = request_store.get(r.id)
            assert stored.status == RequestStatus.QUEUED
            assert stored.batch_job_id is None
        assert request_store.count_queued() == 2

    def test_next_run_submits_the_remainder(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        requests = _queue(make_request, 5)
        mock_bulk_client.submit.side_effect = ["batches/1", "batches/2"]
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        submitter.submit_queued()
        second = submitter.submit_queued()

        assert second is not None
        assert second.request_ids == [r.id for r in requests[3:]]
        assert request_store.count_queued() == 0
        assert job_store.count() == 2

    def test_below_threshold_is_still_submitted(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        _queue(make_request, 1)
        mock_bulk_client.submit.return_value = "batches/small"
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        job = submitter.submit_queued()

        assert job is not None
        assert job.total_requests == 1

    def test_bulk_client_receives_converted_payloads(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        _queue(make_request, 2)
        mock_bulk_client.submit.return_value = "batches/abc"
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        submitter.submit_queued()

        sent = mock_bulk_client.submit.call_args.args[0]
        assert len(sent) == 2
        assert all(r.normalized_text == "Invoice total: 42.00" for r in sent)

    def test_failed_submission_returns_requests_to_queue(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        requests = _queue(make_request, 2)
        mock_bulk_client.submit.side_effect = BulkInferenceError("service unavailable")
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)
        queued_before = request_store.count_queued()

        with pytest.raises(BulkInferenceError):
            submitter.submit_queued()

        assert request_store.count_queued() == queued_before

        for r in requests:
            stored = request_store.get(r.id)
            assert stored.status == RequestStatus.QUEUED
            assert stored.batch_job_id is None
            assert stored.retry_count == 0
        # The Created job stays behind without a remote id.
        jobs = job_store.list_all()
        assert len(jobs) == 1
        assert jobs[0].status == BatchJobStatus.CREATED
        assert jobs[0].remote_job_id is None

    def test_submitted_requests_are_not_picked_up_again(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        _queue(make_request, 2)
        mock_bulk_client.submit.return_value = "batches/abc"
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        submitter.submit_queued()
        assert submitter.submit_queued() is None
        mock_bulk_client.submit.assert_called_once()


class TestTick:
    def test_converts_then_submits(
        self, request_store, job_store, mock_bulk_client, settings, make_request
    ) -> None:
        req = make_request(status=RequestStatus.PENDING)
        mock_bulk_client.submit.return_value = "batches/abc"
        submitter = _make_submitter(request_store, job_store, mock_bulk_client, settings)

        job = submitter.tick()

        assert job is not None
        assert job.request_ids == [req.id]
        assert request_store.get(req.id).status == RequestStatus.BATCH_SUBMITTED
