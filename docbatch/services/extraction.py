"""Extraction intake: accepts documents for the batch queue or processes them in real time."""

import json
import logging

from docbatch.db import utcnow
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import DocumentType, ProcessingMode, RequestStatus
from docbatch.schemas.request import DocumentSubmission
from docbatch.services.converter import DocumentConverter
from docbatch.services.gemini import GeminiExtractor
from docbatch.services.stores import RequestStore

logger = logging.getLogger(__name__)


class NotFoundError(Exception):
    """Raised when the requested extraction request does not exist."""


class InvalidDocumentError(Exception):
    """Raised when a submitted document or extraction contract is unusable."""


class RealtimeUnavailableError(Exception):
    """Raised when a real-time request arrives but no extractor is configured."""


def _validate(submission: DocumentSubmission) -> None:
    if not submission.document_bytes:
        raise InvalidDocumentError("Document file is required")
    if not submission.document_name.strip():
        raise InvalidDocumentError("Document name is required")
    if not submission.instruction.strip():
        raise InvalidDocumentError("Instruction is required")
    try:
        json.loads(submission.output_schema)
    except json.JSONDecodeError as exc:
        raise InvalidDocumentError(f"Output schema is not valid JSON: {exc.msg}") from exc


def _new_request(submission: DocumentSubmission, mode: ProcessingMode, status: RequestStatus) -> ExtractionRequest:
    now = utcnow()
    return ExtractionRequest(
        document_bytes=submission.document_bytes,
        document_name=submission.document_name,
        document_type=DocumentType.from_filename(submission.document_name),
        instruction=submission.instruction,
        output_schema=submission.output_schema,
        model_id=submission.model_id or None,
        callback_url=submission.callback_url or None,
        client_id=submission.client_id,
        processing_mode=mode,
        status=status,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )


class ExtractionService:
    def __init__(
        self,
        requests: RequestStore,
        converter: DocumentConverter | None = None,
        extractor: GeminiExtractor | None = None,
    ) -> None:
        self._requests = requests
        self._converter = converter or DocumentConverter()
        self._extractor = extractor

    def queue_for_batch(self, submission: DocumentSubmission) -> ExtractionRequest:
        """Store the document as Pending; the batch submitter converts and queues it.

        Raises InvalidDocumentError before anything is stored.
        """
        _validate(submission)
        request = self._requests.create(_new_request(submission, ProcessingMode.BATCH, RequestStatus.PENDING))
        logger.info("queued request %s (%s) for batch processing", request.id, request.document_name)
        return request

    def process_realtime(self, submission: DocumentSubmission) -> ExtractionRequest:
        """Convert and extract immediately.

        Conversion and model failures are stored on the request (status Failed)
        and returned rather than raised.
        """
        _validate(submission)
        if self._extractor is None:
            raise RealtimeUnavailableError("real-time extraction is not configured (no Gemini API key)")
        request = self._requests.create(
            _new_request(submission, ProcessingMode.REALTIME, RequestStatus.PROCESSING)
        )
        try:
            text = self._converter.convert(request.document_bytes, request.document_name)
            request.normalized_text = text
            result = self._extractor.extract(text, request.instruction, request.output_schema, request.model_id)
        except Exception as exc:
            logger.error("real-time request %s failed: %s", request.id, exc)
            request.status = RequestStatus.FAILED
            request.error_message = str(exc)
            request.result = None
        else:
            request.status = RequestStatus.COMPLETED
            request.result = result
            request.error_message = None
            logger.info("real-time request %s completed", request.id)
        request.completed_at = utcnow()
        self._requests.update(request)
        return request

    def get_status(self, request_id: str) -> ExtractionRequest:
        """Return the request; raise NotFoundError if absent."""
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Request {request_id} not found")
        return request
