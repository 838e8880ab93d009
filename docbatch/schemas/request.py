"""Pydantic schemas for extraction request endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from docbatch.models.status import DocumentType, ProcessingMode, RequestStatus


class DocumentSubmission(BaseModel):
    document_bytes: bytes
    document_name: str
    instruction: str
    output_schema: str
    model_id: str | None = None
    callback_url: str | None = None
    client_id: str | None = None

    model_config = {"frozen": True}


class RequestStatusResponse(BaseModel):
    request_id: str
    status: RequestStatus
    result: str | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None


class RequestSummary(BaseModel):
    id: str
    document_name: str
    processing_mode: ProcessingMode
    status: RequestStatus
    created_at: datetime
    completed_at: datetime | None
    error_message: str | None
    has_result: bool


class RequestDetail(BaseModel):
    id: str
    document_name: str
    document_type: DocumentType
    processing_mode: ProcessingMode
    status: RequestStatus
    instruction: str
    output_schema: str
    model_id: str | None
    callback_url: str | None
    result: str | None
    error_message: str | None
    batch_job_id: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None


class ProcessDocumentJsonRequest(BaseModel):
    """JSON alternative to the multipart upload; the document travels base64-encoded."""

    document_base64: str
    document_name: str
    instruction: str
    output_schema: str
    model_id: str | None = None
    mode: Literal["realtime", "batch"] = "realtime"
    callback_url: str | None = None


class RequestPage(BaseModel):
    data: list[RequestSummary]
    total: int
    skip: int
    take: int
