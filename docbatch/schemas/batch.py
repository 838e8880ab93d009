"""Pydantic schemas for batch job and queue endpoints."""

from datetime import datetime

from pydantic import BaseModel

from docbatch.models.status import BatchJobStatus


class BatchJobSummary(BaseModel):
    id: str
    remote_job_id: str | None
    status: BatchJobStatus
    request_ids: list[str]
    total_requests: int
    completed_requests: int
    failed_requests: int
    error_message: str | None
    created_at: datetime
    submitted_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class QueueStats(BaseModel):
    queued_requests: int
    total_requests: int
    total_batches: int


class BatchJobPage(BaseModel):
    data: list[BatchJobSummary]
    total: int
    skip: int
    take: int
