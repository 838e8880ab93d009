"""BatchJob ORM model: a group of requests submitted together as one Gemini batch job."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docbatch.db import Base, utcnow
from docbatch.models.status import BatchJobStatus, enum_values


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Gemini batch job name; absent until submission succeeds.
    remote_job_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Ordered membership, fixed at creation.
    request_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[BatchJobStatus] = mapped_column(
        Enum(BatchJobStatus, native_enum=False, length=32, values_callable=enum_values),
        nullable=False,
        default=BatchJobStatus.CREATED,
    )
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_batch_jobs_status", "status"),
        Index("idx_batch_jobs_remote_job_id", "remote_job_id"),
    )

    def __repr__(self) -> str:
        return f"<BatchJob {self.id} {self.status} {self.total_requests} requests>"
