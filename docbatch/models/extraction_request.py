"""ExtractionRequest ORM model: one document's extraction job, batch or real-time."""

import uuid
from datetime import datetime

from sqlalchemy import Enum, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docbatch.db import Base, utcnow
from docbatch.models.status import DocumentType, ProcessingMode, RequestStatus, enum_values


class ExtractionRequest(Base):
    __tablename__ = "extraction_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_bytes: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    document_name: Mapped[str] = mapped_column(Text, nullable=False)
    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
        default=DocumentType.UNKNOWN,
    )
    instruction: Mapped[str] = mapped_column(Text, nullable=False)
    output_schema: Mapped[str] = mapped_column(Text, nullable=False)
    model_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    processing_mode: Mapped[ProcessingMode] = mapped_column(
        Enum(ProcessingMode, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
        default=ProcessingMode.BATCH,
    )
    # Empty until conversion succeeds.
    normalized_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, native_enum=False, length=32, values_callable=enum_values),
        nullable=False,
        default=RequestStatus.PENDING,
    )
    # result and error_message are mutually exclusive.
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Set only while BatchSubmitted / Processing.
    batch_job_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    callback_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_extraction_requests_status_created", "status", "created_at"),
        Index("idx_extraction_requests_batch_job", "batch_job_id"),
    )

    def __repr__(self) -> str:
        return f"<ExtractionRequest {self.id} {self.status}>"
