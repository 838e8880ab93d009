"""Status and classification enums shared by the ORM models and API schemas."""

from enum import StrEnum
from pathlib import PurePath


class RequestStatus(StrEnum):
    PENDING = "Pending"
    QUEUED = "Queued"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    BATCH_SUBMITTED = "BatchSubmitted"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED)


class BatchJobStatus(StrEnum):
    CREATED = "Created"
    SUBMITTED = "Submitted"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PARTIALLY_COMPLETED = "PartiallyCompleted"


class ProcessingMode(StrEnum):
    REALTIME = "RealTime"
    BATCH = "Batch"


class DocumentType(StrEnum):
    PDF = "Pdf"
    WORD = "Word"
    IMAGE = "Image"
    HTML = "Html"
    TEXT = "Text"
    UNKNOWN = "Unknown"

    @classmethod
    def from_filename(cls, filename: str) -> "DocumentType":
        return _EXTENSIONS.get(PurePath(filename).suffix.lower(), cls.UNKNOWN)


_EXTENSIONS: dict[str, DocumentType] = {
    ".pdf": DocumentType.PDF,
    ".doc": DocumentType.WORD,
    ".docx": DocumentType.WORD,
    ".jpg": DocumentType.IMAGE,
    ".jpeg": DocumentType.IMAGE,
    ".png": DocumentType.IMAGE,
    ".gif": DocumentType.IMAGE,
    ".bmp": DocumentType.IMAGE,
    ".tiff": DocumentType.IMAGE,
    ".html": DocumentType.HTML,
    ".htm": DocumentType.HTML,
    ".txt": DocumentType.TEXT,
    ".md": DocumentType.TEXT,
    ".csv": DocumentType.TEXT,
    ".json": DocumentType.TEXT,
}


def enum_values(enum_cls: type[StrEnum]) -> list[str]:
    """Persist enum values ("Queued") rather than member names ("QUEUED")."""
    return [member.value for member in enum_cls]
