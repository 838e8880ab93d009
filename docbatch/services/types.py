"""Shared typed return types for backend services."""

from enum import StrEnum
from typing import TypedDict


class RemotePhase(StrEnum):
    """Remote batch state, reduced to what the poller acts on."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    # Unknown vocabulary; polled again rather than transitioned.
    UNRECOGNIZED = "unrecognized"


class RemoteStatus(TypedDict):
    phase: RemotePhase
    raw_state: str
    completed_count: int
    failed_count: int


class BatchResults(TypedDict):
    # request id -> model output
    results: dict[str, str]
    # request id -> error message
    errors: dict[str, str]
    is_terminal: bool


class ConversionCounts(TypedDict):
    converted: int
    failed: int
