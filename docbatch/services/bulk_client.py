"""Gemini Batch API client: submit a group of requests, poll it, download its results."""

import io
import json
import logging
from collections.abc import Sequence

from google import genai
from google.genai import types as genai_types

from docbatch.models.extraction_request import ExtractionRequest
from docbatch.services.gemini import TEMPERATURE, build_prompt, strip_code_fence
from docbatch.services.types import BatchResults, RemotePhase, RemoteStatus

logger = logging.getLogger(__name__)

# Gemini reports JOB_STATE_* through the SDK and BATCH_STATE_* over REST; both
# are reduced to the suffix before lookup.
_STATE_TABLE: dict[str, RemotePhase] = {
    "PENDING": RemotePhase.PROCESSING,
    "QUEUED": RemotePhase.PROCESSING,
    "RUNNING": RemotePhase.PROCESSING,
    "PAUSED": RemotePhase.PROCESSING,
    "UPDATING": RemotePhase.PROCESSING,
    "CANCELLING": RemotePhase.PROCESSING,
    "SUCCEEDED": RemotePhase.COMPLETED,
    "PARTIALLY_SUCCEEDED": RemotePhase.COMPLETED,
    "FAILED": RemotePhase.FAILED,
    "CANCELLED": RemotePhase.FAILED,
    "EXPIRED": RemotePhase.FAILED,
}

_STATE_PREFIXES = ("JOB_STATE_", "BATCH_STATE_")


class BulkInferenceError(Exception):
    """Raised when the Gemini Batch API cannot be reached or rejects a call."""


def map_remote_state(raw_state: str | None) -> RemotePhase:
    """Translate a remote batch state string into a RemotePhase."""
    if not raw_state:
        return RemotePhase.UNRECOGNIZED
    state = raw_state.strip().upper()
    for prefix in _STATE_PREFIXES:
        if state.startswith(prefix):
            state = state[len(prefix) :]
            break
    return _STATE_TABLE.get(state, RemotePhase.UNRECOGNIZED)


def _state_name(batch: genai_types.BatchJob) -> str:
    return batch.state.name if batch.state is not None else "JOB_STATE_UNSPECIFIED"


def _batch_line(request: ExtractionRequest) -> dict[str, object]:
    system, user = build_prompt(request.instruction, request.output_schema, request.normalized_text or "")
    return {
        "key": request.id,
        "request": {
            "contents": [{"parts": [{"text": user}], "role": "user"}],
            "system_instruction": {"parts": [{"text": system}]},
            "generation_config": {
                "temperature": TEMPERATURE,
                "response_mime_type": "application/json",
            },
        },
    }


def _response_text(response: dict[str, object]) -> str | None:
    candidates = response.get("candidates") or []
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
    return text or None


def _error_message(error: object) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown error")
    return str(error) if error else "Unknown error"


def parse_result_lines(content: str) -> tuple[dict[str, str], dict[str, str]]:
    """Split a Gemini batch output file into (results, errors) keyed by request id."""
    results: dict[str, str] = {}
    errors: dict[str, str] = {}
    for line in content.splitlines():
        if not line.strip():
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("failed to parse batch result line")
            continue
        key = row.get("key")
        if not key:
            logger.warning("batch result line without key, skipping")
            continue
        if row.get("error"):
            errors[key] = _error_message(row["error"])
            continue
        text = _response_text(row.get("response") or {})
        if text is None:
            errors[key] = "Empty response from model"
        else:
            results[key] = strip_code_fence(text)
    return results, errors


class GeminiBatchClient:
    """Bulk inference over the Gemini Batch API using a JSONL input file."""

    def __init__(self, client: genai.Client, default_model: str) -> None:
        self._client = client
        self._default_model = default_model

    def _model_for(self, requests: Sequence[ExtractionRequest]) -> str:
        overrides = {r.model_id for r in requests if r.model_id}
        if len(overrides) == 1 and all(r.model_id for r in requests):
            return overrides.pop()
        if overrides:
            logger.warning(
                "batch mixes model overrides %s, using default model %s", sorted(overrides), self._default_model
            )
        return self._default_model

    def submit(self, requests: Sequence[ExtractionRequest]) -> str:
        """Upload *requests* as one batch and return the remote job name."""
        if not requests:
            raise ValueError("cannot submit an empty batch")
        payload = "\n".join(json.dumps(_batch_line(r)) for r in requests) + "\n"
        model = self._model_for(requests)
        logger.info("submitting Gemini batch of %d requests to %s", len(requests), model)
        try:
            uploaded = self._client.files.upload(
                file=io.BytesIO(payload.encode("utf-8")),
                config=genai_types.UploadFileConfig(display_name="docbatch-input", mime_type="jsonl"),
            )
            batch = self._client.batches.create(
                model=model,
                src=uploaded.name,
                config={"display_name": "docbatch-extraction"},
            )
        except Exception as exc:
            raise BulkInferenceError(f"batch submission failed: {exc}") from exc
        if not batch.name:
            raise BulkInferenceError("batch submission returned no job name")
        logger.info("Gemini batch created: %s", batch.name)
        return batch.name

    def _get(self, remote_job_id: str) -> genai_types.BatchJob:
        try:
            return self._client.batches.get(name=remote_job_id)
        except Exception as exc:
            raise BulkInferenceError(f"failed to fetch batch {remote_job_id}: {exc}") from exc

    def status(self, remote_job_id: str) -> RemoteStatus:
        batch = self._get(remote_job_id)
        raw_state = _state_name(batch)
        # completion_stats is only populated by some API versions.
        stats = getattr(batch, "completion_stats", None)
        return RemoteStatus(
            phase=map_remote_state(raw_state),
            raw_state=raw_state,
            completed_count=(stats.successful_count or 0) if stats is not None else 0,
            failed_count=(stats.failed_count or 0) if stats is not None else 0,
        )

    def fetch_results(self, remote_job_id: str) -> BatchResults:
        batch = self._get(remote_job_id)
        phase = map_remote_state(_state_name(batch))
        results: dict[str, str] = {}
        errors: dict[str, str] = {}
        file_name = batch.dest.file_name if batch.dest is not None else None
        if phase == RemotePhase.COMPLETED and file_name:
            try:
                content = self._client.files.download(file=file_name)
            except Exception as exc:
                raise BulkInferenceError(f"failed to download results for {remote_job_id}: {exc}") from exc
            results, errors = parse_result_lines(content.decode("utf-8"))
        logger.info("batch %s returned %d results and %d errors", remote_job_id, len(results), len(errors))
        return BatchResults(
            results=results,
            errors=errors,
            is_terminal=phase in (RemotePhase.COMPLETED, RemotePhase.FAILED),
        )
