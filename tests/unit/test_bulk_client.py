"""Unit tests for the Gemini batch client."""

import json
from unittest.mock import MagicMock

import pytest

from docbatch.models.extraction_request import ExtractionRequest
from docbatch.services.bulk_client import (
    BulkInferenceError,
    GeminiBatchClient,
    map_remote_state,
    parse_result_lines,
)
from docbatch.services.types import RemotePhase


def _request(request_id: str, model_id: str | None = None) -> ExtractionRequest:
    return ExtractionRequest(
        id=request_id,
        document_bytes=b"x",
        document_name="doc.txt",
        instruction="Extract the total",
        output_schema='{"type": "object"}',
        normalized_text="Total: 10",
        model_id=model_id,
    )


def _response_line(key: str, text: str) -> str:
    return json.dumps(
        {"key": key, "response": {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}}
    )


def _batch(state: str | None, file_name: str | None = None) -> MagicMock:
    batch = MagicMock()
    if state is None:
        batch.state = None
    else:
        batch.state.name = state
    batch.dest.file_name = file_name
    batch.completion_stats = None
    return batch


class TestMapRemoteState:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("JOB_STATE_PENDING", RemotePhase.PROCESSING),
            ("JOB_STATE_RUNNING", RemotePhase.PROCESSING),
            ("BATCH_STATE_RUNNING", RemotePhase.PROCESSING),
            ("JOB_STATE_SUCCEEDED", RemotePhase.COMPLETED),
            ("JOB_STATE_PARTIALLY_SUCCEEDED", RemotePhase.COMPLETED),
            ("BATCH_STATE_SUCCEEDED", RemotePhase.COMPLETED),
            ("JOB_STATE_FAILED", RemotePhase.FAILED),
            ("JOB_STATE_CANCELLED", RemotePhase.FAILED),
            ("JOB_STATE_EXPIRED", RemotePhase.FAILED),
            ("job_state_succeeded", RemotePhase.COMPLETED),
        ],
    )
    def test_known_states(self, raw: str, expected: RemotePhase) -> None:
        assert map_remote_state(raw) == expected

    @pytest.mark.parametrize("raw", ["JOB_STATE_UNSPECIFIED", "SOMETHING_NEW", "", None])
    def test_unknown_states_are_unrecognized(self, raw: str | None) -> None:
        assert map_remote_state(raw) == RemotePhase.UNRECOGNIZED


class TestParseResultLines:
    def test_splits_results_and_errors(self) -> None:
        content = "\n".join(
            [
                _response_line("r1", '{"total": 10}'),
                json.dumps({"key": "r2", "error": {"code": 3, "message": "Invalid argument"}}),
                "",
            ]
        )

        results, errors = parse_result_lines(content)

        assert results == {"r1": '{"total": 10}'}
        assert errors == {"r2": "Invalid argument"}

    def test_strips_markdown_fence(self) -> None:
        results, _ = parse_result_lines(_response_line("r1", '```json\n{"total": 10}\n```'))

        assert results == {"r1": '{"total": 10}'}

    def test_empty_response_is_an_error(self) -> None:
        content = json.dumps({"key": "r1", "response": {"candidates": []}})

        results, errors = parse_result_lines(content)

        assert results == {}
        assert errors == {"r1": "Empty response from model"}

    def test_skips_malformed_and_keyless_lines(self) -> None:
        content = "\n".join(["not json", json.dumps({"response": {}}), _response_line("r1", "{}")])

        results, errors = parse_result_lines(content)

        assert results == {"r1": "{}"}
        assert errors == {}


class TestGeminiBatchClientSubmit:
    def test_uploads_jsonl_and_creates_batch(self) -> None:
        client = MagicMock()
        client.files.upload.return_value.name = "files/input-1"
        client.batches.create.return_value.name = "batches/abc"
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        remote_id = bulk.submit([_request("r1"), _request("r2")])

        assert remote_id == "batches/abc"
        kwargs = client.batches.create.call_args.kwargs
        assert kwargs["model"] == "gemini-2.5-flash"
        assert kwargs["src"] == "files/input-1"
        uploaded = client.files.upload.call_args.kwargs["file"].getvalue().decode("utf-8")
        lines = [json.loads(line) for line in uploaded.splitlines()]
        assert [line["key"] for line in lines] == ["r1", "r2"]
        user_text = lines[0]["request"]["contents"][0]["parts"][0]["text"]
        assert "Extract the total" in user_text
        assert "Total: 10" in user_text

    def test_uses_shared_model_override(self) -> None:
        client = MagicMock()
        client.batches.create.return_value.name = "batches/abc"
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        bulk.submit([_request("r1", "gemini-2.5-pro"), _request("r2", "gemini-2.5-pro")])

        assert client.batches.create.call_args.kwargs["model"] == "gemini-2.5-pro"

    def test_mixed_overrides_fall_back_to_default(self) -> None:
        client = MagicMock()
        client.batches.create.return_value.name = "batches/abc"
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        bulk.submit([_request("r1", "gemini-2.5-pro"), _request("r2")])

        assert client.batches.create.call_args.kwargs["model"] == "gemini-2.5-flash"

    def test_empty_batch_is_rejected(self) -> None:
        bulk = GeminiBatchClient(MagicMock(), "gemini-2.5-flash")

        with pytest.raises(ValueError):
            bulk.submit([])

    def test_sdk_error_is_wrapped(self) -> None:
        client = MagicMock()
        client.batches.create.side_effect = RuntimeError("quota exceeded")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        with pytest.raises(BulkInferenceError, match="quota exceeded"):
            bulk.submit([_request("r1")])

    def test_missing_job_name_is_an_error(self) -> None:
        client = MagicMock()
        client.batches.create.return_value.name = None
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        with pytest.raises(BulkInferenceError):
            bulk.submit([_request("r1")])


class TestGeminiBatchClientStatus:
    def test_reports_phase_and_counts(self) -> None:
        client = MagicMock()
        batch = _batch("JOB_STATE_RUNNING")
        batch.completion_stats = MagicMock(successful_count=2, failed_count=1)
        client.batches.get.return_value = batch
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        status = bulk.status("batches/abc")

        assert status == {
            "phase": RemotePhase.PROCESSING,
            "raw_state": "JOB_STATE_RUNNING",
            "completed_count": 2,
            "failed_count": 1,
        }
        client.batches.get.assert_called_once_with(name="batches/abc")

    def test_missing_stats_report_zero(self) -> None:
        client = MagicMock()
        client.batches.get.return_value = _batch("JOB_STATE_PENDING")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        status = bulk.status("batches/abc")

        assert status["completed_count"] == 0
        assert status["failed_count"] == 0

    def test_missing_state_is_unrecognized(self) -> None:
        client = MagicMock()
        client.batches.get.return_value = _batch(None)
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        assert bulk.status("batches/abc")["phase"] == RemotePhase.UNRECOGNIZED

    def test_lookup_error_is_wrapped(self) -> None:
        client = MagicMock()
        client.batches.get.side_effect = RuntimeError("503")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        with pytest.raises(BulkInferenceError):
            bulk.status("batches/abc")


class TestGeminiBatchClientFetchResults:
    def test_downloads_output_of_completed_job(self) -> None:
        client = MagicMock()
        client.batches.get.return_value = _batch("JOB_STATE_SUCCEEDED", "files/output-1")
        client.files.download.return_value = (_response_line("r1", '{"total": 10}') + "\n").encode("utf-8")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        outcome = bulk.fetch_results("batches/abc")

        assert outcome == {"results": {"r1": '{"total": 10}'}, "errors": {}, "is_terminal": True}
        client.files.download.assert_called_once_with(file="files/output-1")

    def test_running_job_returns_nothing(self) -> None:
        client = MagicMock()
        client.batches.get.return_value = _batch("JOB_STATE_RUNNING")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        outcome = bulk.fetch_results("batches/abc")

        assert outcome == {"results": {}, "errors": {}, "is_terminal": False}
        client.files.download.assert_not_called()

    def test_download_error_is_wrapped(self) -> None:
        client = MagicMock()
        client.batches.get.return_value = _batch("JOB_STATE_SUCCEEDED", "files/output-1")
        client.files.download.side_effect = RuntimeError("not found")
        bulk = GeminiBatchClient(client, "gemini-2.5-flash")

        with pytest.raises(BulkInferenceError):
            bulk.fetch_results("batches/abc")
