"""Gemini extraction for a single document, plus the prompt shared with batch submission."""

import json
import logging

from google import genai
from google.genai import types as genai_types

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a document processing assistant. Your task is to extract information "
    "from the provided document based on the user's instruction and return the result "
    "in the specified JSON schema format.\n\n"
    "IMPORTANT: Your response must be valid JSON that conforms to the following schema:\n"
    "{schema}\n\n"
    "Only return the JSON object, no additional text or explanation."
)

TEMPERATURE = 0.1


class ExtractionError(Exception):
    """Raised when the model call fails or does not return valid JSON."""


def build_prompt(instruction: str, output_schema: str, document_text: str) -> tuple[str, str]:
    """Return (system_instruction, user_prompt) for one extraction."""
    system = _SYSTEM_PROMPT.format(schema=output_schema)
    user = f"Instruction: {instruction}\n\nDocument Content:\n{document_text}"
    return system, user


def strip_code_fence(raw_text: str) -> str:
    """Remove an optional markdown code fence around a JSON answer."""
    raw = raw_text.strip()
    if raw.startswith("```"):
        raw = raw.split("```", 2)[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.rsplit("```", 1)[0].strip()
    return raw


def make_client(api_key: str, timeout_seconds: int | None = None) -> genai.Client:
    if not api_key:
        raise ValueError("DOCBATCH_GEMINI_API_KEY environment variable is not set")
    http_options = None
    if timeout_seconds:
        # HttpOptions.timeout is in milliseconds.
        http_options = genai_types.HttpOptions(timeout=timeout_seconds * 1000)
    return genai.Client(api_key=api_key, http_options=http_options)


class GeminiExtractor:
    """Synchronous structured extraction for the real-time path."""

    def __init__(self, client: genai.Client, default_model: str) -> None:
        self._client = client
        self._default_model = default_model

    def extract(self, document_text: str, instruction: str, output_schema: str, model_id: str | None = None) -> str:
        """Return the model's JSON answer as a string.

        Raises ExtractionError if the call fails or the answer is not JSON.
        """
        model = model_id or self._default_model
        system, user = build_prompt(instruction, output_schema, document_text)
        logger.info("sending %d chars to Gemini model %s", len(document_text), model)
        try:
            response = self._client.models.generate_content(
                model=model,
                contents=user,
                config=genai_types.GenerateContentConfig(
                    system_instruction=system,
                    temperature=TEMPERATURE,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:
            raise ExtractionError(f"Gemini request failed: {exc}") from exc

        raw = strip_code_fence(response.text or "")
        try:
            json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ExtractionError("model response was not valid JSON") from exc
        logger.info("Gemini response received (%d chars)", len(raw))
        return raw
