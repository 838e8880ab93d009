"""Best-effort completion callbacks to caller-supplied URLs."""

import logging

import httpx

from docbatch.db import utcnow

logger = logging.getLogger(__name__)


class CallbackNotifier:
    """POSTs a completion notice; delivery failures are logged, never raised."""

    def __init__(self, timeout_seconds: float = 30, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def notify(self, callback_url: str, request_id: str, result: str) -> bool:
        """Send the callback. Returns True if the receiver answered 2xx."""
        logger.info("sending callback to %s for request %s", callback_url, request_id)
        payload = {
            "requestId": request_id,
            "status": "Completed",
            "result": result,
            "completedAt": utcnow().isoformat() + "Z",
        }
        try:
            response = self._client.post(callback_url, json=payload)
        except Exception as exc:
            logger.error("callback to %s failed: %s", callback_url, exc)
            return False
        if response.is_success:
            logger.info("callback to %s delivered", callback_url)
            return True
        logger.warning("callback to %s returned status %d", callback_url, response.status_code)
        return False
