"""Batch worker wiring, plus a standalone entry point without the HTTP surface.

Usage:
    python -m docbatch.worker [--once]

Without --once the submitter and poller loops run until interrupted. With
--once a single conversion/submission pass and a single poll pass run in the
calling thread, which is handy from cron.
"""

import argparse
import logging
import threading
import time

from sqlalchemy.orm import Session, sessionmaker

from docbatch.config import Settings, get_settings
from docbatch.db import create_tables, get_session_factory
from docbatch.services.batch_poller import BatchResultPoller
from docbatch.services.batch_submitter import BatchSubmitter
from docbatch.services.bulk_client import GeminiBatchClient
from docbatch.services.callback import CallbackNotifier
from docbatch.services.converter import DocumentConverter
from docbatch.services.gemini import make_client
from docbatch.services.scheduler import PeriodicWorker
from docbatch.services.stores import BatchJobStore, RequestStore

logger = logging.getLogger(__name__)


class BatchWorkers:
    """The submitter and poller loops, sharing one stop signal."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        bulk_client: GeminiBatchClient | None = None,
        notifier: CallbackNotifier | None = None,
    ) -> None:
        self._stop_event = threading.Event()
        requests = RequestStore(session_factory)
        jobs = BatchJobStore(session_factory)
        if bulk_client is None:
            client = make_client(settings.gemini_api_key, settings.bulk_timeout_seconds)
            bulk_client = GeminiBatchClient(client, settings.gemini_model)
        self.notifier = notifier or CallbackNotifier(settings.callback_timeout_seconds)

        self.submitter = BatchSubmitter(
            requests, jobs, DocumentConverter(), bulk_client, settings, stop_event=self._stop_event
        )
        self.poller = BatchResultPoller(
            requests, jobs, bulk_client, self.notifier, settings, stop_event=self._stop_event
        )
        self._loops = [
            PeriodicWorker("batch-submitter", settings.submit_interval_seconds, self.submitter.tick, self._stop_event),
            PeriodicWorker("batch-poller", settings.poll_interval_seconds, self.poller.tick, self._stop_event),
        ]

    def start(self) -> None:
        for loop in self._loops:
            loop.start()

    def stop(self, timeout: float | None = None) -> None:
        for loop in self._loops:
            loop.stop(timeout)
        self.notifier.close()

    def is_running(self) -> bool:
        return any(loop.is_running() for loop in self._loops)

    def run_once(self) -> bool:
        """One submitter pass then one poller pass. Returns False if either raised."""
        return all([loop.run_once() for loop in self._loops])


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the docbatch submitter and poller loops.")
    parser.add_argument("--once", action="store_true", help="Run a single submit and poll pass, then exit.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )
    settings = get_settings()
    create_tables()
    workers = BatchWorkers(settings, get_session_factory())

    if args.once:
        ok = workers.run_once()
        workers.notifier.close()
        return 0 if ok else 1

    workers.start()
    try:
        while workers.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("interrupted, stopping workers")
    finally:
        workers.stop(timeout=30)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
