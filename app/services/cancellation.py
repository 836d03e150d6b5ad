"""
Cooperative cancellation for curation passes.

The pipeline never interrupts an in-flight provider call. It checks its token
once per candidate, before starting that candidate's work.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class CurationCancelledError(Exception):
    """Control-flow signal: the pass was stopped by request, not by a failure."""


class CancellationToken:
    """In-process cancellation flag, safe to set from another thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise CurationCancelledError("Curation cancelled")


class JobCancellationToken(CancellationToken):
    """
    Token that also reports cancelled once the persisted job is CANCELLED.

    Lets a cancel request served by another process or request thread reach
    the running pass through the job row.
    """

    def __init__(self, job_store, job_id):
        super().__init__()
        self.job_store = job_store
        self.job_id = job_id

    @property
    def cancelled(self) -> bool:
        if super().cancelled:
            return True
        if self.job_store.is_cancelled(self.job_id):
            logger.info(f"Job {self.job_id} was cancelled; stopping at next item")
            self._event.set()
            return True
        return False
