"""
Unit tests for cooperative cancellation tokens.
"""

from unittest.mock import MagicMock

import pytest

from app.services.cancellation import CancellationToken, CurationCancelledError, JobCancellationToken


class TestCancellationToken:

    def test_not_cancelled_by_default(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel_raises(self):
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(CurationCancelledError):
            token.raise_if_cancelled()


class TestJobCancellationToken:

    def test_polls_job_store(self):
        store = MagicMock()
        store.is_cancelled.return_value = False
        token = JobCancellationToken(store, "job-1")

        assert not token.cancelled
        store.is_cancelled.assert_called_with("job-1")

        store.is_cancelled.return_value = True
        with pytest.raises(CurationCancelledError):
            token.raise_if_cancelled()

    def test_stays_cancelled_without_polling_again(self):
        store = MagicMock()
        store.is_cancelled.return_value = True
        token = JobCancellationToken(store, "job-1")

        assert token.cancelled
        store.is_cancelled.reset_mock()
        assert token.cancelled
        store.is_cancelled.assert_not_called()

    def test_local_cancel_skips_store(self):
        store = MagicMock()
        token = JobCancellationToken(store, "job-1")
        token.cancel()

        assert token.cancelled
        store.is_cancelled.assert_not_called()
