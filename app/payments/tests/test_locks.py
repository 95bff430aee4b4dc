"""
Tests for the Redis lock used by the escrow workers.
"""

from unittest.mock import MagicMock, patch

import pytest

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    with patch("payments.locks.get_redis_connection", return_value=client):
        yield client


class TestDistributedLock:
    def test_acquire_sets_key_with_ttl(self, mock_redis):
        lock = DistributedLock("escrow:auto_release:abc", ttl=120, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:escrow:auto_release:abc"
        assert kwargs == {"nx": True, "ex": 120}

    def test_tokens_are_unique(self, mock_redis):
        first = DistributedLock("payout:retry:1", blocking=False)
        second = DistributedLock("payout:retry:2", blocking=False)

        first.acquire()
        second.acquire()

        assert first._token != second._token

    def test_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("payout:retry:1", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.details == {"key": "lock:payout:retry:1"}
        assert not lock.is_held

    def test_blocking_gives_up_after_timeout(self, mock_redis):
        mock_redis.set.return_value = False
        lock = DistributedLock("escrow:auto_release:abc", timeout=0.1)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["timeout"] == 0.1
        assert mock_redis.set.call_count >= 1

    def test_blocking_waits_for_release(self, mock_redis):
        mock_redis.set.side_effect = [False, False, True]

        with patch("payments.locks.time.sleep") as sleep:
            assert DistributedLock("escrow:auto_release:abc", timeout=5.0).acquire() is True

        assert sleep.call_count == 2

    def test_release_checks_ownership(self, mock_redis):
        lock = DistributedLock("payout:retry:1", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True

        mock_redis.eval.assert_called_once_with(
            DistributedLock.RELEASE_SCRIPT, 1, "lock:payout:retry:1", token
        )
        assert not lock.is_held
        # second release is a no-op
        assert lock.release() is False
        assert mock_redis.eval.call_count == 1

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(RuntimeError):
            with DistributedLock("escrow:auto_release:abc", blocking=False):
                raise RuntimeError("boom")

        mock_redis.eval.assert_called_once()
