"""Tests for commit() error mapping and run_with_store_retry()."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from parley.config import settings
from parley.core.errors import AuthorizationError, DenyReason, TransientStoreError
from parley.services.retry import commit, run_with_store_retry


@pytest.fixture(autouse=True)
def no_wait(monkeypatch):
    monkeypatch.setattr("tenacity.nap.time.sleep", lambda _: None)


class TestCommit:
    @pytest.mark.parametrize(
        "error",
        [StaleDataError("version mismatch"), OperationalError("UPDATE", {}, Exception("db gone"))],
    )
    def test_store_errors_become_transient(self, error):
        session = MagicMock()
        session.commit.side_effect = error
        with pytest.raises(TransientStoreError):
            commit(session)
        session.rollback.assert_called_once()

    def test_success(self):
        session = MagicMock()
        commit(session)
        session.commit.assert_called_once()


class TestRunWithStoreRetry:
    def test_retries_until_success(self):
        session = MagicMock()
        calls = []

        def flaky(value):
            calls.append(value)
            if len(calls) < 2:
                raise TransientStoreError("busy")
            return value * 2

        assert run_with_store_retry(session, flaky, 21) == 42
        assert calls == [21, 21]
        session.rollback.assert_called_once()
        session.expire_all.assert_called_once()

    def test_gives_up_after_configured_attempts(self):
        session = MagicMock()
        calls = []

        def always_busy():
            calls.append(1)
            raise TransientStoreError("busy")

        with pytest.raises(TransientStoreError):
            run_with_store_retry(session, always_busy)
        assert len(calls) == settings.STORE_RETRY_ATTEMPTS

    def test_other_errors_not_retried(self):
        session = MagicMock()
        calls = []

        def denied():
            calls.append(1)
            raise AuthorizationError(DenyReason.RANK_TOO_LOW)

        with pytest.raises(AuthorizationError):
            run_with_store_retry(session, denied)
        assert calls == [1]
        session.rollback.assert_not_called()

    def test_kwargs_forwarded(self):
        session = MagicMock()
        assert run_with_store_retry(session, lambda a, b=0: a + b, 1, b=2) == 3
