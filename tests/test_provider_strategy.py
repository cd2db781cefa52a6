"""Tests for the provider delta strategy: handshake, backoff and pagination."""

from dataclasses import replace

import pytest

from app.errors import AccountNotReadyError, AuthenticationError, InitializationTimeoutError, TransientRemoteError
from app.services.fetch_strategies import ProtocolPollingStrategy, ProviderDeltaStrategy


@pytest.fixture
def strategy_for(settings, sleeps):
    def _make(client):
        return ProviderDeltaStrategy(client, settings, sleep=sleeps.append)
    return _make


class TestInitialization:
    def test_backoff_delays(self, settings):
        strategy = ProviderDeltaStrategy(None, settings)
        assert [strategy.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 3.0, 4.5]

    def test_not_initialized_then_ready(self, fake_provider, strategy_for, sleeps):
        fake_provider.start_responses = [
            AccountNotReadyError("Account is not initialized yet"),
            AccountNotReadyError("Account is not initialized yet"),
            {"ready": False},
            {"ready": True, "syncUpdatedToken": "T0"},
        ]
        token = strategy_for(fake_provider).initialize()

        assert token == "T0"
        assert sleeps == [2.0, 3.0, 1.0]
        assert fake_provider.calls[0] == ("start_sync", 2, "html")

    def test_gives_up_after_max_retries(self, fake_provider, settings, sleeps):
        fake_provider.start_responses = [AccountNotReadyError("unavailable")] * 3
        strategy = ProviderDeltaStrategy(
            fake_provider,
            replace(settings, INIT_MAX_RETRIES=3),
            sleep=sleeps.append,
        )

        with pytest.raises(InitializationTimeoutError) as exc_info:
            strategy.initialize()
        assert exc_info.value.attempts == 3
        assert "after 3 attempts" in str(exc_info.value)
        assert sleeps == [2.0, 3.0]

    def test_ready_poll_is_bounded(self, fake_provider, strategy_for, settings):
        fake_provider.start_responses = [{"ready": False}] * (settings.READY_MAX_POLLS + 1)
        with pytest.raises(InitializationTimeoutError):
            strategy_for(fake_provider).initialize()

    def test_auth_error_not_retried(self, fake_provider, strategy_for, sleeps):
        fake_provider.start_responses = [AuthenticationError("401")]
        with pytest.raises(AuthenticationError):
            strategy_for(fake_provider).initialize()
        assert sleeps == []

    def test_transient_handshake_error_retried(self, fake_provider, strategy_for, sleeps):
        fake_provider.start_responses = [
            TransientRemoteError("503 bad gateway"),
            {"ready": True, "syncUpdatedToken": "T0"},
        ]
        assert strategy_for(fake_provider).initialize() == "T0"
        assert sleeps == [2.0]

    def test_persistent_handshake_error_raises(self, fake_provider, strategy_for, settings):
        fake_provider.start_responses = [TransientRemoteError("timeout")] * settings.PAGE_MAX_RETRIES
        with pytest.raises(TransientRemoteError) as exc_info:
            strategy_for(fake_provider).initialize()
        assert not isinstance(exc_info.value, InitializationTimeoutError)
        assert len(fake_provider.calls) == settings.PAGE_MAX_RETRIES


class TestPagination:
    def test_pages_follow_tokens(self, fake_provider, strategy_for, record):
        fake_provider.pages = {
            "T0": {"records": [record(id="a")], "nextPageToken": "B"},
            "B": {"records": [record(id="b")], "nextPageToken": "C"},
            "C": {"records": [record(id="c")], "nextDeltaToken": "T1"},
        }
        result = strategy_for(fake_provider).pull("T0")

        assert [r["id"] for r in result.messages] == ["a", "b", "c"]
        assert result.cursor == "T1"
        assert fake_provider.calls == [
            ("pull", "T0", None),
            ("pull", None, "B"),
            ("pull", None, "C"),
        ]

    def test_missing_cursor_runs_handshake(self, fake_provider, strategy_for):
        fake_provider.start_responses = [{"ready": True, "syncUpdatedToken": "S1"}]
        fake_provider.pages = {"S1": {"records": [], "nextDeltaToken": "S2"}}

        result = strategy_for(fake_provider).pull(None)
        assert result.messages == []
        assert result.cursor == "S2"

    def test_cursor_kept_when_no_new_delta(self, fake_provider, strategy_for):
        fake_provider.pages = {"T0": {"records": []}}
        assert strategy_for(fake_provider).pull("T0").cursor == "T0"

    def test_transient_page_error_retried(self, fake_provider, strategy_for, sleeps, record):
        fake_provider.pages = {
            "T0": [TransientRemoteError("502"), {"records": [record()], "nextDeltaToken": "T1"}],
        }
        result = strategy_for(fake_provider).pull("T0")
        assert result.cursor == "T1"
        assert sleeps == [2.0]

    def test_persistent_page_error_raises(self, fake_provider, strategy_for, settings, record):
        fake_provider.pages = {
            "T0": {"records": [record()], "nextPageToken": "B"},
            "B": TransientRemoteError("timeout"),
        }
        with pytest.raises(TransientRemoteError):
            strategy_for(fake_provider).pull("T0")
        page_b_calls = [call for call in fake_provider.calls if call == ("pull", None, "B")]
        assert len(page_b_calls) == settings.PAGE_MAX_RETRIES


class TestProtocolPolling:
    def test_empty_mailbox(self, fake_mailbox):
        strategy = ProtocolPollingStrategy(lambda: fake_mailbox)
        result = strategy.pull(None)
        assert result.messages == []
        assert fake_mailbox.closed == 1

    def test_fetch_limit(self, fake_mailbox, imap_message):
        fake_mailbox.messages = [imap_message(sequence=n, message_id=f"<{n}@x>") for n in range(1, 6)]
        strategy = ProtocolPollingStrategy(lambda: fake_mailbox, fetch_limit=3)

        result = strategy.pull(None)
        assert [m.sequence for m in result.messages] == [3, 4, 5]
        assert strategy.normalize(result.messages[0]).message_id == "<3@x>"
        assert fake_mailbox.closed == 1

    def test_transient_open_error_retried(self, fake_mailbox, imap_message, settings, sleeps):
        fake_mailbox.messages = [imap_message(sequence=1)]
        fake_mailbox.enter_errors = [TransientRemoteError("connection refused")]
        strategy = ProtocolPollingStrategy(lambda: fake_mailbox, settings=settings, sleep=sleeps.append)

        result = strategy.pull(None)
        assert len(result.messages) == 1
        assert fake_mailbox.opened == 2
        assert sleeps == [2.0]

    def test_auth_error_not_retried(self, fake_mailbox, settings, sleeps):
        fake_mailbox.enter_error = AuthenticationError("IMAP login rejected")
        strategy = ProtocolPollingStrategy(lambda: fake_mailbox, settings=settings, sleep=sleeps.append)

        with pytest.raises(AuthenticationError):
            strategy.pull(None)
        assert fake_mailbox.opened == 1
        assert sleeps == []
