"""
Remote-source fetch strategies.

Both strategies return a PullResult: the raw messages of one batch plus the
cursor to store once the batch is committed. The orchestrator never needs to
know which kind of source it is talking to.

- ProtocolPollingStrategy: IMAP, last N messages of one folder, no cursor
- ProviderDeltaStrategy: provider API, initial handshake then delta pages
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from app.config import Settings
from app.errors import AccountNotReadyError, InitializationTimeoutError, TransientRemoteError
from app.services.imap_service import ImapMailbox, RawImapMessage
from app.services.normalizer import EmailDraft, normalize_mime, normalize_provider_record
from app.services.provider_service import ProviderClient

logger = logging.getLogger(__name__)


@dataclass
class PullResult:
    messages: List[Any] = field(default_factory=list)
    cursor: Optional[str] = None


def backoff_delay(settings: Settings, attempt: int) -> float:
    """Delay before retry number `attempt` (1-based)."""
    return settings.INIT_BASE_DELAY * settings.INIT_BACKOFF_MULTIPLIER ** (attempt - 1)


class FetchStrategy:
    """Base class for remote sources."""

    # Whether an already-stored email is refreshed from the remote copy
    refresh_existing = False

    def pull(self, cursor: Optional[str]) -> PullResult:
        raise NotImplementedError

    def normalize(self, raw: Any) -> EmailDraft:
        raise NotImplementedError

    def _retry_transient(self, operation: Callable[[], Any], description: str) -> Any:
        """
        Run `operation`, retrying TransientRemoteError with exponential backoff.

        Without settings there is a single attempt. Authentication and
        other non-transient errors propagate immediately.
        """
        max_retries = self.settings.PAGE_MAX_RETRIES if self.settings else 1
        attempt = 1
        while True:
            try:
                return operation()
            except TransientRemoteError as e:
                if attempt >= max_retries:
                    raise
                delay = backoff_delay(self.settings, attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description, attempt, max_retries, delay, e
                )
                self.sleep(delay)
                attempt += 1


# ============ DIRECT PROTOCOL ============

class ProtocolPollingStrategy(FetchStrategy):
    """Poll the most recent messages of one IMAP folder."""

    refresh_existing = False

    def __init__(
        self,
        mailbox_factory: Callable[[], ImapMailbox],
        mailbox: str = "INBOX",
        fetch_limit: int = 100,
        settings: Settings = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.mailbox_factory = mailbox_factory
        self.mailbox = mailbox
        self.fetch_limit = fetch_limit
        self.settings = settings
        self.sleep = sleep

    def _fetch_once(self) -> List[RawImapMessage]:
        # Connect, select and fetch are retried together on a fresh session
        with self.mailbox_factory() as mailbox:
            exists = mailbox.select_mailbox(self.mailbox)
            if exists == 0:
                logger.info("No messages in %s", self.mailbox)
                return []
            return mailbox.fetch_recent(exists, limit=self.fetch_limit)

    def pull(self, cursor: Optional[str]) -> PullResult:
        messages = self._retry_transient(self._fetch_once, f"Fetching {self.mailbox}")
        logger.info("Fetched %d messages from %s", len(messages), self.mailbox)
        return PullResult(messages=messages, cursor=cursor)

    def normalize(self, raw: RawImapMessage) -> EmailDraft:
        return normalize_mime(raw.source, flags=raw.flags, folder=self.mailbox)


# ============ PROVIDER DELTA API ============

class ProviderDeltaStrategy(FetchStrategy):
    """
    Cursor-based incremental sync against the provider API.

    Without a stored cursor the initial handshake is performed first: the
    provider may answer "not initialized" for a freshly linked account, which
    is retried with exponential backoff, and then `ready: false`, which is
    re-polled with a fixed delay. Other transient failures of the handshake
    are retried like page pulls.
    """

    refresh_existing = True

    def __init__(self, client: ProviderClient, settings: Settings, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.settings = settings
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return backoff_delay(self.settings, attempt)

    def _start_sync_with_retry(self) -> Dict[str, Any]:
        max_retries = self.settings.INIT_MAX_RETRIES
        max_transient = self.settings.PAGE_MAX_RETRIES
        attempt = 1
        transient_attempt = 1
        while True:
            try:
                return self.client.start_sync(self.settings.PROVIDER_DAYS_WITHIN, body_type="html")
            except AccountNotReadyError as e:
                if attempt >= max_retries:
                    raise InitializationTimeoutError(max_retries) from e
                delay = self.backoff_delay(attempt)
                logger.info(
                    "Account not ready (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, max_retries, delay, e
                )
                attempt += 1
            except TransientRemoteError as e:
                if transient_attempt >= max_transient:
                    raise
                delay = self.backoff_delay(transient_attempt)
                logger.warning(
                    "Start sync failed (attempt %d/%d), retrying in %.1fs: %s",
                    transient_attempt, max_transient, delay, e
                )
                transient_attempt += 1
            self.sleep(delay)

    def initialize(self) -> str:
        """Run the initial handshake and return the first delta token."""
        response = self._start_sync_with_retry()

        polls = 0
        while not response.get("ready"):
            polls += 1
            if polls > self.settings.READY_MAX_POLLS:
                raise InitializationTimeoutError(polls)
            logger.info("Initial sync not ready yet, polling again (%d)", polls)
            self.sleep(self.settings.READY_POLL_DELAY)
            response = self._start_sync_with_retry()

        token = response.get("syncUpdatedToken")
        if not token:
            raise TransientRemoteError("Initial sync answered ready without a token")
        return token

    def _pull_page(self, delta_token: Optional[str] = None, page_token: Optional[str] = None) -> Dict[str, Any]:
        return self._retry_transient(
            lambda: self.client.pull_changes(delta_token=delta_token, page_token=page_token),
            "Page pull"
        )

    def pull(self, cursor: Optional[str]) -> PullResult:
        delta_token = cursor or self.initialize()

        records = []
        response = self._pull_page(delta_token=delta_token)
        next_delta = response.get("nextDeltaToken") or delta_token
        records.extend(response.get("records") or [])

        while response.get("nextPageToken"):
            response = self._pull_page(page_token=response["nextPageToken"])
            records.extend(response.get("records") or [])
            if response.get("nextDeltaToken"):
                next_delta = response["nextDeltaToken"]

        logger.info("Pulled %d changed records", len(records))
        return PullResult(messages=records, cursor=next_delta)

    def normalize(self, raw: Dict[str, Any]) -> EmailDraft:
        return normalize_provider_record(raw)
