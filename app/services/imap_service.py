"""
IMAP mailbox access for the direct protocol strategy.

One ImapMailbox is opened per sync call and closed on every exit path.
"""

import logging
import socket
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from app.errors import AuthenticationError, TransientRemoteError

logger = logging.getLogger(__name__)


@dataclass
class RawImapMessage:
    """One fetched message: RFC 822 source plus IMAP metadata."""
    sequence: int
    source: bytes
    uid: Optional[int] = None
    flags: Tuple = field(default_factory=tuple)


class ImapMailbox:
    """
    Scoped IMAP session.

    Usage:
        with ImapMailbox(host, port, user, password) as mailbox:
            count = mailbox.select_mailbox("INBOX")
            messages = mailbox.fetch_recent(count, limit=100)
    """

    def __init__(self, host: str, port: int, user: str, password: str, ssl: bool = True, timeout: float = 10) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.ssl = ssl
        self.timeout = timeout
        self.client: Optional[IMAPClient] = None

    def __enter__(self) -> "ImapMailbox":
        try:
            self.client = IMAPClient(self.host, port=self.port, ssl=self.ssl, timeout=self.timeout)
        except (socket.timeout, OSError) as e:
            raise TransientRemoteError(f"Could not connect to {self.host}:{self.port}: {e}") from e

        try:
            self.client.login(self.user, self.password)
        except LoginError as e:
            self._logout()
            raise AuthenticationError(f"IMAP login rejected for {self.user}") from e
        except (socket.timeout, OSError, IMAPClientError) as e:
            self._logout()
            raise TransientRemoteError(f"IMAP login failed for {self.user}: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._logout()

    def _logout(self) -> None:
        # Cleanup must never mask the original error
        if self.client is None:
            return
        try:
            self.client.logout()
        except Exception:
            logger.warning("Could not properly logout IMAP connection for %s", self.user, exc_info=True)
        finally:
            self.client = None

    def _require_client(self) -> IMAPClient:
        if self.client is None:
            raise TransientRemoteError("mailbox not open")
        return self.client

    def select_mailbox(self, mailbox: str = "INBOX") -> int:
        """Select a mailbox read-only and return its message count."""
        client = self._require_client()
        try:
            info = client.select_folder(mailbox, readonly=True)
        except (socket.timeout, OSError, IMAPClientError) as e:
            raise TransientRemoteError(f"Failed to select {mailbox}: {e}") from e
        return int(info.get(b"EXISTS", 0))

    def fetch_recent(self, exists: int, limit: int = 100) -> List[RawImapMessage]:
        """
        Fetch the last `limit` messages by sequence number.

        Sequence ranges are used instead of SEARCH SINCE, whose date
        filtering differs between servers.
        """
        client = self._require_client()
        if exists <= 0:
            return []

        start = max(1, exists - limit + 1)
        logger.info("Fetching messages %d-%d from %s (total: %d)", start, exists, self.user, exists)

        client.use_uid = False
        try:
            response = client.fetch(f"{start}:{exists}", ["RFC822", "FLAGS", "UID"])
        except (socket.timeout, OSError, IMAPClientError) as e:
            raise TransientRemoteError(f"Fetch failed for {self.user}: {e}") from e
        finally:
            client.use_uid = True

        messages = []
        for sequence in sorted(response):
            data = response[sequence]
            messages.append(RawImapMessage(
                sequence=sequence,
                source=data.get(b"RFC822") or b"",
                uid=data.get(b"UID"),
                flags=tuple(data.get(b"FLAGS") or ())
            ))
        return messages
