"""
Sync orchestrator.

Pipeline per account:
1. Load the account and decrypt its credentials
2. Pick a fetch strategy (IMAP polling or provider delta sync)
3. Pull one batch of raw messages
4. For each message: normalize → resolve thread → reconcile → commit
5. Store the new cursor only when every message of the batch committed

Failures never escape sync_account(); they are reported in the SyncResult
and appended to the sync log.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import SessionLocal
from app.errors import (
    AccountNotFoundError,
    AddressResolutionError,
    AuthenticationError,
    MailSyncError,
    MalformedMessageError,
)
from app.models.account import Account, AccountKind
from app.services import db_service
from app.services.crypto_service import CredentialCipher
from app.services.fetch_strategies import FetchStrategy, ProtocolPollingStrategy, ProviderDeltaStrategy
from app.services.imap_service import ImapMailbox
from app.services.normalizer import utcnow
from app.services.provider_service import ProviderClient
from app.services.reconciler import is_already_synced, reconcile_email
from app.services.threading_resolver import resolve_thread_id

logger = logging.getLogger(__name__)

SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"
SKIPPED = "skipped"

# Per-message outcomes
_STORED = "stored"
_DUPLICATE = "duplicate"
_DROPPED = "dropped"  # can never succeed, does not hold the cursor
_HELD = "held"        # may succeed on retry, holds the cursor


@dataclass
class SyncResult:
    account_id: str
    status: str
    messages_synced: int = 0
    messages_skipped: int = 0
    error: Optional[str] = None
    cursor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncService:
    """
    Runs account syncs.

    Thread-safe: one non-blocking lock per account id, so a sync that
    overlaps a running one for the same account is skipped.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Settings = None,
        cipher: CredentialCipher = None,
        imap_factory: Callable[..., ImapMailbox] = ImapMailbox,
        provider_factory: Callable[..., ProviderClient] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._cipher = cipher
        self.imap_factory = imap_factory
        self.provider_factory = provider_factory or self._default_provider_client
        self.sleep = sleep
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def cipher(self) -> CredentialCipher:
        if self._cipher is None:
            self._cipher = CredentialCipher(self.settings.ENCRYPTION_KEY)
        return self._cipher

    def _default_provider_client(self, access_token: str) -> ProviderClient:
        return ProviderClient(
            access_token,
            base=self.settings.PROVIDER_API_BASE,
            timeout=self.settings.PROVIDER_TIMEOUT
        )

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            if account_id not in self._locks:
                self._locks[account_id] = threading.Lock()
            return self._locks[account_id]

    # ============ STRATEGY SELECTION ============

    def build_strategy(self, account: Account) -> FetchStrategy:
        """Decrypt the account's credentials and build its fetch strategy."""
        if account.kind == AccountKind.PROVIDER:
            token = self.cipher.decrypt(account.access_token_encrypted)
            return ProviderDeltaStrategy(self.provider_factory(token), self.settings, sleep=self.sleep)

        password = self.cipher.decrypt(account.password_encrypted)

        def open_mailbox() -> ImapMailbox:
            return self.imap_factory(
                account.imap_host,
                account.imap_port or 993,
                account.imap_username or account.email_address,
                password,
                timeout=self.settings.IMAP_TIMEOUT
            )

        return ProtocolPollingStrategy(
            open_mailbox,
            mailbox=self.settings.IMAP_MAILBOX,
            fetch_limit=self.settings.IMAP_FETCH_LIMIT,
            settings=self.settings,
            sleep=self.sleep
        )

    # ============ PUBLIC ENTRY POINTS ============

    def sync_account(self, account_id: str) -> SyncResult:
        """Sync one account. Never raises."""
        lock = self._lock_for(account_id)
        if not lock.acquire(blocking=False):
            logger.info("Sync already in progress for account %s, skipping", account_id)
            return SyncResult(account_id=account_id, status=SKIPPED)

        try:
            return self._sync_locked(account_id)
        finally:
            lock.release()

    def sync_all(self) -> List[SyncResult]:
        """Sync every account with credentials; one failure never stops the others."""
        db = self.session_factory()
        try:
            account_ids = [account.id for account in db_service.list_syncable_accounts(db)]
        finally:
            db.close()

        if not account_ids:
            logger.info("No accounts to sync")
            return []

        workers = max(1, min(self.settings.SYNC_MAX_WORKERS, len(account_ids)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self.sync_account, account_ids))

        logger.info(
            "Synced %d accounts: %s",
            len(results),
            ", ".join(f"{r.account_id}={r.status}" for r in results)
        )
        return results

    # ============ ONE ACCOUNT ============

    def _sync_locked(self, account_id: str) -> SyncResult:
        started_at = utcnow()
        db = self.session_factory()
        account = None
        try:
            account = db_service.find_account_by_id(db, account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} not found")

            logger.info("Starting sync for %s (%s)", account.email_address, account.provider)
            result = self._run(db, account)

        except AccountNotFoundError as e:
            db.close()
            logger.error(str(e))
            return SyncResult(account_id=account_id, status=FAILED, error=str(e))

        except AuthenticationError as e:
            db.rollback()
            logger.error("Authentication failed for account %s: %s", account_id, e)
            try:
                db_service.flag_account_for_attention(db, account)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not flag account %s for attention", account_id)
            result = SyncResult(account_id=account_id, status=FAILED, error=str(e))

        except MailSyncError as e:
            db.rollback()
            logger.error("Sync failed for account %s: %s: %s", account_id, type(e).__name__, e)
            result = SyncResult(account_id=account_id, status=FAILED, error=str(e))

        except SQLAlchemyError as e:
            db.rollback()
            logger.exception("Database error while syncing account %s", account_id)
            result = SyncResult(account_id=account_id, status=FAILED, error=f"Database error: {e}")

        except Exception as e:
            db.rollback()
            logger.exception("Unexpected error while syncing account %s", account_id)
            result = SyncResult(account_id=account_id, status=FAILED, error=str(e))

        try:
            db_service.record_sync_log(
                db,
                account_id=account_id,
                status=result.status,
                messages_synced=result.messages_synced,
                started_at=started_at,
                error_message=result.error
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not write sync log for account %s", account_id)
        finally:
            db.close()

        return result

    def _run(self, db: Session, account: Account) -> SyncResult:
        strategy = self.build_strategy(account)
        batch = strategy.pull(account.next_delta_token)

        synced = 0
        skipped = 0
        held = 0
        for raw in batch.messages:
            outcome = self._process_message(db, account.id, strategy, raw)
            if outcome == _STORED:
                synced += 1
            elif outcome == _HELD:
                held += 1
            elif outcome == _DROPPED:
                skipped += 1

        if held:
            logger.warning(
                "Account %s: %d messages failed to store, keeping the previous cursor",
                account.id, held
            )
            return SyncResult(
                account_id=account.id,
                status=PARTIAL,
                messages_synced=synced,
                messages_skipped=skipped + held,
                error=f"{held} messages could not be stored",
                cursor=account.next_delta_token
            )

        db_service.update_cursor_and_timestamp(db, account, batch.cursor)
        logger.info("Account %s: synced %d messages, skipped %d", account.id, synced, skipped)
        return SyncResult(
            account_id=account.id,
            status=SUCCESS,
            messages_synced=synced,
            messages_skipped=skipped,
            cursor=batch.cursor
        )

    # ============ ONE MESSAGE ============

    def _process_message(self, db: Session, account_id: str, strategy: FetchStrategy, raw: Any) -> str:
        try:
            draft = strategy.normalize(raw)
        except MalformedMessageError as e:
            logger.warning("Skipping malformed message: %s", e)
            return _DROPPED

        try:
            if not strategy.refresh_existing and is_already_synced(db, account_id, draft):
                logger.debug("Message %s already synced", draft.message_id)
                return _DUPLICATE

            thread_id = resolve_thread_id(db, account_id, draft)
            email = reconcile_email(db, account_id, draft, thread_id, refresh_existing=strategy.refresh_existing)
            db.commit()

        except AddressResolutionError as e:
            db.rollback()
            logger.warning("Skipping message %s: %s", draft.message_id, e)
            return _HELD

        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Database error storing message %s: %s", draft.message_id, e)
            return _HELD

        except Exception:
            db.rollback()
            logger.exception("Unknown error storing message %s", draft.message_id)
            return _HELD

        if email is None:
            return _DUPLICATE
        logger.info("Stored message %s: %s", draft.message_id, draft.subject[:50])
        return _STORED


@lru_cache
def get_sync_service() -> SyncService:
    """Process-wide sync service used by the scheduler and HTTP triggers."""
    return SyncService()
