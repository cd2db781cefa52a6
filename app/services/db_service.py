"""
Database service layer for the mail sync backend.

This module provides the store operations the sync engine consumes:
- Account lookups, linking and cursor commits
- Email lookups by message identifier and by thread
- Sync log records
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import CursorCommitError
from app.models.account import Account, AccountKind
from app.models.email import Email
from app.models.sync_log import SyncLog
from app.services.normalizer import utcnow


def new_id() -> str:
    """Generate an identifier for rows without a remote id."""
    return str(uuid.uuid4())


# ============ ACCOUNT OPERATIONS ============

def find_account_by_id(db: Session, account_id: str) -> Optional[Account]:
    """Get a single account by ID."""
    return db.get(Account, account_id)


def list_syncable_accounts(db: Session) -> List[Account]:
    """Accounts that carry credentials for either strategy."""
    return db.query(Account).filter(
        or_(
            Account.password_encrypted.isnot(None),
            Account.access_token_encrypted.isnot(None)
        )
    ).order_by(Account.created_at).all()


def link_account(
    db: Session,
    account_id: str,
    user_id: str,
    email_address: str,
    provider: AccountKind,
    imap_host: str = None,
    imap_port: int = 993,
    imap_username: str = None,
    password_encrypted: str = None,
    access_token_encrypted: str = None,
    name: str = None
) -> Account:
    """
    Create an account record.

    If an account with the same id exists, return existing.

    Returns:
        Account: Existing or newly created account record
    """
    existing = db.get(Account, account_id)
    if existing:
        return existing

    account = Account(
        id=account_id,
        user_id=user_id,
        email_address=email_address,
        name=name,
        provider=AccountKind(provider).value,
        imap_host=imap_host,
        imap_port=imap_port,
        imap_username=imap_username or email_address,
        password_encrypted=password_encrypted,
        access_token_encrypted=access_token_encrypted
    )

    db.add(account)

    try:
        db.commit()
        db.refresh(account)
        return account
    except IntegrityError:
        # Race condition - another request created it
        db.rollback()
        return db.get(Account, account_id)


def update_cursor_and_timestamp(
    db: Session,
    account: Account,
    cursor: Optional[str],
    synced_at: datetime = None
) -> Account:
    """
    Durably store the new cursor and last-synced timestamp.

    Must only be called once every message of the batch is committed.

    Raises:
        CursorCommitError: If the commit fails; the stored cursor is unchanged.
    """
    try:
        account.next_delta_token = cursor
        account.last_synced_at = synced_at or utcnow()
        account.needs_attention = False
        db.commit()
        return account
    except SQLAlchemyError as e:
        db.rollback()
        raise CursorCommitError(f"Could not store cursor for account {account.id}") from e


def flag_account_for_attention(db: Session, account: Account) -> None:
    """Mark an account whose credentials were rejected."""
    account.needs_attention = True
    db.commit()


# ============ EMAIL LOOKUPS ============

def find_email_by_message_id(
    db: Session,
    message_id: str,
    account_id: str = None
) -> Optional[Email]:
    """Get an email by its resolved message identifier."""
    query = db.query(Email).filter(Email.message_id == message_id)
    if account_id:
        query = query.filter(Email.account_id == account_id)
    return query.first()


def find_emails_by_thread_id(db: Session, thread_id: str) -> List[Email]:
    """All emails of a thread, oldest receipt first."""
    return db.query(Email).filter(
        Email.thread_id == thread_id
    ).order_by(Email.received_at.asc()).all()


# ============ SYNC LOG ============

def record_sync_log(
    db: Session,
    account_id: str,
    status: str,
    messages_synced: int,
    started_at: datetime,
    error_message: str = None
) -> SyncLog:
    """Append one sync run record."""
    log = SyncLog(
        account_id=account_id,
        status=status,
        messages_synced=messages_synced,
        error_message=error_message,
        started_at=started_at,
        completed_at=utcnow()
    )
    db.add(log)
    db.commit()
    return log


def get_recent_sync_logs(db: Session, account_id: str, limit: int = 20) -> List[SyncLog]:
    """Most recent sync runs for an account."""
    return db.query(SyncLog).filter(
        SyncLog.account_id == account_id
    ).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit).all()
