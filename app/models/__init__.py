"""
SQLAlchemy models for the mail sync backend.

This package contains:
- Account: Linked remote mailbox with encrypted credentials and sync cursor
- Address: Sender/recipient identity, unique per account
- Thread: Conversation grouping with derived folder flags
- Email: Single synced message
- Attachment: Message part metadata
- SyncLog: Per-run audit record
"""

from app.models.account import Account, AccountKind
from app.models.address import Address
from app.models.thread import Thread
from app.models.email import Email
from app.models.attachment import Attachment
from app.models.sync_log import SyncLog

__all__ = ["Account", "AccountKind", "Address", "Thread", "Email", "Attachment", "SyncLog"]
