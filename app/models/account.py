"""
Account model - one linked remote mailbox.

Credentials are stored encrypted; the sync engine only reads them and writes
back the cursor, last-synced timestamp and attention flag.
"""

from sqlalchemy import Column, String, Integer, Text, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base
import enum


class AccountKind(str, enum.Enum):
    """Which remote source strategy serves this account."""
    IMAP = "imap"
    PROVIDER = "provider"


class Account(Base):
    """A linked mailbox, reached over IMAP or through the provider API."""
    __tablename__ = "accounts"

    # Provider accounts reuse the provider's account id so webhooks can find them
    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    email_address = Column(String(255), nullable=False)
    name = Column(String(255))
    provider = Column(String(20), nullable=False, default=AccountKind.IMAP.value)

    # ============ IMAP CREDENTIALS ============
    imap_host = Column(String(255))
    imap_port = Column(Integer, default=993)
    imap_username = Column(String(255))
    password_encrypted = Column(Text)

    # ============ PROVIDER CREDENTIALS ============
    access_token_encrypted = Column(Text)

    # ============ SYNC STATE ============
    next_delta_token = Column(String(512))  # opaque provider cursor
    last_synced_at = Column(DateTime)
    needs_attention = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    @property
    def kind(self) -> AccountKind:
        return AccountKind(self.provider)

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email_address}, provider={self.provider})>"
