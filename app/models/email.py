"""
Email model - a single synced message.

Deduplication is on (account_id, message_id): the resolved Message-ID header,
or its deterministic fallback when the header is missing. Two accounts that
receive the same message each own a row.
"""

from sqlalchemy import (
    Column, String, Text, DateTime, Boolean, Integer,
    ForeignKey, Table, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from app.database import Base


def _address_link_table(name: str) -> Table:
    return Table(
        name,
        Base.metadata,
        Column("email_id", String(255), ForeignKey("emails.id", ondelete="CASCADE"), primary_key=True),
        Column("address_id", Integer, ForeignKey("email_addresses.id"), primary_key=True),
    )


email_to = _address_link_table("email_to")
email_cc = _address_link_table("email_cc")
email_bcc = _address_link_table("email_bcc")
email_reply_to = _address_link_table("email_reply_to")


class Email(Base):
    __tablename__ = "emails"

    id = Column(String(255), primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False)
    thread_id = Column(String(255), ForeignKey("threads.id"), index=True)

    # ============ IDENTIFIERS ============
    message_id = Column(String(998), nullable=False, index=True)
    in_reply_to = Column(String(998))
    references = Column(JSON, default=list)

    # ============ PARTICIPANTS ============
    from_id = Column(Integer, ForeignKey("email_addresses.id"))
    from_address = relationship("Address", foreign_keys=[from_id])
    to = relationship("Address", secondary=email_to)
    cc = relationship("Address", secondary=email_cc)
    bcc = relationship("Address", secondary=email_bcc)
    reply_to = relationship("Address", secondary=email_reply_to)

    # ============ CONTENT ============
    subject = Column(String(998))
    body_html = Column(Text)
    body_text = Column(Text)
    snippet = Column(String(512))

    # ============ TIMESTAMPS ============
    sent_at = Column(DateTime)
    received_at = Column(DateTime)
    created_time = Column(DateTime)
    last_modified_time = Column(DateTime)

    # ============ CLASSIFICATION ============
    sys_labels = Column(JSON, default=list)
    email_label = Column(String(10), nullable=False, default="inbox")  # inbox | sent | draft
    folder = Column(String(255))
    has_attachments = Column(Boolean, default=False, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    is_starred = Column(Boolean, default=False, nullable=False)

    attachments = relationship("Attachment", back_populates="email", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("account_id", "message_id", name="uq_email_account_message"),
        Index("ix_emails_thread_received", "thread_id", "received_at"),
    )

    def __repr__(self):
        return f"<Email(id={self.id}, subject={self.subject[:30] if self.subject else ''})>"
