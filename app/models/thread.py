"""
Thread model - a conversation grouping.

Holds only denormalized scalars (subject, last message date, folder flags,
participants). Folder flags are recomputed from the thread's emails by the
reconciler, never set from a single message.
"""

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, JSON, Index
from app.database import Base


class Thread(Base):
    __tablename__ = "threads"

    # Remote thread id when the source provides one, else a synthesized uuid
    id = Column(String(255), primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False)
    subject = Column(String(998))
    last_message_date = Column(DateTime)

    # ============ FOLDER FLAGS ============
    inbox_status = Column(Boolean, default=True, nullable=False)
    sent_status = Column(Boolean, default=False, nullable=False)
    draft_status = Column(Boolean, default=False, nullable=False)
    # User-set archive state; sync never reads or writes it
    done = Column(Boolean, default=False, nullable=False)

    # Address ids; only ever grows across re-syncs
    participant_ids = Column(JSON, default=list, nullable=False)

    __table_args__ = (
        Index("ix_threads_account_last_message", "account_id", "last_message_date"),
    )

    def __repr__(self):
        return f"<Thread(id={self.id}, subject={self.subject[:30] if self.subject else ''})>"
