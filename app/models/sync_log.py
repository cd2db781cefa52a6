"""
SyncLog model - append-only record of sync runs, for observability only.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime
from app.database import Base


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False)  # success, partial, failed
    messages_synced = Column(Integer, default=0)
    error_message = Column(Text)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)

    def __repr__(self):
        return f"<SyncLog(account={self.account_id}, status={self.status}, synced={self.messages_synced})>"
