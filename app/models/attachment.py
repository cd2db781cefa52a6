"""
Attachment model - metadata for one message part.

Only inline parts keep their content; blob storage is handled elsewhere and
referenced through storage_path.
"""

from sqlalchemy import Column, String, Integer, Text, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base


class Attachment(Base):
    __tablename__ = "email_attachments"

    id = Column(String(255), primary_key=True)
    email_id = Column(String(255), ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(512))
    mime_type = Column(String(255))
    size = Column(Integer, default=0)
    content_id = Column(String(255))  # for cid: references in HTML bodies
    inline = Column(Boolean, default=False, nullable=False)
    content = Column(Text)  # base64, inline parts only
    storage_path = Column(String(1024))

    email = relationship("Email", back_populates="attachments")

    def __repr__(self):
        return f"<Attachment(id={self.id}, name={self.name})>"
