"""
Address model - a sender/recipient identity scoped to one account.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, UniqueConstraint
from app.database import Base


class Address(Base):
    """Normalized email address, unique per (account, address)."""
    __tablename__ = "email_addresses"

    id = Column(Integer, primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id"), nullable=False, index=True)
    address = Column(String(320), nullable=False)
    name = Column(String(255))
    raw = Column(Text)  # original header value

    __table_args__ = (
        UniqueConstraint("account_id", "address", name="uq_address_account_address"),
    )

    def __repr__(self):
        return f"<Address(id={self.id}, address={self.address})>"
