"""
Address registry: one Address row per (account, address string).
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AddressResolutionError
from app.models.address import Address
from app.services.normalizer import AddressDraft

logger = logging.getLogger(__name__)


def upsert_address(db: Session, account_id: str, draft: AddressDraft) -> Address:
    """
    Insert or refresh an address for an account.

    If the address already exists, its display name and raw header value are
    refreshed; nothing is ever deleted.

    Raises:
        AddressResolutionError: If the store rejects the lookup or write.
    """
    try:
        existing = db.query(Address).filter(
            Address.account_id == account_id,
            Address.address == draft.address
        ).first()

        if existing:
            existing.name = draft.name or existing.name
            existing.raw = draft.raw or existing.raw
            return existing

        address = Address(
            account_id=account_id,
            address=draft.address,
            name=draft.name,
            raw=draft.raw
        )
        db.add(address)
        db.flush()
        return address
    except SQLAlchemyError as e:
        logger.warning("Failed to upsert address %s for account %s: %s", draft.address, account_id, e)
        raise AddressResolutionError(f"Could not store address {draft.address}") from e
