"""
Account linking and change-subscription management.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.errors import AuthenticationError, DecryptionError, MailSyncError
from app.models.account import AccountKind
from app.services import db_service
from app.services.sync_service import SyncService, get_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["Accounts"])


# ============ Schemas ============

class LinkAccountRequest(BaseModel):
    id: Optional[str] = None  # provider account id; generated for IMAP accounts
    user_id: str
    email_address: str
    provider: AccountKind
    name: Optional[str] = None

    imap_host: Optional[str] = None
    imap_port: int = 993
    imap_username: Optional[str] = None
    password: Optional[str] = None

    access_token: Optional[str] = None


class AccountResponse(BaseModel):
    id: str
    user_id: str
    email_address: str
    provider: str
    needs_attention: bool

    class Config:
        from_attributes = True


# ============ Endpoints ============

@router.post("", response_model=AccountResponse)
def link_account(
    request: LinkAccountRequest,
    db: Session = Depends(get_db),
    service: SyncService = Depends(get_sync_service)
):
    """Store a mailbox with its encrypted credentials."""
    if request.provider == AccountKind.IMAP and not (request.imap_host and request.password):
        raise HTTPException(status_code=400, detail="imap_host and password are required for IMAP accounts")
    if request.provider == AccountKind.PROVIDER and not (request.id and request.access_token):
        raise HTTPException(status_code=400, detail="id and access_token are required for provider accounts")

    try:
        cipher = service.cipher
    except DecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return db_service.link_account(
        db,
        account_id=request.id or db_service.new_id(),
        user_id=request.user_id,
        email_address=request.email_address.strip().lower(),
        provider=request.provider,
        name=request.name,
        imap_host=request.imap_host,
        imap_port=request.imap_port,
        imap_username=request.imap_username,
        password_encrypted=cipher.encrypt(request.password) if request.password else None,
        access_token_encrypted=cipher.encrypt(request.access_token) if request.access_token else None
    )


@router.post("/{account_id}/subscription")
def create_subscription(
    account_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    service: SyncService = Depends(get_sync_service)
):
    """
    Register this backend's webhook as the provider's change callback.

    Only provider accounts support subscriptions; IMAP accounts are polled.
    """
    account = db_service.find_account_by_id(db, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    if account.kind != AccountKind.PROVIDER:
        raise HTTPException(status_code=400, detail="Subscriptions are only available for provider accounts")

    callback_url = settings.webhook_url()
    try:
        token = service.cipher.decrypt(account.access_token_encrypted)
        response = service.provider_factory(token).create_change_subscription(callback_url)
    except DecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except AuthenticationError as e:
        db_service.flag_account_for_attention(db, account)
        raise HTTPException(status_code=401, detail=str(e))
    except MailSyncError as e:
        logger.error("Subscription for %s failed: %s", account_id, e)
        raise HTTPException(status_code=502, detail=f"Failed to create subscription: {e}")

    logger.info("Subscribed %s to change notifications at %s", account.email_address, callback_url)
    return {
        "status": "success",
        "account_id": account_id,
        "notification_url": callback_url,
        "subscription": response
    }
