"""
Provider change-notification webhook.

Pipeline:
1. Probe requests (no signature headers) are answered with 200
2. Verify the HMAC signature over "v0:{timestamp}:{body}"
3. Look up the notified account
4. Sync it in the background and answer immediately
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.services import db_service
from app.services.sync_service import SyncService, get_sync_service
from app.services.webhook_service import SIGNATURE_HEADER, TIMESTAMP_HEADER, Notification, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _run_sync(service: SyncService, account_id: str) -> None:
    result = service.sync_account(account_id)
    logger.info("Webhook sync for %s finished: %s", account_id, result.status)


@router.get("/provider", response_class=PlainTextResponse)
def verify_endpoint():
    """Answer the provider's endpoint verification request."""
    logger.info("Webhook verification request received")
    return "Webhook endpoint is ready"


@router.post("/provider")
async def provider_notification(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    service: SyncService = Depends(get_sync_service)
):
    """
    Receive a change notification and schedule a sync of the account.

    Returns 400 on partial headers or an unparseable body, 401 on a bad
    signature and 404 for an unknown account.
    """
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    signature = request.headers.get(SIGNATURE_HEADER)
    body = await request.body()

    if not timestamp and not signature:
        logger.info("Received verification request, responding with 200")
        return PlainTextResponse("OK")

    if not timestamp or not signature or not body:
        logger.warning("Webhook missing headers or body (timestamp=%s, signature=%s)", bool(timestamp), bool(signature))
        raise HTTPException(status_code=400, detail="Missing signature headers or body")

    if not verify_signature(settings.PROVIDER_SIGNING_SECRET, timestamp, body, signature):
        logger.warning("Webhook signature verification failed")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        notification = Notification.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid notification: {e.error_count()} errors")

    account = db_service.find_account_by_id(db, notification.account_id)
    if account is None:
        logger.warning("Webhook for unknown account %s", notification.account_id)
        raise HTTPException(status_code=404, detail="Account not found")

    logger.info(
        "Notification for %s with %d changes, scheduling sync",
        account.email_address, len(notification.payloads)
    )
    background_tasks.add_task(_run_sync, service, account.id)

    return {"status": "accepted", "account_id": account.id}
