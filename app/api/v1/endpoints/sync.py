"""
On-demand sync triggers.

The scheduler runs the same sync every SYNC_INTERVAL_SECONDS; these endpoints
let a client force a run, e.g. right after linking an account.
"""

from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database import get_db
from app.services import db_service
from app.services.sync_service import SyncService, get_sync_service

router = APIRouter(prefix="/sync", tags=["Sync"])


class SyncLogResponse(BaseModel):
    id: int
    account_id: str
    status: str
    messages_synced: int
    error_message: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


@router.post("")
def sync_all_accounts(service: SyncService = Depends(get_sync_service)):
    """Sync every linked account now."""
    results = service.sync_all()
    return {
        "status": "processed",
        "accounts": len(results),
        "results": [result.to_dict() for result in results]
    }


@router.post("/{account_id}")
def sync_one_account(
    account_id: str,
    db: Session = Depends(get_db),
    service: SyncService = Depends(get_sync_service)
):
    """Sync a single account now."""
    if db_service.find_account_by_id(db, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")

    # Release the request session; the sync opens its own
    db.close()
    return service.sync_account(account_id).to_dict()


@router.get("/{account_id}/logs", response_model=List[SyncLogResponse])
def sync_logs(
    account_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Most recent sync runs for an account."""
    if db_service.find_account_by_id(db, account_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return db_service.get_recent_sync_logs(db, account_id, limit=limit)
