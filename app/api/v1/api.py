from fastapi import APIRouter
from app.api.v1.endpoints import accounts, sync, webhooks

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(accounts.router)
api_router.include_router(sync.router)
api_router.include_router(webhooks.router)
