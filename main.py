from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1.api import api_router
from app.config import get_settings
from app.database import engine, Base
from app.logging_config import setup_logging
from app.models import Account, Address, Thread, Email, Attachment, SyncLog  # noqa: F401
from app.services.scheduler import SyncScheduler
from app.services.sync_service import get_sync_service

settings = get_settings()
setup_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Mail Sync",
    description="Mirrors linked mailboxes (IMAP or provider API) into the local store",
    version="1.0.0"
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler = SyncScheduler(get_sync_service(), interval=settings.SYNC_INTERVAL_SECONDS)


@app.on_event("startup")
def on_startup():
    """Create database tables and start the periodic sync."""
    Base.metadata.create_all(bind=engine)
    if settings.SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
def on_shutdown():
    scheduler.stop()


app.include_router(api_router)


@app.get("/")
def health_check():
    return {"status": "ok", "scheduler": scheduler.running}
