"""Shared fixtures: in-memory store, fake remote clients, sync service factory."""

import os

# Must be set before app.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.config import Settings
from app.database import Base
from app.models.account import AccountKind
from app.services import db_service
from app.services.crypto_service import CredentialCipher, generate_key
from app.services.sync_service import SyncService
from tests.fakes import FakeMailbox, FakeProviderClient, build_mime, provider_record, raw_imap


# ============ STORE ============

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============ CONFIG / CREDENTIALS ============

@pytest.fixture
def encryption_key():
    return generate_key()


@pytest.fixture
def settings(encryption_key):
    return Settings(
        DATABASE_URL="sqlite://",
        ENCRYPTION_KEY=encryption_key,
        PROVIDER_SIGNING_SECRET="test-signing-secret",
        PUBLIC_URL="https://mail.example.com",
        SYNC_MAX_WORKERS=1,
        INIT_MAX_RETRIES=10,
        INIT_BASE_DELAY=2.0,
        INIT_BACKOFF_MULTIPLIER=1.5,
        READY_POLL_DELAY=1.0,
        READY_MAX_POLLS=5,
        PAGE_MAX_RETRIES=3,
    )


@pytest.fixture
def cipher(encryption_key):
    return CredentialCipher(encryption_key)


# ============ FAKE REMOTE CLIENTS ============

@pytest.fixture
def fake_mailbox():
    return FakeMailbox()


@pytest.fixture
def fake_provider():
    return FakeProviderClient()


@pytest.fixture
def sleeps():
    """Records every backoff delay instead of sleeping."""
    return []


@pytest.fixture
def make_service(session_factory, settings, cipher, sleeps):
    def _make(mailbox=None, provider=None):
        return SyncService(
            session_factory=session_factory,
            settings=settings,
            cipher=cipher,
            imap_factory=lambda host, port, user, password, timeout=10: mailbox,
            provider_factory=lambda token: provider,
            sleep=sleeps.append,
        )
    return _make


# ============ ACCOUNTS ============

@pytest.fixture
def imap_account(db, cipher):
    return db_service.link_account(
        db,
        account_id="imap-1",
        user_id="user-1",
        email_address="me@example.com",
        provider=AccountKind.IMAP,
        imap_host="imap.example.com",
        password_encrypted=cipher.encrypt("hunter2"),
    )


@pytest.fixture
def provider_account(db, cipher):
    account = db_service.link_account(
        db,
        account_id="acc-1",
        user_id="user-1",
        email_address="me@example.com",
        provider=AccountKind.PROVIDER,
        access_token_encrypted=cipher.encrypt("token-abc"),
    )
    account.next_delta_token = "T0"
    db.commit()
    return account


@pytest.fixture
def mime():
    return build_mime


@pytest.fixture
def imap_message():
    return raw_imap


@pytest.fixture
def record():
    return provider_record
