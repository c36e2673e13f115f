"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite schema per test
- Accounts with an active profile (family / provider) and JWT cookies
- HTTPX AsyncClient factory with CSRF header, one client per party
"""
import os
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ.setdefault("ENV", "test")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from careconnect.main import app
from careconnect.db.base import Base
from careconnect.db.session import SessionLocal, engine
from careconnect.core.deps import COOKIE_NAME, get_db
from careconnect.core.security import create_session_token
from careconnect.db.enums import MembershipStatus, ProfileType
from careconnect.db.models import Account, Membership, Profile
from careconnect.schemas.auth import ProfileSession


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session over a freshly created schema.

    App code commits freely; the schema is dropped after each test.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# Party Fixtures
# =============================================================================

@dataclass
class Party:
    """An account acting as one profile, plus its session cookie."""
    account: Account
    profile: Profile
    token: str
    cookie_name: str = COOKIE_NAME

    @property
    def session(self) -> ProfileSession:
        return ProfileSession(
            account_id=self.account.id,
            profile_id=self.profile.id,
            profile_type=ProfileType(self.profile.type),
            display_name=self.profile.display_name,
        )


def create_party(
    db: Session,
    profile_type: ProfileType,
    display_name: str,
    *,
    membership_status: MembershipStatus | None = None,
    free_connections_used: int = 0,
    phone: str | None = "555-0100",
    email: str | None = None,
) -> Party:
    account = Account(id=uuid.uuid4(), display_name=display_name)
    db.add(account)
    db.flush()

    profile = Profile(
        id=uuid.uuid4(),
        account_id=account.id,
        type=profile_type.value,
        display_name=display_name,
        phone=phone,
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
    )
    db.add(profile)
    db.flush()
    account.active_profile_id = profile.id

    if membership_status is not None:
        db.add(
            Membership(
                account_id=account.id,
                status=membership_status.value,
                free_connections_used=free_connections_used,
            )
        )
    db.commit()

    token = create_session_token(
        account_id=account.id,
        profile_id=profile.id,
        token_version=account.token_version,
    )
    return Party(account=account, profile=profile, token=token)


@pytest.fixture(scope="function")
def family(db: Session) -> Party:
    return create_party(db, ProfileType.FAMILY, "Jane Smith")


@pytest.fixture(scope="function")
def provider(db: Session) -> Party:
    """Organization on the free tier with its whole quota left."""
    return create_party(
        db,
        ProfileType.ORGANIZATION,
        "Sunrise Senior Living",
        membership_status=MembershipStatus.FREE,
    )


@pytest.fixture(scope="function")
def pro_provider(db: Session) -> Party:
    return create_party(
        db,
        ProfileType.ORGANIZATION,
        "Golden Years Home Care",
        membership_status=MembershipStatus.ACTIVE,
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create unauthenticated AsyncClient for testing public endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client_for(db: Session):
    """
    Factory for authenticated clients: `await client_for(party)`.

    Each client carries the party's JWT cookie and the CSRF header.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncExitStack() as stack:
        async def _open(party: Party, *, csrf: bool = True) -> AsyncClient:
            headers = {"X-Requested-With": "XMLHttpRequest"} if csrf else {}
            return await stack.enter_async_context(
                AsyncClient(
                    transport=ASGITransport(app=app),
                    base_url="http://test",
                    cookies={party.cookie_name: party.token},
                    headers=headers,
                )
            )

        yield _open

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_party(db: Session):
    """Factory for extra parties: `make_party(ProfileType.CAREGIVER, "Pat Lee", ...)`."""
    def _make(profile_type: ProfileType, display_name: str, **kwargs) -> Party:
        return create_party(db, profile_type, display_name, **kwargs)
    return _make
