"""FastAPI dependencies for authentication and database access."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from careconnect.core.security import decode_session_token
from careconnect.db.session import SessionLocal


# Cookie and header names
COOKIE_NAME = "careconnect_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_account(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Get authenticated account from session cookie.

    Validates:
    - Session cookie exists
    - JWT is valid and not expired
    - Account exists
    - Token version matches (for revocation support)

    Raises:
        HTTPException 401: Authentication failed
    """
    # Import here to avoid circular imports
    from careconnect.db.models import Account

    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_session_token(token)
        account_id = UUID(payload["sub"])
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    account = db.get(Account, account_id)
    if not account:
        raise HTTPException(status_code=401, detail="Account not found")

    # Token version check (revocation support)
    if account.token_version != payload.get("token_version"):
        raise HTTPException(status_code=401, detail="Session revoked")

    return account


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Get session context: account plus the profile it is acting as.

    This is the PRIMARY auth dependency for connection endpoints.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: No active profile, or it belongs to another account
    """
    from careconnect.db.enums import ProfileType
    from careconnect.db.models import Profile
    from careconnect.schemas.auth import ProfileSession

    account = get_current_account(request, db)

    profile = db.get(Profile, account.active_profile_id) if account.active_profile_id else None
    if not profile or profile.account_id != account.id:
        raise HTTPException(status_code=403, detail="No active profile")

    return ProfileSession(
        account_id=account.id,
        profile_id=profile.id,
        profile_type=ProfileType(profile.type),
        display_name=profile.display_name,
    )


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )
