"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from careconnect.db.enums import ProfileType


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # account_id
    profile_id: UUID | None = None
    token_version: int


class ProfileSession(BaseModel):
    """
    Session context for authenticated requests.

    Returned by the get_current_session dependency: the account and the
    profile it is currently acting as.
    """
    account_id: UUID
    profile_id: UUID
    profile_type: ProfileType
    display_name: str

    @property
    def is_provider(self) -> bool:
        return self.profile_type.is_provider
