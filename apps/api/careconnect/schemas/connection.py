"""Pydantic schemas for connections, their metadata and API payloads."""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from careconnect.db.enums import (
    ConnectionStatus,
    ConnectionType,
    NextStepType,
    ProfileType,
    ThreadEntryType,
)


METADATA_SCHEMA_VERSION = 1


# =============================================================================
# Stored metadata (versioned side-record on the connection row)
# =============================================================================

class ThreadEntry(BaseModel):
    """One immutable entry of the connection thread."""

    model_config = ConfigDict(frozen=True)

    from_profile_id: UUID
    text: str
    created_at: datetime
    type: ThreadEntryType = ThreadEntryType.MESSAGE
    next_step: NextStepType | None = None


class NextStepRequest(BaseModel):
    """The single outstanding call/consultation/visit request."""

    model_config = ConfigDict(frozen=True)

    type: NextStepType
    note: str | None = None
    # Absent on rows written before the requester was recorded
    requested_by_profile_id: UUID | None = None
    created_at: datetime


class ConnectionMetadata(BaseModel):
    """
    Typed view of connections.metadata.

    Snapshots are frozen; mutations build a new instance with model_copy().
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    schema_version: int = METADATA_SCHEMA_VERSION
    withdrawn: bool = False
    withdrawn_at: datetime | None = None
    ended: bool = False
    ended_at: datetime | None = None
    hidden_by: tuple[UUID, ...] = ()
    thread: tuple[ThreadEntry, ...] = ()
    next_step_request: NextStepRequest | None = None

    @classmethod
    def from_stored(
        cls,
        raw: dict[str, Any] | None,
        parties: tuple[UUID, UUID],
    ) -> "ConnectionMetadata":
        """
        Parse stored metadata, upgrading older layouts.

        Version 0 rows carry a single shared `hidden` flag; it is read as
        hidden for both parties.
        """
        data = dict(raw or {})
        if data.get("schema_version", 0) < METADATA_SCHEMA_VERSION:
            hidden_by = [str(p) for p in data.get("hidden_by") or []]
            if data.pop("hidden", False):
                for party in parties:
                    if str(party) not in hidden_by:
                        hidden_by.append(str(party))
            data["hidden_by"] = hidden_by
            data["schema_version"] = METADATA_SCHEMA_VERSION
        return cls.model_validate(data)

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def is_hidden_for(self, profile_id: UUID) -> bool:
        return profile_id in self.hidden_by


class ConnectionMessage(BaseModel):
    """Write-once request snapshot captured when the connection is created."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    care_type: str | None = None
    care_type_other: str | None = None
    care_recipient: str | None = None
    urgency: str | None = None
    note: str | None = None
    contact_preference: str | None = None


class ConnectionRecord(BaseModel):
    """Immutable snapshot of a connection row as committed."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    from_profile_id: UUID
    to_profile_id: UUID
    type: ConnectionType
    status: ConnectionStatus
    message: ConnectionMessage | None = None
    metadata: ConnectionMetadata
    revision: int
    created_at: datetime
    updated_at: datetime

    def other_party(self, profile_id: UUID) -> UUID:
        return self.to_profile_id if profile_id == self.from_profile_id else self.from_profile_id


# =============================================================================
# API requests
# =============================================================================

class ConnectionCreate(BaseModel):
    """Request to open a connection with another profile."""

    to_profile_id: UUID
    type: ConnectionType
    message: ConnectionMessage | None = None


class ConnectionRespond(BaseModel):
    """Recipient's answer to a pending connection."""

    action: Literal["accept", "decline"]


class MessageCreate(BaseModel):
    # Length and blank checks happen in the service so they map to 400
    text: str


class NextStepCreate(BaseModel):
    type: str
    note: str | None = None


# =============================================================================
# API responses
# =============================================================================

class ProfileSummary(BaseModel):
    """Other party, fully visible."""

    visibility: Literal["full"] = "full"
    id: UUID
    type: ProfileType
    display_name: str
    phone: str | None = None
    email: str | None = None
    website: str | None = None


class RedactedProfileSummary(BaseModel):
    """Other party as seen behind the paywall: blurred name, no contact fields."""

    visibility: Literal["redacted"] = "redacted"
    id: UUID
    type: ProfileType
    display_name: str


PartySummary = Annotated[
    ProfileSummary | RedactedProfileSummary,
    Field(discriminator="visibility"),
]


class ConnectionRead(BaseModel):
    """A connection as seen by one of its parties."""

    id: UUID
    type: ConnectionType
    status: ConnectionStatus
    direction: Literal["inbound", "outbound"]
    display_status: str
    tab: str
    full_access: bool
    other_party: PartySummary
    message: ConnectionMessage | None = None
    withdrawn: bool = False
    ended: bool = False
    hidden: bool = False
    thread: list[ThreadEntry] = []
    next_step_request: NextStepRequest | None = None
    revision: int
    created_at: datetime
    updated_at: datetime


class ConnectionCreateResponse(BaseModel):
    connection: ConnectionRead
    duplicate: bool = False


class ConnectionListResponse(BaseModel):
    items: list[ConnectionRead]
    total: int


class EntitlementRead(BaseModel):
    """Gate output for the caller's active profile."""

    profile_type: ProfileType
    full_access_to_inbound_details: bool
    free_connections_remaining: int | None = None
    free_connection_limit: int
