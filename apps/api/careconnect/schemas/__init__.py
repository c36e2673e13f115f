"""Pydantic schemas for API request/response models."""

from careconnect.schemas.auth import ProfileSession, TokenPayload
from careconnect.schemas.connection import (
    ConnectionCreate,
    ConnectionCreateResponse,
    ConnectionListResponse,
    ConnectionMessage,
    ConnectionMetadata,
    ConnectionRead,
    ConnectionRecord,
    ConnectionRespond,
    EntitlementRead,
    MessageCreate,
    NextStepCreate,
    NextStepRequest,
    ProfileSummary,
    RedactedProfileSummary,
    ThreadEntry,
)

__all__ = [
    # Auth
    "TokenPayload",
    "ProfileSession",
    # Connection records
    "ConnectionRecord",
    "ConnectionMetadata",
    "ConnectionMessage",
    "ThreadEntry",
    "NextStepRequest",
    # Connection API
    "ConnectionCreate",
    "ConnectionCreateResponse",
    "ConnectionRespond",
    "MessageCreate",
    "NextStepCreate",
    "ConnectionRead",
    "ConnectionListResponse",
    "ProfileSummary",
    "RedactedProfileSummary",
    "EntitlementRead",
]
