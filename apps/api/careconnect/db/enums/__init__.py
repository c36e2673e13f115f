"""Enum definitions for application constants."""

from careconnect.db.enums.connections import (
    LIFECYCLE_CONNECTION_TYPES,
    OPEN_CONNECTION_STATUSES,
    TERMINAL_CONNECTION_STATUSES,
    ConnectionAction,
    ConnectionStatus,
    ConnectionType,
    NextStepType,
    ThreadEntryType,
)
from careconnect.db.enums.notifications import ConnectionNotificationEvent
from careconnect.db.enums.profiles import (
    PROVIDER_PROFILE_TYPES,
    BillingCycle,
    MembershipPlan,
    MembershipStatus,
    ProfileType,
)

__all__ = [
    # Profiles & billing
    "ProfileType",
    "PROVIDER_PROFILE_TYPES",
    "MembershipPlan",
    "MembershipStatus",
    "BillingCycle",
    # Connections
    "ConnectionType",
    "LIFECYCLE_CONNECTION_TYPES",
    "ConnectionStatus",
    "TERMINAL_CONNECTION_STATUSES",
    "OPEN_CONNECTION_STATUSES",
    "ConnectionAction",
    "ThreadEntryType",
    "NextStepType",
    # Notifications
    "ConnectionNotificationEvent",
]
