"""Connection lifecycle enums."""

from enum import Enum


class ConnectionType(str, Enum):
    """
    Why the connection was opened.

    - INQUIRY: family asks a provider about care
    - INVITATION: provider invites a family or caregiver
    - APPLICATION: caregiver applies to an organization
    - SAVE: bookmark only, never part of the lifecycle or counts
    """

    INQUIRY = "inquiry"
    INVITATION = "invitation"
    APPLICATION = "application"
    SAVE = "save"


LIFECYCLE_CONNECTION_TYPES = frozenset(
    {ConnectionType.INQUIRY, ConnectionType.INVITATION, ConnectionType.APPLICATION}
)


class ConnectionStatus(str, Enum):
    """
    Lifecycle status of a connection.

    Workflow: pending → accepted/declined/expired, accepted → archived.
    Declined, archived and expired are terminal.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    ARCHIVED = "archived"  # Ended after being accepted
    EXPIRED = "expired"  # Withdrawn by the initiator or timed out

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CONNECTION_STATUSES


TERMINAL_CONNECTION_STATUSES = frozenset(
    {ConnectionStatus.DECLINED, ConnectionStatus.ARCHIVED, ConnectionStatus.EXPIRED}
)
OPEN_CONNECTION_STATUSES = frozenset({ConnectionStatus.PENDING, ConnectionStatus.ACCEPTED})


class ConnectionAction(str, Enum):
    """Actions a party can take against an existing connection."""

    ACCEPT = "accept"
    DECLINE = "decline"
    WITHDRAW = "withdraw"
    END = "end"
    HIDE = "hide"


class ThreadEntryType(str, Enum):
    MESSAGE = "message"
    SYSTEM = "system"
    NEXT_STEP_REQUEST = "next_step_request"


class NextStepType(str, Enum):
    CALL = "call"
    CONSULTATION = "consultation"
    VISIT = "visit"
