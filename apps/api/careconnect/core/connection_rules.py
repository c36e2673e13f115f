"""Connection lifecycle rules: legal transitions and who may trigger them.

Pure functions over (status, action, caller role). The service layer calls
resolve_transition() before it touches the store.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from careconnect.core.connection_errors import (
    ConnectionForbiddenError,
    InvalidTransitionError,
)
from careconnect.db.enums import (
    TERMINAL_CONNECTION_STATUSES,
    ConnectionAction,
    ConnectionStatus,
)


class PartyRole(str, Enum):
    """Caller's side of a connection."""

    INITIATOR = "initiator"  # from_profile
    RECIPIENT = "recipient"  # to_profile


BOTH_PARTIES = frozenset({PartyRole.INITIATOR, PartyRole.RECIPIENT})


@dataclass(frozen=True)
class Transition:
    action: ConnectionAction
    from_statuses: frozenset[ConnectionStatus]
    to_status: ConnectionStatus | None  # None keeps the current status
    actors: frozenset[PartyRole]
    qualifier: str | None = None  # metadata flag set alongside the status
    system_text: str | None = None  # thread notice appended on success


TRANSITIONS: dict[ConnectionAction, Transition] = {
    ConnectionAction.ACCEPT: Transition(
        action=ConnectionAction.ACCEPT,
        from_statuses=frozenset({ConnectionStatus.PENDING}),
        to_status=ConnectionStatus.ACCEPTED,
        actors=frozenset({PartyRole.RECIPIENT}),
        system_text="Connection accepted",
    ),
    ConnectionAction.DECLINE: Transition(
        action=ConnectionAction.DECLINE,
        from_statuses=frozenset({ConnectionStatus.PENDING}),
        to_status=ConnectionStatus.DECLINED,
        actors=frozenset({PartyRole.RECIPIENT}),
        system_text="Connection declined",
    ),
    ConnectionAction.WITHDRAW: Transition(
        action=ConnectionAction.WITHDRAW,
        from_statuses=frozenset({ConnectionStatus.PENDING}),
        to_status=ConnectionStatus.EXPIRED,
        actors=frozenset({PartyRole.INITIATOR}),
        qualifier="withdrawn",
        system_text="Request withdrawn",
    ),
    ConnectionAction.END: Transition(
        action=ConnectionAction.END,
        from_statuses=frozenset({ConnectionStatus.ACCEPTED}),
        to_status=ConnectionStatus.ARCHIVED,
        actors=BOTH_PARTIES,
        qualifier="ended",
        system_text="Connection ended",
    ),
    ConnectionAction.HIDE: Transition(
        action=ConnectionAction.HIDE,
        from_statuses=TERMINAL_CONNECTION_STATUSES,
        to_status=None,
        actors=BOTH_PARTIES,
    ),
}

_ACTION_ERRORS = {
    ConnectionAction.ACCEPT: "Can only respond to pending connections",
    ConnectionAction.DECLINE: "Can only respond to pending connections",
    ConnectionAction.WITHDRAW: "Can only withdraw pending connections",
    ConnectionAction.END: "Can only end accepted connections",
    ConnectionAction.HIDE: "Can only hide past connections",
}

_ROLE_ERRORS = {
    ConnectionAction.ACCEPT: "Only the recipient can respond",
    ConnectionAction.DECLINE: "Only the recipient can respond",
    ConnectionAction.WITHDRAW: "Only the sender can withdraw a request",
}


def party_role(
    from_profile_id: UUID,
    to_profile_id: UUID,
    profile_id: UUID,
) -> PartyRole | None:
    """Return which side of the connection a profile is on, or None for outsiders."""
    if profile_id == from_profile_id:
        return PartyRole.INITIATOR
    if profile_id == to_profile_id:
        return PartyRole.RECIPIENT
    return None


def resolve_transition(
    status: ConnectionStatus | str,
    action: ConnectionAction,
    role: PartyRole | None,
) -> Transition:
    """
    Validate an action against the transition table.

    Authorization is checked before the status precondition.

    Raises:
        ConnectionForbiddenError: caller is not a party, or the wrong party
        InvalidTransitionError: action illegal for the current status
    """
    transition = TRANSITIONS[action]
    if role is None:
        raise ConnectionForbiddenError("Not a party to this connection")
    if role not in transition.actors:
        raise ConnectionForbiddenError(_ROLE_ERRORS.get(action, "Not authorized"))

    current = ConnectionStatus(status)
    if current not in transition.from_statuses:
        raise InvalidTransitionError(
            f"{_ACTION_ERRORS[action]} (status: {current.value})"
        )
    return transition
