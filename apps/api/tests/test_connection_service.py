"""Tests for connection lifecycle, thread and next-step negotiation."""

import uuid

import pytest

from careconnect.core.connection_errors import (
    ConnectionForbiddenError,
    ConnectionNotFoundError,
    ConnectionValidationError,
    EntitlementRequiredError,
    InvalidStateError,
    InvalidTransitionError,
)
from careconnect.db.enums import (
    ConnectionNotificationEvent,
    ConnectionStatus,
    ConnectionType,
    MembershipStatus,
    NextStepType,
    ProfileType,
    ThreadEntryType,
)
from careconnect.schemas.connection import ConnectionCreate, ConnectionMessage
from careconnect.services import connection_service, entitlement_service, notification_service


def _inquiry(db, family, provider, note=None):
    record, duplicate = connection_service.create_connection(
        db,
        family.session,
        ConnectionCreate(
            to_profile_id=provider.profile.id,
            type=ConnectionType.INQUIRY,
            message=ConnectionMessage(care_type="home_care", note=note) if note else None,
        ),
    )
    assert duplicate is False
    return record


def _accepted(db, family, provider):
    record = _inquiry(db, family, provider)
    return connection_service.respond(db, provider.session, record.id, "accept")


def _events(db, connection_id):
    return [n.event for n in notification_service.get_for_connection(db, connection_id)]


# =============================================================================
# Create
# =============================================================================

def test_create_starts_pending_and_notifies_recipient(db, family, provider):
    record = _inquiry(db, family, provider, note="Mom needs help after surgery")

    assert record.status == ConnectionStatus.PENDING
    assert record.revision == 1
    assert record.metadata.thread == ()
    assert record.message.note == "Mom needs help after surgery"

    pending = notification_service.get_pending(db, provider.profile.id)
    assert [n.event for n in pending] == [ConnectionNotificationEvent.CONNECTION_REQUESTED.value]


def test_create_returns_open_duplicate(db, family, provider):
    first = _inquiry(db, family, provider)

    again, duplicate = connection_service.create_connection(
        db,
        family.session,
        ConnectionCreate(to_profile_id=provider.profile.id, type=ConnectionType.INQUIRY),
    )

    assert duplicate is True
    assert again.id == first.id


def test_create_after_terminal_starts_fresh(db, family, provider):
    first = _inquiry(db, family, provider)
    connection_service.withdraw(db, family.session, first.id)

    second = _inquiry(db, family, provider)

    assert second.id != first.id
    assert second.status == ConnectionStatus.PENDING


@pytest.mark.parametrize("connection_type", [ConnectionType.SAVE])
def test_create_rejects_save(db, family, provider, connection_type):
    with pytest.raises(ConnectionValidationError):
        connection_service.create_connection(
            db,
            family.session,
            ConnectionCreate(to_profile_id=provider.profile.id, type=connection_type),
        )


def test_create_rejects_self_connection(db, family):
    with pytest.raises(ConnectionValidationError):
        connection_service.create_connection(
            db,
            family.session,
            ConnectionCreate(to_profile_id=family.profile.id, type=ConnectionType.INQUIRY),
        )


def test_inquiry_must_come_from_family(db, family, provider):
    with pytest.raises(ConnectionValidationError):
        connection_service.create_connection(
            db,
            provider.session,
            ConnectionCreate(to_profile_id=family.profile.id, type=ConnectionType.INQUIRY),
        )


def test_unknown_recipient(db, family):
    with pytest.raises(ConnectionValidationError):
        connection_service.create_connection(
            db,
            family.session,
            ConnectionCreate(to_profile_id=uuid.uuid4(), type=ConnectionType.INQUIRY),
        )


def test_provider_invitation_consumes_quota(db, family, provider):
    record, _ = connection_service.create_connection(
        db,
        provider.session,
        ConnectionCreate(to_profile_id=family.profile.id, type=ConnectionType.INVITATION),
    )

    assert record.status == ConnectionStatus.PENDING
    entitlement = entitlement_service.get_entitlement(db, provider.session)
    assert entitlement.free_connections_remaining == 2


def test_provider_without_quota_cannot_invite(db, family, make_party):
    broke = make_party(
        ProfileType.CAREGIVER,
        "Pat Helper",
        membership_status=MembershipStatus.FREE,
        free_connections_used=3,
    )
    with pytest.raises(EntitlementRequiredError):
        connection_service.create_connection(
            db,
            broke.session,
            ConnectionCreate(to_profile_id=family.profile.id, type=ConnectionType.INVITATION),
        )


# =============================================================================
# Lifecycle
# =============================================================================

def test_accept_appends_system_entry_and_notifies_initiator(db, family, provider):
    record = _accepted(db, family, provider)

    assert record.status == ConnectionStatus.ACCEPTED
    assert record.revision == 2
    entry = record.metadata.thread[-1]
    assert entry.type == ThreadEntryType.SYSTEM
    assert entry.text == "Connection accepted"
    assert entry.from_profile_id == provider.profile.id
    assert _events(db, record.id)[-1] == ConnectionNotificationEvent.CONNECTION_ACCEPTED.value


def test_decline_by_initiator_is_forbidden(db, family, provider):
    record = _inquiry(db, family, provider)
    with pytest.raises(ConnectionForbiddenError):
        connection_service.respond(db, family.session, record.id, "decline")


def test_withdraw_sets_qualifier_without_notification(db, family, provider):
    record = _inquiry(db, family, provider)

    withdrawn = connection_service.withdraw(db, family.session, record.id)

    assert withdrawn.status == ConnectionStatus.EXPIRED
    assert withdrawn.metadata.withdrawn is True
    assert withdrawn.metadata.withdrawn_at == withdrawn.updated_at
    assert withdrawn.metadata.thread[-1].text == "Request withdrawn"
    assert _events(db, record.id) == [ConnectionNotificationEvent.CONNECTION_REQUESTED.value]


def test_terminal_connections_are_immutable(db, family, provider):
    record = _inquiry(db, family, provider)
    connection_service.respond(db, provider.session, record.id, "decline")

    with pytest.raises(InvalidTransitionError):
        connection_service.respond(db, provider.session, record.id, "accept")
    with pytest.raises(InvalidTransitionError):
        connection_service.withdraw(db, family.session, record.id)
    with pytest.raises(InvalidTransitionError):
        connection_service.request_next_step(db, family.session, record.id, "call")
    with pytest.raises(InvalidStateError):
        connection_service.send_message(db, family.session, record.id, "still there?")


def test_updated_at_strictly_increases(db, family, provider):
    record = _inquiry(db, family, provider)
    seen = [record.updated_at]

    record = connection_service.send_message(db, family.session, record.id, "one")
    seen.append(record.updated_at)
    record = connection_service.respond(db, provider.session, record.id, "accept")
    seen.append(record.updated_at)
    record = connection_service.send_message(db, provider.session, record.id, "two")
    seen.append(record.updated_at)

    assert seen == sorted(seen)
    assert len(set(seen)) == len(seen)


def test_outsider_is_forbidden(db, family, provider, pro_provider):
    record = _inquiry(db, family, provider)

    with pytest.raises(ConnectionForbiddenError):
        connection_service.get_connection(db, pro_provider.session, record.id)
    with pytest.raises(ConnectionForbiddenError):
        connection_service.send_message(db, pro_provider.session, record.id, "hi")


def test_unknown_connection(db, family):
    with pytest.raises(ConnectionNotFoundError):
        connection_service.get_connection(db, family.session, uuid.uuid4())


def test_end_clears_next_step_and_notifies_other_party(db, family, provider):
    record = _accepted(db, family, provider)
    connection_service.request_next_step(db, family.session, record.id, "visit")

    ended = connection_service.end(db, provider.session, record.id)

    assert ended.status == ConnectionStatus.ARCHIVED
    assert ended.metadata.ended is True
    assert ended.metadata.next_step_request is None
    assert ended.metadata.thread[-1].text == "Connection ended"
    notification = notification_service.get_for_connection(db, record.id)[-1]
    assert notification.event == ConnectionNotificationEvent.CONNECTION_ENDED.value
    assert notification.recipient_profile_id == family.profile.id


def test_hide_is_viewer_scoped_and_idempotent(db, family, provider):
    record = _inquiry(db, family, provider)
    connection_service.respond(db, provider.session, record.id, "decline")
    thread_before = connection_service.get_connection(db, family.session, record.id).metadata.thread

    hidden = connection_service.hide(db, family.session, record.id)
    again = connection_service.hide(db, family.session, record.id)

    assert hidden.metadata.is_hidden_for(family.profile.id)
    assert not hidden.metadata.is_hidden_for(provider.profile.id)
    assert hidden.metadata.thread == thread_before
    assert again.revision == hidden.revision
    assert again.updated_at == hidden.updated_at


def test_hide_rejected_while_open(db, family, provider):
    record = _inquiry(db, family, provider)
    with pytest.raises(InvalidTransitionError):
        connection_service.hide(db, family.session, record.id)


# =============================================================================
# Message thread
# =============================================================================

def test_thread_is_append_only(db, family, provider):
    record = _inquiry(db, family, provider)
    snapshots = [record.metadata.thread]

    record = connection_service.send_message(db, family.session, record.id, "  Hello  ")
    snapshots.append(record.metadata.thread)
    record = connection_service.respond(db, provider.session, record.id, "accept")
    snapshots.append(record.metadata.thread)
    record = connection_service.request_next_step(db, provider.session, record.id, "call")
    snapshots.append(record.metadata.thread)
    record = connection_service.cancel_next_step(db, family.session, record.id)
    snapshots.append(record.metadata.thread)
    record = connection_service.end(db, family.session, record.id)
    snapshots.append(record.metadata.thread)

    for before, after in zip(snapshots, snapshots[1:]):
        assert after[: len(before)] == before
        assert len(after) == len(before) + 1

    created = [entry.created_at for entry in record.metadata.thread]
    assert created == sorted(created)
    assert record.metadata.thread[0].text == "Hello"
    parties = {family.profile.id, provider.profile.id}
    assert all(entry.from_profile_id in parties for entry in record.metadata.thread)


@pytest.mark.parametrize("text", ["", "   ", "x" * 4001])
def test_message_validation(db, family, provider, text):
    record = _inquiry(db, family, provider)
    with pytest.raises(ConnectionValidationError):
        connection_service.send_message(db, family.session, record.id, text)


def test_message_at_length_limit(db, family, provider):
    record = _inquiry(db, family, provider)
    record = connection_service.send_message(db, family.session, record.id, "x" * 4000)
    assert len(record.metadata.thread[-1].text) == 4000


def test_message_notifies_other_party(db, family, provider):
    record = _accepted(db, family, provider)
    connection_service.send_message(db, provider.session, record.id, "Happy to help")

    notification = notification_service.get_for_connection(db, record.id)[-1]
    assert notification.event == ConnectionNotificationEvent.MESSAGE_RECEIVED.value
    assert notification.recipient_profile_id == family.profile.id


def test_gated_provider_cannot_message(db, family, make_party):
    gated = make_party(
        ProfileType.ORGANIZATION,
        "Maple Grove",
        membership_status=MembershipStatus.FREE,
        free_connections_used=3,
    )
    record = _inquiry(db, family, gated)

    with pytest.raises(EntitlementRequiredError):
        connection_service.send_message(db, gated.session, record.id, "Hello")


def test_gated_provider_cannot_request_next_step(db, family, make_party):
    gated = make_party(
        ProfileType.ORGANIZATION,
        "Maple Grove",
        membership_status=MembershipStatus.FREE,
        free_connections_used=3,
    )
    record = _inquiry(db, family, gated)
    record = connection_service.respond(db, gated.session, record.id, "accept")

    with pytest.raises(EntitlementRequiredError):
        connection_service.request_next_step(
            db, gated.session, record.id, "call", "Call me on 555-0199"
        )

    after = connection_service.get_connection(db, family.session, record.id)
    assert after.metadata.next_step_request is None
    assert after.metadata.thread == record.metadata.thread


# =============================================================================
# Next-step negotiation
# =============================================================================

def test_next_step_single_slot(db, family, provider):
    record = _accepted(db, family, provider)

    record = connection_service.request_next_step(
        db, family.session, record.id, "call", "Mornings are best"
    )
    assert record.metadata.next_step_request.type == NextStepType.CALL
    assert record.metadata.next_step_request.requested_by_profile_id == family.profile.id
    entry = record.metadata.thread[-1]
    assert entry.type == ThreadEntryType.NEXT_STEP_REQUEST
    assert entry.next_step == NextStepType.CALL
    assert entry.text == 'Jane Smith would like to request a phone call. "Mornings are best"'

    with pytest.raises(InvalidTransitionError):
        connection_service.request_next_step(db, provider.session, record.id, "visit")


def test_next_step_cancel_then_request_again(db, family, provider):
    record = _accepted(db, family, provider)
    connection_service.request_next_step(db, family.session, record.id, "consultation")

    record = connection_service.cancel_next_step(db, provider.session, record.id)
    assert record.metadata.next_step_request is None
    assert record.metadata.thread[-1].type == ThreadEntryType.SYSTEM
    assert record.metadata.thread[-1].text == "Sunrise Senior Living cancelled the request a consultation"
    # The original request entry stays in the history
    assert record.metadata.thread[-2].type == ThreadEntryType.NEXT_STEP_REQUEST

    record = connection_service.request_next_step(db, provider.session, record.id, "visit")
    assert record.metadata.next_step_request.type == NextStepType.VISIT

    events = _events(db, record.id)
    assert events[-3:] == [
        ConnectionNotificationEvent.NEXT_STEP_REQUESTED.value,
        ConnectionNotificationEvent.NEXT_STEP_CANCELLED.value,
        ConnectionNotificationEvent.NEXT_STEP_REQUESTED.value,
    ]


def test_cancel_with_empty_slot(db, family, provider):
    record = _accepted(db, family, provider)
    with pytest.raises(InvalidTransitionError):
        connection_service.cancel_next_step(db, family.session, record.id)


def test_next_step_requires_accepted(db, family, provider):
    record = _inquiry(db, family, provider)
    with pytest.raises(InvalidTransitionError):
        connection_service.request_next_step(db, family.session, record.id, "call")


@pytest.mark.parametrize(
    "step_type,note",
    [("lunch", None), ("call", "x" * 501)],
)
def test_next_step_validation(db, family, provider, step_type, note):
    record = _accepted(db, family, provider)
    with pytest.raises(ConnectionValidationError):
        connection_service.request_next_step(db, family.session, record.id, step_type, note)


# =============================================================================
# Display status
# =============================================================================

def test_display_status_per_viewer(db, family, provider):
    record = _inquiry(db, family, provider)

    assert connection_service.display_status(record, family.profile.id, False) == "pending"
    assert connection_service.display_status(record, provider.profile.id, True) == "new_request"
    assert connection_service.connection_tab("new_request", True) == "attention"
    assert connection_service.connection_tab("pending", False) == "active"

    record = connection_service.respond(db, provider.session, record.id, "accept")
    assert connection_service.display_status(record, family.profile.id, False) == "responded"
    assert connection_service.display_status(record, provider.profile.id, True) == "connected"
    assert connection_service.connection_tab("responded", False) == "connected"

    record = connection_service.end(db, family.session, record.id)
    assert connection_service.display_status(record, family.profile.id, False) == "ended"
    assert connection_service.connection_tab("ended", True) == "past"


def test_display_status_outbound_provider(db, family, provider):
    record, _ = connection_service.create_connection(
        db,
        provider.session,
        ConnectionCreate(to_profile_id=family.profile.id, type=ConnectionType.INVITATION),
    )
    assert connection_service.display_status(record, provider.profile.id, True) == "pending_outbound"

    record = connection_service.withdraw(db, provider.session, record.id)
    assert connection_service.display_status(record, provider.profile.id, True) == "withdrawn"
