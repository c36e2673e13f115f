"""
Connection service - lifecycle, next-step negotiation and the message thread.

Every mutation is a pure function of the current snapshot, handed to
connection_store.apply_mutation() which retries it under compare-and-set.
Rules are checked inside the mutation so a retried write re-validates
against the row it is about to replace.
"""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from careconnect.core.connection_errors import (
    ConnectionForbiddenError,
    ConnectionValidationError,
    EntitlementRequiredError,
    InvalidStateError,
    InvalidTransitionError,
)
from careconnect.core.connection_rules import PartyRole, party_role, resolve_transition
from careconnect.core.structured_logging import build_log_context
from careconnect.db.enums import (
    LIFECYCLE_CONNECTION_TYPES,
    OPEN_CONNECTION_STATUSES,
    ConnectionAction,
    ConnectionNotificationEvent,
    ConnectionStatus,
    ConnectionType,
    NextStepType,
    ProfileType,
    ThreadEntryType,
)
from careconnect.db.models import Profile
from careconnect.schemas.auth import ProfileSession
from careconnect.schemas.connection import (
    ConnectionCreate,
    ConnectionRead,
    ConnectionRecord,
    NextStepRequest,
    ProfileSummary,
    RedactedProfileSummary,
    ThreadEntry,
)
from careconnect.services import connection_store, entitlement_service
from careconnect.services.connection_store import Mutation, store_errors
from careconnect.services.notification_service import NotificationDraft
from careconnect.utils.presentation import (
    next_step_cancel_text,
    next_step_request_text,
    redact_name,
    redact_text,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
MAX_NEXT_STEP_NOTE_LENGTH = 500

# Notification sent to the other party per status transition (withdraw/hide: none)
_TRANSITION_EVENTS = {
    ConnectionAction.ACCEPT: ConnectionNotificationEvent.CONNECTION_ACCEPTED,
    ConnectionAction.DECLINE: ConnectionNotificationEvent.CONNECTION_DECLINED,
    ConnectionAction.END: ConnectionNotificationEvent.CONNECTION_ENDED,
}


# =============================================================================
# Helpers
# =============================================================================

def _require_party(record: ConnectionRecord, profile_id: UUID) -> PartyRole:
    role = party_role(record.from_profile_id, record.to_profile_id, profile_id)
    if role is None:
        raise ConnectionForbiddenError("Not a party to this connection")
    return role


def _append(record: ConnectionRecord, entry: ThreadEntry) -> tuple[ThreadEntry, ...]:
    thread = record.metadata.thread
    if thread and entry.created_at < thread[-1].created_at:
        # Thread order never goes backwards, even if a stored entry is ahead of our clock
        entry = entry.model_copy(update={"created_at": thread[-1].created_at})
    return thread + (entry,)


def _log_context(session: ProfileSession, connection_id: UUID | None = None) -> dict:
    return build_log_context(
        account_id=str(session.account_id),
        profile_id=str(session.profile_id),
        connection_id=str(connection_id) if connection_id else None,
    )


def _get_profile(db: Session, profile_id: UUID) -> Profile | None:
    with store_errors(db):
        return db.get(Profile, profile_id)


def _get_profiles(db: Session, profile_ids: set[UUID]) -> dict[UUID, Profile]:
    if not profile_ids:
        return {}
    with store_errors(db):
        rows = db.scalars(select(Profile).where(Profile.id.in_(profile_ids))).all()
    return {row.id: row for row in rows}


# =============================================================================
# Display status (per viewer)
# =============================================================================

def display_status(record: ConnectionRecord, viewer_profile_id: UUID, viewer_is_provider: bool) -> str:
    """
    Map a connection to the label its viewer sees.

    Family view: pending, responded, declined, withdrawn, expired, ended.
    Provider view: new_request, pending_outbound, connected, declined,
    withdrawn, expired, ended.
    """
    status = record.status
    if status in (ConnectionStatus.EXPIRED, ConnectionStatus.ARCHIVED):
        if record.metadata.ended:
            return "ended"
        if record.metadata.withdrawn:
            return "withdrawn"
        return "expired"
    if status == ConnectionStatus.DECLINED:
        return "declined"

    if viewer_is_provider:
        if status == ConnectionStatus.ACCEPTED:
            return "connected"
        return "new_request" if record.to_profile_id == viewer_profile_id else "pending_outbound"
    if status == ConnectionStatus.ACCEPTED:
        return "responded"
    return "pending"


def connection_tab(status_label: str, viewer_is_provider: bool) -> str:
    if viewer_is_provider:
        if status_label == "new_request":
            return "attention"
        if status_label in ("pending_outbound", "connected"):
            return "active"
        return "past"
    if status_label == "pending":
        return "active"
    if status_label == "responded":
        return "connected"
    return "past"


# =============================================================================
# Views
# =============================================================================

def _party_summary(profile: Profile, full_access: bool) -> ProfileSummary | RedactedProfileSummary:
    if full_access:
        return ProfileSummary(
            id=profile.id,
            type=ProfileType(profile.type),
            display_name=profile.display_name,
            phone=profile.phone,
            email=profile.email,
            website=profile.website,
        )
    return RedactedProfileSummary(
        id=profile.id,
        type=ProfileType(profile.type),
        display_name=redact_name(profile.display_name),
    )


def _gated_entry(entry: ThreadEntry, viewer: UUID, other_name: str | None) -> ThreadEntry:
    """Thread entry as a gated viewer sees it: no name, no free text."""
    if entry.from_profile_id == viewer:
        return entry
    name = redact_name(other_name)
    if entry.next_step is not None:
        # Named next-step texts are rebuilt around the redacted name, note dropped
        if entry.type == ThreadEntryType.NEXT_STEP_REQUEST:
            text = next_step_request_text(name, entry.next_step.value, None)
        else:
            text = next_step_cancel_text(name, entry.next_step.value)
        return entry.model_copy(update={"text": text})
    if entry.type == ThreadEntryType.SYSTEM:
        if other_name and entry.text.startswith(other_name):
            return entry.model_copy(update={"text": name + entry.text[len(other_name):]})
        return entry
    return entry.model_copy(update={"text": redact_text(entry.text)})


def build_read(
    session: ProfileSession,
    record: ConnectionRecord,
    other_profile: Profile,
    *,
    full_access: bool,
) -> ConnectionRead:
    """Shape a snapshot for one viewer, redacting when access is not granted."""
    viewer = session.profile_id
    message = record.message
    thread = list(record.metadata.thread)
    next_step = record.metadata.next_step_request

    if not full_access:
        if message and message.note:
            message = message.model_copy(update={"note": redact_text(message.note)})
        thread = [_gated_entry(entry, viewer, other_profile.display_name) for entry in thread]
        if next_step and next_step.note and next_step.requested_by_profile_id != viewer:
            next_step = next_step.model_copy(update={"note": redact_text(next_step.note)})

    label = display_status(record, viewer, session.is_provider)
    return ConnectionRead(
        id=record.id,
        type=record.type,
        status=record.status,
        direction="inbound" if record.to_profile_id == viewer else "outbound",
        display_status=label,
        tab=connection_tab(label, session.is_provider),
        full_access=full_access,
        other_party=_party_summary(other_profile, full_access),
        message=message,
        withdrawn=record.metadata.withdrawn,
        ended=record.metadata.ended,
        hidden=record.metadata.is_hidden_for(viewer),
        thread=thread,
        next_step_request=next_step,
        revision=record.revision,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def to_read(
    db: Session,
    session: ProfileSession,
    record: ConnectionRecord,
    *,
    consume: bool = False,
) -> ConnectionRead:
    full_access = entitlement_service.resolve_access(db, session, record, consume=consume)
    other = _get_profile(db, record.other_party(session.profile_id))
    return build_read(session, record, other, full_access=full_access)


# =============================================================================
# Reads
# =============================================================================

def get_connection(db: Session, session: ProfileSession, connection_id: UUID) -> ConnectionRecord:
    """
    Snapshot of a connection the caller is party to.

    Raises:
        ConnectionNotFoundError: unknown id
        ConnectionForbiddenError: caller is not a party
    """
    record = connection_store.get_connection(db, connection_id)
    _require_party(record, session.profile_id)
    return record


def list_connections(
    db: Session,
    session: ProfileSession,
    *,
    tab: str | None = None,
    include_hidden: bool = False,
) -> list[ConnectionRead]:
    """The caller's connections, newest activity first. Saves are never listed."""
    records = connection_store.list_for_profile(db, session.profile_id)
    if not include_hidden:
        records = [r for r in records if not r.metadata.is_hidden_for(session.profile_id)]

    access = entitlement_service.access_map(db, session, records)
    profiles = _get_profiles(db, {r.other_party(session.profile_id) for r in records})
    items = [
        build_read(
            session,
            record,
            profiles[record.other_party(session.profile_id)],
            full_access=access[record.id],
        )
        for record in records
    ]
    if tab:
        items = [item for item in items if item.tab == tab]
    return items


# =============================================================================
# Create
# =============================================================================

def create_connection(
    db: Session,
    session: ProfileSession,
    data: ConnectionCreate,
) -> tuple[ConnectionRecord, bool]:
    """
    Open a pending connection from the caller's active profile.

    Returns (record, duplicate). An open connection of the same type
    between the same pair is returned instead of creating a second one.

    Raises:
        ConnectionValidationError: save type, self-connection, unknown
            recipient, or an inquiry not sent by a family
        EntitlementRequiredError: provider initiator without free quota
    """
    if data.type not in LIFECYCLE_CONNECTION_TYPES:
        raise ConnectionValidationError(
            f"Type must be one of: {', '.join(sorted(t.value for t in LIFECYCLE_CONNECTION_TYPES))}"
        )
    if data.to_profile_id == session.profile_id:
        raise ConnectionValidationError("Cannot connect with your own profile")
    if data.type == ConnectionType.INQUIRY and session.profile_type != ProfileType.FAMILY:
        raise ConnectionValidationError("Inquiries can only be sent from a family profile")

    recipient = _get_profile(db, data.to_profile_id)
    if not recipient:
        raise ConnectionValidationError("Recipient profile not found")

    existing = connection_store.find_open_duplicate(
        db, session.profile_id, data.to_profile_id, data.type
    )
    if existing:
        return existing, True

    unlock_account_id = None
    if session.is_provider:
        entitlement = entitlement_service.get_entitlement(db, session)
        if entitlement.free_connections_remaining is not None:
            if not entitlement_service.consume_free_connection(db, session.account_id):
                db.rollback()
                raise EntitlementRequiredError(
                    "Free connections used up. Upgrade to connect with more families."
                )
            unlock_account_id = session.account_id

    record = connection_store.create_connection(
        db,
        from_profile_id=session.profile_id,
        to_profile_id=data.to_profile_id,
        connection_type=data.type,
        message=data.message,
        notifications=(
            NotificationDraft(
                recipient_profile_id=data.to_profile_id,
                actor_profile_id=session.profile_id,
                event=ConnectionNotificationEvent.CONNECTION_REQUESTED,
            ),
        ),
        unlock_account_id=unlock_account_id,
    )
    logger.info("connection created", extra=_log_context(session, record.id))
    return record, False


# =============================================================================
# Lifecycle transitions
# =============================================================================

def _transition(
    db: Session,
    session: ProfileSession,
    connection_id: UUID,
    action: ConnectionAction,
) -> ConnectionRecord:
    actor = session.profile_id

    def mutate(current: ConnectionRecord, now: datetime) -> Mutation | None:
        role = party_role(current.from_profile_id, current.to_profile_id, actor)
        transition = resolve_transition(current.status, action, role)
        meta = current.metadata

        if action == ConnectionAction.HIDE:
            if meta.is_hidden_for(actor):
                return None
            return Mutation(
                status=current.status,
                metadata=meta.model_copy(update={"hidden_by": meta.hidden_by + (actor,)}),
            )

        updates: dict = {
            "thread": _append(
                current,
                ThreadEntry(
                    from_profile_id=actor,
                    text=transition.system_text,
                    created_at=now,
                    type=ThreadEntryType.SYSTEM,
                ),
            )
        }
        if transition.qualifier == "withdrawn":
            updates.update(withdrawn=True, withdrawn_at=now)
        elif transition.qualifier == "ended":
            updates.update(ended=True, ended_at=now, next_step_request=None)

        notifications = ()
        if action in _TRANSITION_EVENTS:
            notifications = (
                NotificationDraft(
                    recipient_profile_id=current.other_party(actor),
                    actor_profile_id=actor,
                    event=_TRANSITION_EVENTS[action],
                ),
            )
        return Mutation(
            status=transition.to_status,
            metadata=meta.model_copy(update=updates),
            notifications=notifications,
        )

    record = connection_store.apply_mutation(db, connection_id, mutate)
    logger.info(
        "connection %s -> %s", action.value, record.status.value,
        extra=_log_context(session, connection_id),
    )
    return record


def respond(
    db: Session,
    session: ProfileSession,
    connection_id: UUID,
    action: ConnectionAction | str,
) -> ConnectionRecord:
    """
    Recipient accepts or declines a pending connection.

    Allowed while gated. Accepting spends a free connection on it when the
    provider still has quota.
    """
    action = ConnectionAction(action)
    if action not in (ConnectionAction.ACCEPT, ConnectionAction.DECLINE):
        raise ConnectionValidationError("Action must be accept or decline")
    record = _transition(db, session, connection_id, action)
    if action == ConnectionAction.ACCEPT:
        entitlement_service.resolve_access(db, session, record, consume=True)
    return record


def withdraw(db: Session, session: ProfileSession, connection_id: UUID) -> ConnectionRecord:
    """Initiator cancels a pending request. The recipient is not notified."""
    return _transition(db, session, connection_id, ConnectionAction.WITHDRAW)


def end(db: Session, session: ProfileSession, connection_id: UUID) -> ConnectionRecord:
    """Either party ends an accepted connection; any pending next step is dropped."""
    return _transition(db, session, connection_id, ConnectionAction.END)


def hide(db: Session, session: ProfileSession, connection_id: UUID) -> ConnectionRecord:
    """Hide a past connection for the caller only. Idempotent."""
    return _transition(db, session, connection_id, ConnectionAction.HIDE)


# =============================================================================
# Message thread
# =============================================================================

def send_message(
    db: Session,
    session: ProfileSession,
    connection_id: UUID,
    text: str,
) -> ConnectionRecord:
    """
    Append a user message to the thread.

    Raises:
        ConnectionValidationError: blank or over MAX_MESSAGE_LENGTH
        ConnectionForbiddenError: caller is not a party
        EntitlementRequiredError: gated provider without access to this connection
        InvalidStateError: connection is no longer pending or accepted
    """
    text = (text or "").strip()
    if not text:
        raise ConnectionValidationError("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ConnectionValidationError(
            f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)"
        )

    actor = session.profile_id
    snapshot = get_connection(db, session, connection_id)
    if not entitlement_service.resolve_access(db, session, snapshot, consume=True):
        raise EntitlementRequiredError(
            "Upgrade your membership to message this family."
        )

    def mutate(current: ConnectionRecord, now: datetime) -> Mutation:
        _require_party(current, actor)
        if current.status not in OPEN_CONNECTION_STATUSES:
            raise InvalidStateError(
                f"Cannot send messages on a {current.status.value} connection"
            )
        entry = ThreadEntry(
            from_profile_id=actor,
            text=text,
            created_at=now,
            type=ThreadEntryType.MESSAGE,
        )
        return Mutation(
            status=current.status,
            metadata=current.metadata.model_copy(update={"thread": _append(current, entry)}),
            notifications=(
                NotificationDraft(
                    recipient_profile_id=current.other_party(actor),
                    actor_profile_id=actor,
                    event=ConnectionNotificationEvent.MESSAGE_RECEIVED,
                ),
            ),
        )

    return connection_store.apply_mutation(db, connection_id, mutate)


# =============================================================================
# Next-step negotiation
# =============================================================================

def request_next_step(
    db: Session,
    session: ProfileSession,
    connection_id: UUID,
    step_type: str,
    note: str | None = None,
) -> ConnectionRecord:
    """
    Ask for a call, consultation or home visit on an accepted connection.

    Only one request may be outstanding; cancel it before asking again.
    Gated providers are refused the same way as for messages.
    """
    try:
        step = NextStepType(step_type)
    except ValueError:
        raise ConnectionValidationError(
            "Invalid type. Must be call, consultation, or visit"
        ) from None
    note = (note or "").strip() or None
    if note and len(note) > MAX_NEXT_STEP_NOTE_LENGTH:
        raise ConnectionValidationError(
            f"Note is too long (max {MAX_NEXT_STEP_NOTE_LENGTH} characters)"
        )

    actor = session.profile_id
    snapshot = get_connection(db, session, connection_id)
    if not entitlement_service.resolve_access(db, session, snapshot, consume=True):
        raise EntitlementRequiredError(
            "Upgrade your membership to request next steps with this family."
        )

    def mutate(current: ConnectionRecord, now: datetime) -> Mutation:
        _require_party(current, actor)
        if current.status != ConnectionStatus.ACCEPTED:
            raise InvalidTransitionError("Next steps are only available on accepted connections")
        if current.metadata.next_step_request:
            raise InvalidTransitionError(
                "A next-step request is already pending. Cancel it first."
            )
        entry = ThreadEntry(
            from_profile_id=actor,
            text=next_step_request_text(session.display_name, step.value, note),
            created_at=now,
            type=ThreadEntryType.NEXT_STEP_REQUEST,
            next_step=step,
        )
        return Mutation(
            status=current.status,
            metadata=current.metadata.model_copy(
                update={
                    "thread": _append(current, entry),
                    "next_step_request": NextStepRequest(
                        type=step,
                        note=note,
                        requested_by_profile_id=actor,
                        created_at=now,
                    ),
                }
            ),
            notifications=(
                NotificationDraft(
                    recipient_profile_id=current.other_party(actor),
                    actor_profile_id=actor,
                    event=ConnectionNotificationEvent.NEXT_STEP_REQUESTED,
                    body=step.value,
                ),
            ),
        )

    return connection_store.apply_mutation(db, connection_id, mutate)


def cancel_next_step(
    db: Session,
    session: ProfileSession,
    connection_id: UUID,
) -> ConnectionRecord:
    """Either party withdraws the outstanding next-step request."""
    actor = session.profile_id

    def mutate(current: ConnectionRecord, now: datetime) -> Mutation:
        _require_party(current, actor)
        pending = current.metadata.next_step_request
        if current.status != ConnectionStatus.ACCEPTED or pending is None:
            raise InvalidTransitionError("No active request to cancel")
        entry = ThreadEntry(
            from_profile_id=actor,
            text=next_step_cancel_text(session.display_name, pending.type.value),
            created_at=now,
            type=ThreadEntryType.SYSTEM,
            next_step=pending.type,
        )
        return Mutation(
            status=current.status,
            metadata=current.metadata.model_copy(
                update={"thread": _append(current, entry), "next_step_request": None}
            ),
            notifications=(
                NotificationDraft(
                    recipient_profile_id=current.other_party(actor),
                    actor_profile_id=actor,
                    event=ConnectionNotificationEvent.NEXT_STEP_CANCELLED,
                    body=pending.type.value,
                ),
            ),
        )

    return connection_store.apply_mutation(db, connection_id, mutate)
