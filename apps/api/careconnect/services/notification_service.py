"""
Notification Service - connection event outbox.

Mutations hand NotificationDraft values to the store, which writes them in
the same transaction as the connection update. Delivery (email, push)
runs elsewhere and reads undelivered rows.
"""

from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from careconnect.db.enums import ConnectionNotificationEvent
from careconnect.db.models import ConnectionNotification


@dataclass(frozen=True)
class NotificationDraft:
    """A notification to write alongside a connection mutation."""

    recipient_profile_id: UUID
    actor_profile_id: UUID
    event: ConnectionNotificationEvent
    body: str | None = None


def enqueue(
    db: Session,
    connection_id: UUID,
    drafts: Iterable[NotificationDraft],
) -> list[ConnectionNotification]:
    """Add outbox rows to the session. The caller commits."""
    rows = [
        ConnectionNotification(
            connection_id=connection_id,
            recipient_profile_id=draft.recipient_profile_id,
            actor_profile_id=draft.actor_profile_id,
            event=draft.event.value,
            body=draft.body,
        )
        for draft in drafts
    ]
    db.add_all(rows)
    return rows


def get_pending(
    db: Session,
    recipient_profile_id: UUID | None = None,
    limit: int = 100,
) -> list[ConnectionNotification]:
    """Undelivered notifications, oldest first."""
    stmt = select(ConnectionNotification).where(ConnectionNotification.delivered_at.is_(None))
    if recipient_profile_id:
        stmt = stmt.where(ConnectionNotification.recipient_profile_id == recipient_profile_id)
    stmt = stmt.order_by(ConnectionNotification.created_at).limit(limit)
    return list(db.scalars(stmt))


def get_for_connection(db: Session, connection_id: UUID) -> list[ConnectionNotification]:
    stmt = (
        select(ConnectionNotification)
        .where(ConnectionNotification.connection_id == connection_id)
        .order_by(ConnectionNotification.created_at)
    )
    return list(db.scalars(stmt))

