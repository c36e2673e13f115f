"""
Connection store - snapshot reads and compare-and-set writes.

Every write goes through apply_mutation():
  read snapshot -> pure mutate -> UPDATE ... WHERE revision = :seen
A lost compare-and-set re-reads and re-runs the mutation, so business
rules are always validated against the row that actually gets written.

Only this module turns SQLAlchemy failures into store errors.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterator, Sequence
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from careconnect.core.config import settings
from careconnect.core.connection_errors import (
    ConcurrencyConflictError,
    ConnectionNotFoundError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from careconnect.core.structured_logging import build_log_context
from careconnect.db.enums import (
    OPEN_CONNECTION_STATUSES,
    ConnectionStatus,
    ConnectionType,
)
from careconnect.db.models import Connection, ConnectionUnlock, utc_now
from careconnect.schemas.connection import (
    ConnectionMessage,
    ConnectionMetadata,
    ConnectionRecord,
)
from careconnect.services import notification_service
from careconnect.services.notification_service import NotificationDraft

logger = logging.getLogger(__name__)

_TIMEOUT_MARKERS = (
    "statement timeout",
    "canceling statement",
    "database is locked",
    "lock timeout",
)


@dataclass(frozen=True)
class Mutation:
    """Result of a pure mutate function: the row's next state."""

    status: ConnectionStatus
    metadata: ConnectionMetadata
    notifications: tuple[NotificationDraft, ...] = ()


# Receives the current snapshot and the timestamp the write will carry.
# Returning None means nothing to write.
Mutator = Callable[[ConnectionRecord, datetime], Mutation | None]


# =============================================================================
# Error mapping
# =============================================================================

def _is_timeout(exc: OperationalError) -> bool:
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "57014" or getattr(orig, "sqlstate", None) == "57014":
        return True
    message = str(orig or exc).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


@contextmanager
def store_errors(db: Session, connection_id: UUID | None = None) -> Iterator[None]:
    """Roll back and re-raise SQLAlchemy failures as store errors."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        context = build_log_context(connection_id=str(connection_id) if connection_id else None)
        if isinstance(exc, PoolTimeoutError) or (
            isinstance(exc, OperationalError) and _is_timeout(exc)
        ):
            logger.warning("connection store timeout", extra=context)
            raise StoreTimeoutError(
                f"Store did not respond within {settings.STORE_TIMEOUT_SECONDS:g}s"
            ) from exc
        logger.exception("connection store failure", extra=context)
        raise StoreUnavailableError("Connection store unavailable") from exc


# =============================================================================
# Reads
# =============================================================================

def _to_record(row: Connection) -> ConnectionRecord:
    return ConnectionRecord(
        id=row.id,
        from_profile_id=row.from_profile_id,
        to_profile_id=row.to_profile_id,
        type=ConnectionType(row.type),
        status=ConnectionStatus(row.status),
        message=ConnectionMessage.model_validate(row.message) if row.message else None,
        metadata=ConnectionMetadata.from_stored(
            row.meta, (row.from_profile_id, row.to_profile_id)
        ),
        revision=row.revision,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_connection(db: Session, connection_id: UUID) -> ConnectionRecord:
    """
    Latest committed snapshot of a connection.

    Raises:
        ConnectionNotFoundError: unknown id
    """
    with store_errors(db, connection_id):
        row = db.execute(
            select(Connection)
            .where(Connection.id == connection_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not row:
            raise ConnectionNotFoundError(f"Connection {connection_id} not found")
        return _to_record(row)


def find_open_duplicate(
    db: Session,
    from_profile_id: UUID,
    to_profile_id: UUID,
    connection_type: ConnectionType,
) -> ConnectionRecord | None:
    """Pending or accepted connection of the same type between the same directional pair."""
    with store_errors(db):
        row = db.execute(
            select(Connection)
            .where(
                Connection.from_profile_id == from_profile_id,
                Connection.to_profile_id == to_profile_id,
                Connection.type == connection_type.value,
                Connection.status.in_([s.value for s in OPEN_CONNECTION_STATUSES]),
            )
            .order_by(Connection.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        return _to_record(row) if row else None


def list_for_profile(db: Session, profile_id: UUID) -> list[ConnectionRecord]:
    """All lifecycle connections a profile is party to, most recently changed first."""
    with store_errors(db):
        rows = db.scalars(
            select(Connection)
            .where(
                or_(
                    Connection.from_profile_id == profile_id,
                    Connection.to_profile_id == profile_id,
                ),
                Connection.type != ConnectionType.SAVE.value,
            )
            .order_by(Connection.updated_at.desc())
        ).all()
        return [_to_record(row) for row in rows]


# =============================================================================
# Writes
# =============================================================================

def _next_updated_at(previous: datetime) -> datetime:
    """Sync cursor for the next write: now, but strictly after the last one."""
    return max(utc_now(), previous + timedelta(microseconds=1))


def create_connection(
    db: Session,
    *,
    from_profile_id: UUID,
    to_profile_id: UUID,
    connection_type: ConnectionType,
    message: ConnectionMessage | None,
    notifications: Sequence[NotificationDraft] = (),
    unlock_account_id: UUID | None = None,
) -> ConnectionRecord:
    """
    Insert a pending connection and commit.

    Anything the caller already staged on the session (quota increments)
    commits or rolls back with it. unlock_account_id records that account's
    access to the new connection in the quota ledger.
    """
    connection_id = uuid4()
    now = utc_now()
    with store_errors(db, connection_id):
        db.add(
            Connection(
                id=connection_id,
                from_profile_id=from_profile_id,
                to_profile_id=to_profile_id,
                type=connection_type.value,
                status=ConnectionStatus.PENDING.value,
                message=message.model_dump(mode="json", exclude_none=True) if message else None,
                meta=ConnectionMetadata().to_stored(),
                revision=1,
                created_at=now,
                updated_at=now,
            )
        )
        db.flush()
        if unlock_account_id:
            db.add(ConnectionUnlock(account_id=unlock_account_id, connection_id=connection_id))
        notification_service.enqueue(db, connection_id, notifications)
        db.commit()
    return get_connection(db, connection_id)


def apply_mutation(
    db: Session,
    connection_id: UUID,
    mutate: Mutator,
) -> ConnectionRecord:
    """
    Read-validate-write one connection under optimistic concurrency.

    `mutate` must be pure: it may raise domain errors, and it is re-run
    against a fresh snapshot after every lost compare-and-set.

    Raises:
        ConnectionNotFoundError: unknown id
        ConcurrencyConflictError: lost the race on every attempt
        StoreTimeoutError / StoreUnavailableError: store failure
    """
    attempts = settings.WRITE_CONFLICT_RETRIES + 1
    for attempt in range(1, attempts + 1):
        current = get_connection(db, connection_id)
        written_at = _next_updated_at(current.updated_at)
        change = mutate(current, written_at)
        if change is None:
            return current

        with store_errors(db, connection_id):
            result = db.execute(
                update(Connection)
                .where(
                    Connection.id == connection_id,
                    Connection.revision == current.revision,
                )
                .values(
                    {
                        Connection.status: change.status.value,
                        Connection.meta: change.metadata.to_stored(),
                        Connection.revision: current.revision + 1,
                        Connection.updated_at: written_at,
                    }
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                logger.info(
                    "connection write conflict (attempt %s/%s)",
                    attempt,
                    attempts,
                    extra=build_log_context(connection_id=str(connection_id)),
                )
                continue
            notification_service.enqueue(db, connection_id, change.notifications)
            db.commit()
        return get_connection(db, connection_id)

    raise ConcurrencyConflictError(connection_id, attempts)
