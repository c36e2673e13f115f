"""
Entitlement gate - who may see inbound connection details.

evaluate_entitlement() is a pure function of (profile type, membership).
The rest of this module applies it to a specific connection, consuming
one free connection per distinct inbound connection through the
connection_unlocks ledger.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from careconnect.core.config import settings
from careconnect.core.structured_logging import build_log_context
from careconnect.db.enums import MembershipStatus, ProfileType
from careconnect.db.models import ConnectionUnlock, Membership, utc_now
from careconnect.schemas.auth import ProfileSession
from careconnect.schemas.connection import ConnectionRecord
from careconnect.services.connection_store import store_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    full_access_to_inbound_details: bool
    free_connections_remaining: int | None  # None = unlimited


def evaluate_entitlement(
    profile_type: ProfileType | str,
    membership: Membership | None,
    *,
    free_connection_limit: int | None = None,
) -> Entitlement:
    """
    Map (profile type, membership) to the caller's capabilities.

    Families are never gated. Providers with an active membership are
    unlimited; everyone else gets FREE_CONNECTION_LIMIT inbound connections.
    A missing membership counts as free with nothing used.
    """
    limit = settings.FREE_CONNECTION_LIMIT if free_connection_limit is None else free_connection_limit
    if not ProfileType(profile_type).is_provider:
        return Entitlement(full_access_to_inbound_details=True, free_connections_remaining=None)
    if membership and membership.status == MembershipStatus.ACTIVE.value:
        return Entitlement(full_access_to_inbound_details=True, free_connections_remaining=None)

    used = membership.free_connections_used if membership else 0
    remaining = max(0, limit - used)
    return Entitlement(
        full_access_to_inbound_details=remaining > 0,
        free_connections_remaining=remaining,
    )


def get_membership(db: Session, account_id: UUID) -> Membership | None:
    with store_errors(db):
        return db.execute(
            select(Membership)
            .where(Membership.account_id == account_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()


def get_entitlement(db: Session, session: ProfileSession) -> Entitlement:
    return evaluate_entitlement(session.profile_type, get_membership(db, session.account_id))


def is_gated_view(session: ProfileSession, record: ConnectionRecord) -> bool:
    """Gating applies only to a provider looking at a connection sent to them."""
    return session.is_provider and record.to_profile_id == session.profile_id


def has_unlocked(db: Session, account_id: UUID, connection_id: UUID) -> bool:
    with store_errors(db, connection_id):
        return (
            db.execute(
                select(ConnectionUnlock.id).where(
                    ConnectionUnlock.account_id == account_id,
                    ConnectionUnlock.connection_id == connection_id,
                )
            ).first()
            is not None
        )


def consume_free_connection(db: Session, account_id: UUID) -> bool:
    """
    Atomically take one unit of free quota. Does not commit.

    The conditional UPDATE is the only place free_connections_used grows,
    so concurrent unlocks can never push it past the limit.
    """
    with store_errors(db):
        if get_membership(db, account_id) is None:
            db.add(Membership(account_id=account_id))
            db.flush()
        result = db.execute(
            update(Membership)
            .where(
                Membership.account_id == account_id,
                Membership.free_connections_used < settings.FREE_CONNECTION_LIMIT,
            )
            .values(
                free_connections_used=Membership.free_connections_used + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def unlock_connection(db: Session, account_id: UUID, connection_id: UUID) -> bool:
    """
    Spend one free connection on `connection_id` and commit.

    Returns False when the quota is exhausted. A concurrent unlock of the
    same connection wins the ledger row and this call spends nothing.
    """
    if not consume_free_connection(db, account_id):
        db.rollback()
        return False
    db.add(ConnectionUnlock(account_id=account_id, connection_id=connection_id))
    with store_errors(db, connection_id):
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(
                "connection already unlocked",
                extra=build_log_context(
                    account_id=str(account_id), connection_id=str(connection_id)
                ),
            )
            return True
    logger.info(
        "free connection consumed",
        extra=build_log_context(account_id=str(account_id), connection_id=str(connection_id)),
    )
    return True


def resolve_access(
    db: Session,
    session: ProfileSession,
    record: ConnectionRecord,
    *,
    consume: bool,
) -> bool:
    """
    Whether `session` sees `record` unredacted.

    With consume=True a gated provider with quota left unlocks the
    connection; repeated calls for the same connection never consume twice.
    """
    if not is_gated_view(session, record):
        return True
    if has_unlocked(db, session.account_id, record.id):
        return True
    entitlement = get_entitlement(db, session)
    if entitlement.free_connections_remaining is None:
        return True
    if not consume or not entitlement.full_access_to_inbound_details:
        return False
    return unlock_connection(db, session.account_id, record.id)


def access_map(
    db: Session,
    session: ProfileSession,
    records: list[ConnectionRecord],
) -> dict[UUID, bool]:
    """Full-access flag per connection for list views. Never consumes quota."""
    access = {record.id: True for record in records}
    gated = [record.id for record in records if is_gated_view(session, record)]
    if not gated:
        return access
    if get_entitlement(db, session).free_connections_remaining is None:
        return access
    with store_errors(db):
        unlocked = set(
            db.scalars(
                select(ConnectionUnlock.connection_id).where(
                    ConnectionUnlock.account_id == session.account_id,
                    ConnectionUnlock.connection_id.in_(gated),
                )
            )
        )
    for connection_id in gated:
        access[connection_id] = connection_id in unlocked
    return access
