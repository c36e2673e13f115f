"""SQLAlchemy ORM models for accounts, profiles, memberships and connections."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careconnect.db.base import Base
from careconnect.db.enums import (
    ConnectionStatus,
    MembershipPlan,
    MembershipStatus,
)
from careconnect.db.types import JSONDocument


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Accounts & Profiles (read model owned by the account service)
# =============================================================================

class Account(Base):
    """
    A signed-in person.

    An account owns one or more profiles and acts as exactly one of them
    (the active profile) at a time.
    """
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Plain column: profiles already reference accounts
    active_profile_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class Profile(Base):
    """
    A party that can send or receive connections (family, organization, caregiver).

    Immutable for the connection engine; contact fields are only ever
    returned to viewers with full access.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_account_id", "account_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class Membership(Base):
    """
    Subscription state for an account (mirrored from billing).

    free_connections_used is the only column this engine writes: it is
    incremented once per inbound connection unlocked on the free tier.
    """
    __tablename__ = "memberships"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    plan: Mapped[str] = mapped_column(String(20), default=MembershipPlan.FREE.value, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=MembershipStatus.FREE.value, nullable=False
    )
    billing_cycle: Mapped[str | None] = mapped_column(String(20), nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    free_connections_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


# =============================================================================
# Connections
# =============================================================================

class Connection(Base):
    """
    A relationship attempt between two profiles.

    Writes go through connection_store.apply_mutation, which compare-and-sets
    on `revision` and bumps `updated_at` (the client sync cursor).
    Never hard-deleted; per-viewer suppression lives in meta.hidden_by.
    """
    __tablename__ = "connections"
    __table_args__ = (
        Index("ix_connections_from_profile", "from_profile_id", "updated_at"),
        Index("ix_connections_to_profile", "to_profile_id", "updated_at"),
        Index("ix_connections_pair_status", "from_profile_id", "to_profile_id", "type", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    from_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    to_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ConnectionStatus.PENDING.value, nullable=False
    )

    # Write-once snapshot captured at creation
    message: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    # Versioned side-record: qualifiers, thread, next-step slot
    meta: Mapped[dict] = mapped_column("metadata", JSONDocument, default=dict, nullable=False)

    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    from_profile: Mapped["Profile"] = relationship(foreign_keys=[from_profile_id])
    to_profile: Mapped["Profile"] = relationship(foreign_keys=[to_profile_id])


class ConnectionUnlock(Base):
    """
    Quota ledger: one row per inbound connection a free-tier provider opened.

    The unique constraint makes quota consumption idempotent per connection,
    so repeated views and polls never consume twice.
    """
    __tablename__ = "connection_unlocks"
    __table_args__ = (
        UniqueConstraint("account_id", "connection_id", name="uq_connection_unlock"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    connection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class ConnectionNotification(Base):
    """
    Outbox of connection events awaiting delivery.

    Rows are written in the same transaction as the mutation that caused
    them; a delivery worker stamps delivered_at.
    """
    __tablename__ = "connection_notifications"
    __table_args__ = (
        Index("ix_connection_notifications_recipient", "recipient_profile_id", "created_at"),
        Index("ix_connection_notifications_undelivered", "delivered_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    recipient_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    actor_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
