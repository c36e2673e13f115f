"""Connections router - lifecycle, thread and next-step endpoints."""

from datetime import datetime, timezone
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from careconnect.core.config import settings
from careconnect.core.deps import get_current_session, get_db, require_csrf_header
from careconnect.core.rate_limit import MESSAGE_LIMIT, limiter
from careconnect.schemas.auth import ProfileSession
from careconnect.schemas.connection import (
    ConnectionCreate,
    ConnectionCreateResponse,
    ConnectionListResponse,
    ConnectionRead,
    ConnectionRespond,
    EntitlementRead,
    MessageCreate,
    NextStepCreate,
)
from careconnect.services import connection_service, entitlement_service

router = APIRouter(prefix="/connections", tags=["Connections"])


# =============================================================================
# Create & list
# =============================================================================

@router.post(
    "",
    response_model=ConnectionCreateResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf_header)],
)
def create_connection(
    data: ConnectionCreate,
    response: Response,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionCreateResponse:
    """
    Send an inquiry, invitation or application.

    Returns 200 with duplicate=true when an open connection of the same
    type already exists between the two profiles.
    """
    record, duplicate = connection_service.create_connection(db, session, data)
    if duplicate:
        response.status_code = status.HTTP_200_OK
    return ConnectionCreateResponse(
        connection=connection_service.to_read(db, session, record),
        duplicate=duplicate,
    )


@router.get("", response_model=ConnectionListResponse)
def list_connections(
    tab: Literal["active", "connected", "past", "attention"] | None = Query(None),
    include_hidden: bool = Query(False),
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionListResponse:
    """List the caller's connections (hidden ones only when asked)."""
    items = connection_service.list_connections(
        db, session, tab=tab, include_hidden=include_hidden
    )
    return ConnectionListResponse(items=items, total=len(items))


@router.get("/entitlement", response_model=EntitlementRead)
def get_entitlement(
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> EntitlementRead:
    entitlement = entitlement_service.get_entitlement(db, session)
    return EntitlementRead(
        profile_type=session.profile_type,
        full_access_to_inbound_details=entitlement.full_access_to_inbound_details,
        free_connections_remaining=entitlement.free_connections_remaining,
        free_connection_limit=settings.FREE_CONNECTION_LIMIT,
    )


# =============================================================================
# Detail (polled by clients)
# =============================================================================

@router.get(
    "/{connection_id}",
    response_model=ConnectionRead,
    responses={304: {"description": "Not modified since `since`"}},
)
def get_connection(
    connection_id: UUID,
    since: datetime | None = Query(None, description="updated_at of the client's copy"),
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
):
    """
    Get a connection as the caller sees it.

    Pass the cached updated_at as `since` to get 304 when nothing changed.
    Viewing an inbound connection spends a free connection for gated providers.
    """
    record = connection_service.get_connection(db, session, connection_id)
    if since is not None:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        if since == record.updated_at:
            return Response(status_code=status.HTTP_304_NOT_MODIFIED)
    return connection_service.to_read(db, session, record, consume=True)


# =============================================================================
# Lifecycle
# =============================================================================

@router.post(
    "/{connection_id}/respond",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def respond(
    connection_id: UUID,
    data: ConnectionRespond,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    """Accept or decline a pending connection (recipient only)."""
    record = connection_service.respond(db, session, connection_id, data.action)
    return connection_service.to_read(db, session, record)


@router.post(
    "/{connection_id}/withdraw",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def withdraw(
    connection_id: UUID,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    record = connection_service.withdraw(db, session, connection_id)
    return connection_service.to_read(db, session, record)


@router.post(
    "/{connection_id}/end",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def end(
    connection_id: UUID,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    record = connection_service.end(db, session, connection_id)
    return connection_service.to_read(db, session, record)


@router.post(
    "/{connection_id}/hide",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def hide(
    connection_id: UUID,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    """Hide a past connection from the caller's lists."""
    record = connection_service.hide(db, session, connection_id)
    return connection_service.to_read(db, session, record)


# =============================================================================
# Thread & next steps
# =============================================================================

@router.post(
    "/{connection_id}/messages",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(MESSAGE_LIMIT)
def send_message(
    request: Request,
    connection_id: UUID,
    data: MessageCreate,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    """Append a message. Not idempotent: clients must not blindly retry."""
    record = connection_service.send_message(db, session, connection_id, data.text)
    return connection_service.to_read(db, session, record)


@router.post(
    "/{connection_id}/next-step",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def request_next_step(
    connection_id: UUID,
    data: NextStepCreate,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    record = connection_service.request_next_step(
        db, session, connection_id, data.type, data.note
    )
    return connection_service.to_read(db, session, record)


@router.delete(
    "/{connection_id}/next-step",
    response_model=ConnectionRead,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_next_step(
    connection_id: UUID,
    db: Session = Depends(get_db),
    session: ProfileSession = Depends(get_current_session),
) -> ConnectionRead:
    record = connection_service.cancel_next_step(db, session, connection_id)
    return connection_service.to_read(db, session, record)
