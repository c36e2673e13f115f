"""Tests for the versioned connection metadata."""

import uuid
from datetime import datetime, timezone

from careconnect.db.enums import ThreadEntryType
from careconnect.schemas.connection import METADATA_SCHEMA_VERSION, ConnectionMetadata


def test_legacy_shared_hidden_flag_hides_for_both_parties():
    a, b = uuid.uuid4(), uuid.uuid4()
    meta = ConnectionMetadata.from_stored({"hidden": True, "withdrawn": True}, (a, b))

    assert meta.schema_version == METADATA_SCHEMA_VERSION
    assert meta.is_hidden_for(a)
    assert meta.is_hidden_for(b)
    assert meta.withdrawn is True
    assert "hidden" not in meta.to_stored()


def test_legacy_thread_entries_default_to_messages():
    a, b = uuid.uuid4(), uuid.uuid4()
    raw = {
        "thread": [
            {"from_profile_id": str(a), "text": "Hello", "created_at": "2025-01-02T10:00:00+00:00"},
        ],
        "next_step_request": {"type": "call", "note": None, "created_at": "2025-01-03T10:00:00+00:00"},
    }
    meta = ConnectionMetadata.from_stored(raw, (a, b))

    assert meta.thread[0].type == ThreadEntryType.MESSAGE
    assert meta.next_step_request.requested_by_profile_id is None


def test_current_version_is_read_as_is():
    a, b = uuid.uuid4(), uuid.uuid4()
    stored = ConnectionMetadata(hidden_by=(a,)).to_stored()

    meta = ConnectionMetadata.from_stored(stored, (a, b))

    assert meta.is_hidden_for(a)
    assert not meta.is_hidden_for(b)


def test_empty_metadata():
    a, b = uuid.uuid4(), uuid.uuid4()
    meta = ConnectionMetadata.from_stored(None, (a, b))

    assert meta.thread == ()
    assert meta.next_step_request is None
    assert meta.hidden_by == ()


def test_stored_form_is_json_safe():
    a = uuid.uuid4()
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    stored = ConnectionMetadata(withdrawn=True, withdrawn_at=now, hidden_by=(a,)).to_stored()

    assert stored["hidden_by"] == [str(a)]
    assert stored["withdrawn_at"].startswith("2026-01-01T00:00:00")
