"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access
from careconnect.services import notification_service
from careconnect.services import connection_store
from careconnect.services import entitlement_service
from careconnect.services import connection_service

__all__ = [
    "notification_service",
    "connection_store",
    "entitlement_service",
    "connection_service",
]
