"""Notification-related enums."""

from enum import Enum


class ConnectionNotificationEvent(str, Enum):
    """Connection events that produce a notification for the other party."""

    CONNECTION_REQUESTED = "connection_requested"  # New inbound request
    CONNECTION_ACCEPTED = "connection_accepted"
    CONNECTION_DECLINED = "connection_declined"
    CONNECTION_ENDED = "connection_ended"
    MESSAGE_RECEIVED = "message_received"
    NEXT_STEP_REQUESTED = "next_step_requested"
    NEXT_STEP_CANCELLED = "next_step_cancelled"
