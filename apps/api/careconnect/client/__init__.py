"""Client helpers for consumers of the connections API."""

from careconnect.client.sync_poller import ConnectionSyncPoller

__all__ = ["ConnectionSyncPoller"]
