"""Ingestion layer.

Adapters that turn record reads, change-feed events and local write-backs
into normalized :class:`~creditsync.state.events.ReplicaUpdate` patches.
"""

__all__: list[str] = []
