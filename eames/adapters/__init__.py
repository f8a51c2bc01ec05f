"""Adapters between the engine and its frontends.

Lifecycle events, the event bus that carries them, and the store for
remembered tool approvals.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "PermissionStore",
]

from eames.adapters.event_bus import EventBus
from eames.adapters.permission_store import PermissionStore
