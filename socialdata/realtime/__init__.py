"""Live change notifications.

This module provides:
- Change events parsed from push-channel payloads
- The change-feed reconciler and its subscription handle
- An in-memory backend with a push channel
"""

from .events import ChangeEvent, ChangeOperation
from .memory import InMemoryBackend, InMemoryChannel
from .reconciler import ChangeFeedReconciler, SubscriptionHandle

__all__ = [
    "ChangeEvent",
    "ChangeOperation",
    "ChangeFeedReconciler",
    "SubscriptionHandle",
    "InMemoryBackend",
    "InMemoryChannel",
]
