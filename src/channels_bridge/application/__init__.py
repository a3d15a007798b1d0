"""Application layer."""

from channels_bridge.application.notification import NotificationService
from channels_bridge.application.pending import (
    DeliveryTimeoutError,
    PendingRequestError,
    PendingRequestStore,
    PermissionTimeoutError,
    StoreClearedError,
)
from channels_bridge.application.permission import PermissionService
from channels_bridge.application.remote import RemoteController

__all__ = [
    "NotificationService",
    "DeliveryTimeoutError",
    "PendingRequestError",
    "PendingRequestStore",
    "PermissionService",
    "PermissionTimeoutError",
    "RemoteController",
    "StoreClearedError",
]
