"""
Device State

In-memory preparing/ready queues per device and their change notifications.
"""

from .models import ChangeKind, DeviceState, Order, Snapshot, StateChange
from .manager import ChangeListener, DeviceStateManager

__all__ = [
    "ChangeKind",
    "ChangeListener",
    "DeviceState",
    "DeviceStateManager",
    "Order",
    "Snapshot",
    "StateChange",
]
