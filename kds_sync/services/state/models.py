"""
Device State Dataclasses

Orders, per-device queues, immutable snapshots and change notifications.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Order:
    """One check on a device. Frozen so snapshots can share instances."""
    check_number: str
    created_at: datetime
    done_at: datetime | None = None

    def mark_done(self, done_at: datetime) -> "Order":
        return replace(self, done_at=done_at)


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time view of one device, safe to hand to other tasks"""
    device_id: str
    device_name: str
    preparing: tuple[Order, ...]
    ready: tuple[Order, ...]
    closed: bool
    taken_at: datetime

    @property
    def status(self) -> str:
        return "closed" if self.closed else "open"

    def check_numbers(self) -> list[str]:
        return [o.check_number for o in self.preparing + self.ready]


@dataclass
class DeviceState:
    """
    Mutable queues of one device.

    Only the DeviceStateManager touches instances, under its lock.
    """
    device_id: str
    device_name: str
    preparing: list[Order] = field(default_factory=list)
    ready: list[Order] = field(default_factory=list)
    closed: bool = False

    def find(self, check_number: str) -> tuple[list[Order], int] | None:
        """Return (list, index) holding the check, or None."""
        for orders in (self.preparing, self.ready):
            for i, order in enumerate(orders):
                if order.check_number == check_number:
                    return orders, i
        return None

    def take(self, check_number: str) -> Order | None:
        """Remove the check from whichever list holds it."""
        found = self.find(check_number)
        if found is None:
            return None
        orders, index = found
        return orders.pop(index)

    def snapshot(self, taken_at: datetime) -> Snapshot:
        return Snapshot(
            device_id=self.device_id,
            device_name=self.device_name,
            preparing=tuple(self.preparing),
            ready=tuple(self.ready),
            closed=self.closed,
            taken_at=taken_at,
        )


class ChangeKind(str, Enum):
    """Kinds of state change notifications"""
    ORDER_ADDED = "order_added"
    ORDER_READY = "order_ready"
    ORDER_REMOVED = "order_removed"
    ORDER_EXPIRED = "order_expired"
    DEVICE_STATUS = "device_status"


@dataclass(frozen=True)
class StateChange:
    """Emitted after every mutation, carrying the resulting snapshot"""
    kind: ChangeKind
    device_id: str
    snapshot: Snapshot
    check_numbers: tuple[str, ...] = ()
