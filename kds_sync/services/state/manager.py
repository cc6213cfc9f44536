"""
Device State Manager

Owns the preparing/ready queues of every configured device.

Each operation takes the state lock for the mutation only, copies the
resulting snapshot out, releases the lock and then notifies listeners.
Listeners therefore never see a half-applied change and a slow listener
(an HTTP publish) never holds up other mutators.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from kds_sync.common.config import DeviceMapping
from kds_sync.common.logging_setup import get_service_logger, log_state_change
from kds_sync.common.timestamp import utc_now
from kds_sync.services.records import (
    Record,
    OrderDone,
    CheckClosed,
    DistributionState,
    DistributionStatus,
)
from .models import ChangeKind, DeviceState, Order, Snapshot, StateChange

logger = get_service_logger("state")

ChangeListener = Callable[[StateChange], Awaitable[None]]


class DeviceStateManager:
    """
    Authoritative in-memory state of all tracked devices.

    Invariant: a check number is held by at most one device, in at most
    one of its two lists.
    """

    def __init__(
        self,
        devices: list[DeviceMapping],
        ready_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ready_ttl = ready_ttl
        self.clock = clock

        self._devices: dict[str, DeviceState] = {
            d.device_id: DeviceState(device_id=d.device_id, device_name=d.name)
            for d in devices
        }
        self._lock = asyncio.Lock()
        self._listeners: list[ChangeListener] = []

    @property
    def device_ids(self) -> list[str]:
        return list(self._devices)

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_order(self, device_id: str, order: Order) -> bool:
        """Append an order to the device's preparing list."""
        changes: list[StateChange] = []

        async with self._lock:
            device = self._get_device(device_id)
            if device is None:
                return False

            if device.find(order.check_number) is not None:
                logger.debug(f"Check {order.check_number} already on {device_id}, ignoring")
                return False

            # Keep the one-location invariant if the check moved devices
            for other in self._devices.values():
                if other is not device and other.take(order.check_number) is not None:
                    changes.append(self._change(
                        ChangeKind.ORDER_REMOVED, other, (order.check_number,)
                    ))

            device.preparing.append(order)
            changes.append(self._change(ChangeKind.ORDER_ADDED, device, (order.check_number,)))

        await self._emit(changes)
        return True

    async def move_to_ready(self, device_id: str, check_number: str, done_at: datetime) -> bool:
        """
        Move an order from preparing to ready.

        An order this instance never saw as preparing (e.g. after a restart)
        is left alone.
        """
        async with self._lock:
            device = self._get_device(device_id)
            if device is None:
                return False

            index = next(
                (i for i, o in enumerate(device.preparing) if o.check_number == check_number),
                None,
            )
            if index is None:
                logger.info(f"Check {check_number} not preparing on {device_id}, ready ignored")
                return False

            order = device.preparing.pop(index).mark_done(done_at)
            device.ready.append(order)
            change = self._change(ChangeKind.ORDER_READY, device, (check_number,))

        await self._emit([change])
        return True

    async def remove_order(self, device_id: str, check_number: str) -> bool:
        """Remove an order from whichever of the device's lists holds it."""
        async with self._lock:
            device = self._get_device(device_id)
            if device is None:
                return False

            if device.take(check_number) is None:
                return False
            change = self._change(ChangeKind.ORDER_REMOVED, device, (check_number,))

        await self._emit([change])
        return True

    async def remove_check(self, check_number: str) -> bool:
        """Remove a check from whichever device holds it."""
        async with self._lock:
            change = None
            for device in self._devices.values():
                if device.take(check_number) is not None:
                    change = self._change(ChangeKind.ORDER_REMOVED, device, (check_number,))
                    break

        if change is None:
            return False
        await self._emit([change])
        return True

    async def expire_old_orders(
        self,
        device_id: str | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Drop ready orders that have been ready for at least the TTL.

        One ORDER_EXPIRED notification is emitted per affected device.

        Args:
            device_id: Limit the sweep to one device (default: all)
            now: Reference time (default: the manager's clock)

        Returns:
            Number of orders removed
        """
        now = now or self.clock()
        changes: list[StateChange] = []
        removed = 0

        async with self._lock:
            if device_id is None:
                devices = list(self._devices.values())
            else:
                device = self._get_device(device_id)
                devices = [device] if device else []

            for device in devices:
                expired = [
                    o for o in device.ready
                    if o.done_at is not None and now - o.done_at >= self.ready_ttl
                ]
                if not expired:
                    continue
                device.ready = [o for o in device.ready if o not in expired]
                removed += len(expired)
                changes.append(self._change(
                    ChangeKind.ORDER_EXPIRED,
                    device,
                    tuple(o.check_number for o in expired),
                    taken_at=now,
                ))

        if removed:
            logger.info(
                f"Expired {removed} ready orders on {len(changes)} devices",
                extra={"expired": removed, "devices": [c.device_id for c in changes]},
            )
        await self._emit(changes)
        return removed

    async def set_closed(self, device_id: str, closed: bool) -> bool:
        """Mark a device closed (or open again)."""
        async with self._lock:
            device = self._get_device(device_id)
            if device is None or device.closed == closed:
                return False
            device.closed = closed
            change = self._change(ChangeKind.DEVICE_STATUS, device)

        logger.info(f"Device {device_id} marked {'closed' if closed else 'open'}")
        await self._emit([change])
        return True

    async def clear(self) -> None:
        """Empty every queue without notifying. Used before a log replay."""
        async with self._lock:
            for device in self._devices.values():
                device.preparing.clear()
                device.ready.clear()

    async def apply(self, record: Record, at: datetime | None = None) -> bool:
        """
        Apply one parsed status record.

        Args:
            record: Parsed record
            at: Time of the record for shapes without a timestamp field
                (default: the manager's clock). Log replays pass the time
                estimated from neighbouring records.
        """
        if isinstance(record, OrderDone):
            return await self.move_to_ready(record.device_id, record.check_number, record.done_at)

        if isinstance(record, CheckClosed):
            return await self.remove_check(record.check_number)

        if isinstance(record, DistributionState):
            status = record.status
            if status is DistributionStatus.SENT:
                order = Order(check_number=record.check_number, created_at=at or self.clock())
                return await self.add_order(record.device_id, order)
            if status is DistributionStatus.DONE:
                return await self.move_to_ready(record.device_id, record.check_number, at or self.clock())
            if status is DistributionStatus.VOID:
                return await self.remove_order(record.device_id, record.check_number)
            logger.debug(f"Ignoring distribution state {record.state!r} for {record.check_number}")
            return False

        raise TypeError(f"Unsupported record type: {type(record).__name__}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def snapshot(self, device_id: str) -> Snapshot | None:
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            return device.snapshot(self.clock())

    async def snapshot_all(self) -> dict[str, Snapshot]:
        async with self._lock:
            taken_at = self.clock()
            return {
                device_id: device.snapshot(taken_at)
                for device_id, device in self._devices.items()
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_device(self, device_id: str) -> DeviceState | None:
        device = self._devices.get(device_id)
        if device is None:
            logger.debug(f"Ignoring change for unconfigured device {device_id}")
        return device

    def _change(
        self,
        kind: ChangeKind,
        device: DeviceState,
        check_numbers: tuple[str, ...] = (),
        taken_at: datetime | None = None,
    ) -> StateChange:
        return StateChange(
            kind=kind,
            device_id=device.device_id,
            snapshot=device.snapshot(taken_at or self.clock()),
            check_numbers=check_numbers,
        )

    async def _emit(self, changes: list[StateChange]) -> None:
        for change in changes:
            log_state_change(logger, change.kind.value, change.device_id, change.check_numbers)
            for listener in list(self._listeners):
                try:
                    await listener(change)
                except Exception as e:
                    logger.error(
                        f"State listener failed for {change.kind.value} on {change.device_id}: {e}",
                        exc_info=True,
                    )
