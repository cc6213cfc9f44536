"""
Pipeline Orchestrator

Wires tailer, parser, state manager, publisher and content sync into a
running pipeline and owns the start/stop sequences.

Startup protocol:
    STOPPED -> BACKFILLING   suppress publishing, replay the whole log
    BACKFILLING -> PUBLISHING one expiry sweep, lift suppression, skip to end
    PUBLISHING -> RUNNING     one publish per mapped device, start timers
    RUNNING -> STOPPING -> STOPPED

A restart against a log with N historical records therefore costs one
HTTP call per device, not one per record.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from kds_sync.common.config import PipelineConfig
from kds_sync.common.exceptions import KdsSyncError
from kds_sync.common.logging_setup import get_service_logger
from kds_sync.common.scheduler import SchedulerGroup
from kds_sync.common.timestamp import utc_now
from kds_sync.services.content import (
    ContentSource,
    ContentSyncManager,
    FileContentSource,
    SyncSummary,
)
from kds_sync.services.publish import SnapshotPublisher
from kds_sync.services.records import Record, RecordParser, replay_times
from kds_sync.services.state import DeviceStateManager, StateChange
from kds_sync.services.tail import LogTailer

logger = get_service_logger("pipeline")

ErrorListener = Callable[[KdsSyncError], Awaitable[None]]


class PipelineState(str, Enum):
    """Lifecycle states of the pipeline"""
    STOPPED = "stopped"
    BACKFILLING = "backfilling"
    PUBLISHING = "publishing"
    RUNNING = "running"
    STOPPING = "stopping"


class PipelineOrchestrator:
    """
    Owns every pipeline component and the periodic tasks driving them.

    Components can be injected (tests, embedding hosts); anything not
    given is built from the configuration.
    """

    def __init__(
        self,
        config: PipelineConfig,
        tailer: LogTailer | None = None,
        parser: RecordParser | None = None,
        state_manager: DeviceStateManager | None = None,
        publisher: SnapshotPublisher | None = None,
        content_sync: ContentSyncManager | None = None,
        content_source: ContentSource | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config

        self.tailer = tailer or LogTailer(config.log.path, encoding=config.log.encoding)
        self.parser = parser or RecordParser(delimiter=config.log.delimiter)
        self.state_manager = state_manager or DeviceStateManager(
            config.devices,
            ready_ttl=timedelta(minutes=config.ready_ttl_minutes),
            clock=clock,
        )
        self.publisher = publisher or SnapshotPublisher(
            config.endpoint,
            config.devices,
            client=http_client,
        )
        self.content_sync = content_sync or ContentSyncManager(
            config.endpoint,
            config.content.mappings,
            source=content_source or FileContentSource(Path(config.content.source_dir or ".")),
            client=http_client,
        )

        # Route component failures to the error channel
        if self.publisher.on_error is None:
            self.publisher.on_error = self._notify_error
        if self.content_sync.on_error is None:
            self.content_sync.on_error = self._notify_error

        self.state_manager.add_listener(self._on_state_change)

        self._state = PipelineState.STOPPED
        self._schedulers = SchedulerGroup()
        self._error_listeners: list[ErrorListener] = []
        # One lock per device keeps its publishes in mutation order
        self._publish_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Timer ticks and manual polls share the cursor
        self._tail_lock = asyncio.Lock()
        # start() and stop() never interleave
        self._lifecycle_lock = asyncio.Lock()

        self._started_at: datetime | None = None
        self._replayed_records = 0
        self._startup_publishes = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    def _set_state(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline {self._state.value} -> {state.value}")
        self._state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, unattended: bool = False) -> None:
        """
        Run the startup protocol and begin live tailing.

        Args:
            unattended: Set by hosts starting without an operator; only logged
        """
        async with self._lifecycle_lock:
            await self._start(unattended)

    async def _start(self, unattended: bool) -> None:
        if self._state is not PipelineState.STOPPED:
            logger.warning(f"Start ignored, pipeline is {self._state.value}")
            return

        logger.info(
            f"Starting pipeline ({len(self.config.devices)} devices, log {self.tailer.path})",
            extra={"unattended": unattended},
        )
        self._started_at = utc_now()

        # 1. Backfill quietly
        self._set_state(PipelineState.BACKFILLING)
        self.publisher.suppressed = True
        await self.state_manager.clear()
        async with self._tail_lock:
            self._replayed_records = await self._backfill()

            # 2. Drop stale ready orders before anything is published
            self._set_state(PipelineState.PUBLISHING)
            await self.state_manager.expire_old_orders()
            self.publisher.suppressed = False
            # Lines appended since the backfill read stay for the first live poll
            await self._run_blocking(self.tailer.skip_to_end)

        # 3. One consolidated publish per device
        self._startup_publishes = await self.publish_all()

        # 4. Live operation
        self._start_schedulers()
        await self._schedulers.start_all()
        self._set_state(PipelineState.RUNNING)

        logger.info(
            f"Pipeline running: replayed {self._replayed_records} records, "
            f"{self._startup_publishes} startup publishes",
            extra={
                "replayed": self._replayed_records,
                "startup_publishes": self._startup_publishes,
            },
        )

    async def stop(self, unattended: bool = False) -> None:
        """
        Stop timers and release HTTP clients.

        In-flight ticks get `stop_timeout_s` to finish before being cancelled.
        A stop requested during startup waits for the startup to finish.
        """
        async with self._lifecycle_lock:
            await self._stop(unattended)

    async def _stop(self, unattended: bool) -> None:
        if self._state in (PipelineState.STOPPED, PipelineState.STOPPING):
            return

        logger.info("Stopping pipeline", extra={"unattended": unattended})
        self._set_state(PipelineState.STOPPING)

        await self._schedulers.shutdown_all(timeout=self.config.stop_timeout_s)
        self._schedulers.clear()

        await self.publisher.close()
        await self.content_sync.close()

        self._set_state(PipelineState.STOPPED)
        logger.info("Pipeline stopped")

    async def _backfill(self) -> int:
        """Replay every complete line already in the log."""
        self.tailer.reset_to_beginning()
        lines = await self._run_blocking(self.tailer.poll)
        records = self._parse_lines(lines)
        # Replayed records are stamped with log time, not restart time
        applied = await self._apply_records(records, replay_times(records))
        logger.info(
            f"Backfill read {len(lines)} lines, applied {applied} records",
            extra={"lines": len(lines), "applied": applied},
        )
        return applied

    def _start_schedulers(self) -> None:
        self._schedulers.add("tail", self.config.poll_interval_s, self.poll_once)
        self._schedulers.add("expiry", self.config.expiry_interval_s, self.expire_once)
        if self.content_sync.mappings:
            self._schedulers.add(
                "content", self.config.content.sync_interval_s, self.sync_content_once
            )

    # ------------------------------------------------------------------
    # Periodic work (scheduler callbacks, also callable directly)
    # ------------------------------------------------------------------

    async def poll_once(self) -> int:
        """Read new lines and apply them. Returns records applied."""
        async with self._tail_lock:
            lines = await self._run_blocking(self.tailer.poll)
            if not lines:
                return 0
            return await self._apply_lines(lines)

    async def expire_once(self) -> int:
        return await self.state_manager.expire_old_orders()

    async def sync_content_once(self) -> SyncSummary:
        return await self.content_sync.sync_once()

    async def publish_all(self) -> int:
        """Publish the current snapshot of every mapped device once."""
        published = 0
        snapshots = await self.state_manager.snapshot_all()
        for device in self.config.get_mapped_devices():
            snapshot = snapshots.get(device.device_id)
            if snapshot is None:
                continue
            async with self._publish_locks[device.device_id]:
                if await self.publisher.publish(snapshot):
                    published += 1
        return published

    def _parse_lines(self, lines: list[str]) -> list[Record]:
        records = (self.parser.parse(line) for line in lines)
        return [r for r in records if r is not None]

    async def _apply_lines(self, lines: list[str]) -> int:
        return await self._apply_records(self._parse_lines(lines))

    async def _apply_records(
        self,
        records: list[Record],
        times: list[datetime | None] | None = None,
    ) -> int:
        applied = 0
        for i, record in enumerate(records):
            try:
                await self.state_manager.apply(record, at=times[i] if times else None)
                applied += 1
            except Exception as e:
                logger.error(f"Failed to apply record {record.raw!r}: {e}", exc_info=True)
        return applied

    async def _on_state_change(self, change: StateChange) -> None:
        if self._state in (PipelineState.STOPPING, PipelineState.STOPPED):
            logger.debug(f"Pipeline {self._state.value}, not publishing {change.device_id}")
            return
        async with self._publish_locks[change.device_id]:
            await self.publisher.publish(change.snapshot)

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def force_content_sync(self) -> SyncSummary:
        """Clear content digests and upload every mapping again."""
        return await self.content_sync.force_sync()

    async def set_device_closed(self, device_id: str, closed: bool) -> bool:
        """Mark a device closed/open; a running pipeline publishes the change."""
        if device_id not in self.state_manager.device_ids:
            raise KeyError(device_id)
        return await self.state_manager.set_closed(device_id, closed)

    # ------------------------------------------------------------------
    # Error notifications
    # ------------------------------------------------------------------

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    async def _notify_error(self, error: KdsSyncError) -> None:
        for listener in list(self._error_listeners):
            try:
                await listener(error)
            except Exception as e:
                logger.error(f"Error listener failed: {e}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_blocking(self, func, *args):
        """Run blocking file I/O in a thread to avoid blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "replayed_records": self._replayed_records,
            "startup_publishes": self._startup_publishes,
            "suppressed": self.publisher.suppressed,
            "tail": self.tailer.get_status(),
            "parser": self.parser.stats.to_dict(),
            "publish": self.publisher.stats.to_dict(),
            "content": self.content_sync.get_status(),
            "schedulers": self._schedulers.get_stats(),
        }
