"""
Tests for the pipeline startup protocol and live operation.
"""

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from kds_sync.common.exceptions import PublishError
from kds_sync.services.pipeline import PipelineOrchestrator, PipelineState
from kds_sync.services.state import DeviceStateManager


def write_log(config, lines):
    with open(config.log.path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")


def history(count):
    """`count` orders per device, every one sent and then done."""
    lines = []
    for i in range(count):
        for device_id in ("DEV1", "DEV2", "DEV3"):
            check = f"{device_id}-{i}"
            lines.append(f"3.0,{device_id},{check},sent")
            lines.append(f"1.0,{device_id},{check},2024-01-01T09:59:00Z")
    return lines


class LineWritingStateManager(DeviceStateManager):
    """Appends a status line during the startup expiry sweep."""

    def __init__(self, config, line, **kwargs):
        super().__init__(config.devices, **kwargs)
        self.config = config
        self.line = line

    async def expire_old_orders(self, now=None):
        if self.line:
            write_log(self.config, [self.line])
            self.line = None
        return await super().expire_old_orders(now)


@pytest.fixture
def orchestrator_factory(pipeline_config, endpoint, clock):
    def build(client):
        return PipelineOrchestrator(pipeline_config, http_client=client, clock=clock)
    return build


class TestStartup:
    """Backfill then one publish per device."""

    def test_startup_publishes_once_per_mapped_device(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, history(50))

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                state = orchestrator.state
                status = orchestrator.status()
                await orchestrator.stop()
                return state, status

        state, status = asyncio.run(run())

        assert state is PipelineState.RUNNING
        assert sorted(endpoint.paths) == ["/api/boards/cold", "/api/boards/hot"]
        assert status["replayed_records"] == 300
        assert status["startup_publishes"] == 2
        assert status["publish"]["suppressed"] > 0

        hot = endpoint.json_bodies("/api/boards/hot")[0]
        assert len(hot["ready"]) == 50
        assert hot["preparing"] == []

    def test_stale_ready_orders_are_expired_before_publish(
        self, pipeline_config, endpoint, orchestrator_factory, clock
    ):
        clock.advance(minutes=30)
        write_log(pipeline_config, [
            "3.0,DEV1,OLD,sent",
            "1.0,DEV1,OLD,2024-01-01T10:00:00Z",
            "3.0,DEV1,NEW,sent",
        ])

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                await orchestrator.stop()

        asyncio.run(run())

        hot = endpoint.json_bodies("/api/boards/hot")
        assert len(hot) == 1
        assert hot[0]["ready"] == []
        assert [o["id"] for o in hot[0]["preparing"]] == ["NEW"]

    def test_missing_log_still_publishes_empty_boards(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        assert not Path(pipeline_config.log.path).exists()

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                await orchestrator.stop()

        asyncio.run(run())

        assert len(endpoint.requests) == 2
        assert all(body["preparing"] == [] for body in endpoint.json_bodies())

    def test_replayed_done_uses_log_time(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, [
            "3.0,DEV1,STALE,sent",
            "3.0,DEV1,STALE,done",
            "1.0,DEV2,X,2024-01-01T08:00:00Z",
        ])

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                await orchestrator.stop()

        asyncio.run(run())

        hot = endpoint.json_bodies("/api/boards/hot")
        assert len(hot) == 1
        assert hot[0]["ready"] == []
        assert hot[0]["preparing"] == []

    def test_line_written_during_startup_is_applied_by_first_poll(
        self, pipeline_config, endpoint, clock
    ):
        write_log(pipeline_config, history(2))
        manager = LineWritingStateManager(
            pipeline_config,
            "3.0,DEV1,LATE,sent",
            ready_ttl=timedelta(minutes=5),
            clock=clock,
        )

        async def run():
            async with endpoint.client() as client:
                orchestrator = PipelineOrchestrator(
                    pipeline_config, state_manager=manager, http_client=client, clock=clock
                )
                await orchestrator.start()
                applied = await orchestrator.poll_once()
                snapshot = await manager.snapshot("DEV1")
                await orchestrator.stop()
                return applied, snapshot

        applied, snapshot = asyncio.run(run())

        assert applied == 1
        assert "LATE" in snapshot.check_numbers()


class TestLive:
    """Records appended after startup."""

    def test_new_line_publishes_its_device(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, history(5))

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                endpoint.reset()

                write_log(pipeline_config, ["3.0,DEV1,CHK100,sent"])
                applied = await orchestrator.poll_once()
                await orchestrator.stop()
                return applied

        assert asyncio.run(run()) == 1
        assert endpoint.paths == ["/api/boards/hot"]
        body = endpoint.json_bodies()[0]
        assert [o["id"] for o in body["preparing"]] == ["CHK100"]

    def test_historical_lines_are_not_replayed_live(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, history(5))

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                applied = await orchestrator.poll_once()
                await orchestrator.stop()
                return applied

        assert asyncio.run(run()) == 0
        assert len(endpoint.requests) == 2

    def test_expiry_publishes_shrunk_board(
        self, pipeline_config, endpoint, orchestrator_factory, clock
    ):
        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                write_log(pipeline_config, [
                    "3.0,DEV2,CHK1,sent",
                    "1.0,DEV2,CHK1,2024-01-01T10:00:00Z",
                ])
                await orchestrator.poll_once()
                endpoint.reset()

                clock.advance(minutes=6)
                removed = await orchestrator.expire_once()
                await orchestrator.stop()
                return removed

        assert asyncio.run(run()) == 1
        assert endpoint.paths == ["/api/boards/cold"]
        assert endpoint.json_bodies()[0]["ready"] == []

    def test_unmapped_device_is_tracked_but_not_published(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                endpoint.reset()
                write_log(pipeline_config, ["3.0,DEV3,CHK9,sent"])
                await orchestrator.poll_once()
                snapshot = await orchestrator.state_manager.snapshot("DEV3")
                await orchestrator.stop()
                return snapshot

        snapshot = asyncio.run(run())
        assert snapshot.check_numbers() == ["CHK9"]
        assert endpoint.requests == []

    def test_publish_failure_reaches_error_listeners(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        endpoint.status_codes["/api/boards/hot"] = 502
        errors = []

        async def listener(error):
            errors.append(error)

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                orchestrator.add_error_listener(listener)
                await orchestrator.start()
                await orchestrator.stop()

        asyncio.run(run())

        assert len(errors) == 1
        assert isinstance(errors[0], PublishError)
        assert errors[0].device_id == "DEV1"


class TestStop:
    """Shutdown behaviour."""

    def test_no_publish_after_stop(self, pipeline_config, endpoint, orchestrator_factory):
        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                await orchestrator.stop()
                endpoint.reset()
                await orchestrator.set_device_closed("DEV1", True)
                return orchestrator.state

        assert asyncio.run(run()) is PipelineState.STOPPED
        assert endpoint.requests == []

    def test_close_device_publishes_status(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                endpoint.reset()
                changed = await orchestrator.set_device_closed("DEV2", True)
                await orchestrator.stop()
                return changed

        assert asyncio.run(run()) is True
        assert endpoint.json_bodies("/api/boards/cold")[0]["status"] == "closed"

    def test_unknown_device_raises(self, pipeline_config, endpoint, orchestrator_factory):
        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.set_device_closed("NOPE", True)

        with pytest.raises(KeyError):
            asyncio.run(run())

    def test_restart_replays_and_republishes(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, history(3))

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await orchestrator.start()
                await orchestrator.stop()
                await orchestrator.start()
                status = orchestrator.status()
                await orchestrator.stop()
                return status

        status = asyncio.run(run())
        assert status["replayed_records"] == 18
        assert len(endpoint.requests) == 4

    def test_stop_during_start_leaves_pipeline_stopped(
        self, pipeline_config, endpoint, orchestrator_factory
    ):
        write_log(pipeline_config, history(3))

        async def run():
            async with endpoint.client() as client:
                orchestrator = orchestrator_factory(client)
                await asyncio.gather(orchestrator.start(), orchestrator.stop())
                return orchestrator.state, orchestrator.status()

        state, status = asyncio.run(run())

        assert state is PipelineState.STOPPED
        assert status["schedulers"] == {}
