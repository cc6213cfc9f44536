"""
Tests for content hashing and upload sync.
"""

import asyncio

import pytest

from kds_sync.common.config import ContentMapping
from kds_sync.common.exceptions import SyncError
from kds_sync.services.content import (
    ContentHashTracker,
    ContentSyncManager,
    FileContentSource,
    content_digest,
)


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "content"
    path.mkdir()
    (path / "menu.json").write_bytes(b'{"items": []}')
    (path / "logo.png").write_bytes(b"\x89PNG....")
    return path


def run_cycles(endpoint, endpoint_settings, mappings, source_dir, steps, errors=None):
    """Run sync steps ("sync", "force" or a callable) against one manager."""
    async def on_error(error):
        errors.append(error)

    async def run():
        results = []
        async with endpoint.client() as client:
            manager = ContentSyncManager(
                endpoint_settings,
                mappings,
                source=FileContentSource(source_dir),
                client=client,
                on_error=on_error if errors is not None else None,
            )
            for step in steps:
                if step == "sync":
                    results.append(await manager.sync_once())
                elif step == "force":
                    results.append(await manager.force_sync())
                else:
                    step(manager)
        return results

    return asyncio.run(run())


class TestHashTracker:

    def test_unknown_destination_has_changed(self):
        assert ContentHashTracker().has_changed("/a", b"x") is True

    def test_recorded_content_is_unchanged(self):
        tracker = ContentHashTracker()
        tracker.record_success("/a", b"x")
        assert tracker.has_changed("/a", b"x") is False
        assert tracker.has_changed("/a", b"y") is True
        assert tracker.digest("/a") == content_digest(b"x")

    def test_destinations_are_independent(self):
        tracker = ContentHashTracker()
        tracker.record_success("/a", b"x")
        assert tracker.has_changed("/b", b"x") is True


class TestFileContentSource:

    def test_reads_relative_key(self, source_dir):
        assert FileContentSource(source_dir).read("menu.json") == b'{"items": []}'

    def test_rejects_escaping_key(self, source_dir):
        with pytest.raises(PermissionError):
            FileContentSource(source_dir).read("../secrets.txt")


class TestContentSync:
    """Upload cycles."""

    def test_unchanged_content_is_uploaded_once(self, endpoint, endpoint_settings, source_dir):
        mappings = [ContentMapping("menu.json", "/content/menu.json")]
        first, second = run_cycles(
            endpoint, endpoint_settings, mappings, source_dir, ["sync", "sync"]
        )

        assert (first.attempted, first.succeeded) == (1, 1)
        assert (second.attempted, second.unchanged) == (0, 1)
        assert endpoint.paths == ["/content/menu.json"]

        request = endpoint.requests[0]
        assert request.content == b'{"items": []}'
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["X-API-Key"] == "secret"

    def test_changed_content_is_uploaded_again(self, endpoint, endpoint_settings, source_dir):
        mappings = [ContentMapping("menu.json", "/content/menu.json")]

        def edit(manager):
            (source_dir / "menu.json").write_bytes(b'{"items": ["soup"]}')

        run_cycles(endpoint, endpoint_settings, mappings, source_dir, ["sync", edit, "sync"])

        assert len(endpoint.requests) == 2
        assert endpoint.requests[1].content == b'{"items": ["soup"]}'

    def test_force_sync_uploads_everything(self, endpoint, endpoint_settings, source_dir):
        mappings = [
            ContentMapping("menu.json", "/content/menu.json"),
            ContentMapping("logo.png", "/content/logo.png"),
        ]
        _, _, forced = run_cycles(
            endpoint, endpoint_settings, mappings, source_dir, ["sync", "sync", "force"]
        )

        assert forced.succeeded == 2
        assert len(endpoint.requests) == 4

    def test_fan_out_uploads_each_destination(
        self, endpoint, endpoint_settings, content_mappings, source_dir
    ):
        (summary,) = run_cycles(
            endpoint, endpoint_settings, content_mappings, source_dir, ["sync"]
        )

        assert summary.succeeded == 3
        assert sorted(endpoint.paths) == [
            "/content/a/menu.json",
            "/content/b/menu.json",
            "/content/c/menu.json",
        ]

    def test_failed_destination_retries_next_cycle(
        self, endpoint, endpoint_settings, content_mappings, source_dir
    ):
        endpoint.status_codes["/content/b/menu.json"] = 503
        errors = []

        def recover(manager):
            endpoint.status_codes.clear()

        first, second = run_cycles(
            endpoint, endpoint_settings, content_mappings, source_dir,
            ["sync", recover, "sync"],
            errors=errors,
        )

        assert (first.succeeded, first.failed) == (2, 1)
        assert first.to_dict()["failures"] == [
            {"destination_path": "/content/b/menu.json", "error": "HTTP 503"}
        ]
        assert (second.attempted, second.succeeded, second.unchanged) == (1, 1, 2)
        assert endpoint.paths[-1] == "/content/b/menu.json"
        assert len(errors) == 1
        assert isinstance(errors[0], SyncError)
        assert errors[0].operation == "upload"

    def test_missing_source_does_not_block_others(self, endpoint, endpoint_settings, source_dir):
        mappings = [
            ContentMapping("missing.json", "/content/missing.json"),
            ContentMapping("logo.png", "/content/logo.png"),
        ]
        errors = []

        (summary,) = run_cycles(
            endpoint, endpoint_settings, mappings, source_dir, ["sync"], errors=errors
        )

        assert summary.failed == 1
        assert summary.succeeded == 1
        assert endpoint.paths == ["/content/logo.png"]
        assert errors[0].operation == "read"

    def test_concurrent_cycles_do_not_double_upload(
        self, endpoint, endpoint_settings, source_dir
    ):
        mappings = [ContentMapping("menu.json", "/content/menu.json")]

        async def run():
            async with endpoint.client() as client:
                manager = ContentSyncManager(
                    endpoint_settings,
                    mappings,
                    source=FileContentSource(source_dir),
                    client=client,
                )
                return await asyncio.gather(manager.sync_once(), manager.sync_once())

        first, second = asyncio.run(run())

        assert first.succeeded + second.succeeded == 1
        assert len(endpoint.requests) == 1
