"""
Shared fixtures for kds-sync tests.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from kds_sync.common.config import (
    ContentMapping,
    ContentSettings,
    ControlSettings,
    DeviceMapping,
    EndpointSettings,
    PipelineConfig,
    TailSettings,
)


class FakeClock:
    """Settable clock for the state manager."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEndpoint:
    """Stub HTTP endpoint that records every request."""

    def __init__(self, status_code: int = 200):
        self.default_status = status_code
        self.status_codes: dict[str, int] = {}
        self.failing_paths: set[str] = set()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.failing_paths:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status_codes.get(request.url.path, self.default_status))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def json_bodies(self, path: str | None = None) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if path is None or r.url.path == path
        ]

    def reset(self) -> None:
        self.requests.clear()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def endpoint():
    return RecordingEndpoint()


@pytest.fixture
def devices():
    return [
        DeviceMapping(device_id="DEV1", name="Hot Line", destination_path="/boards/hot"),
        DeviceMapping(device_id="DEV2", name="Cold Line", destination_path="/boards/cold"),
        DeviceMapping(device_id="DEV3", name="Expo"),
    ]


@pytest.fixture
def endpoint_settings():
    return EndpointSettings(
        base_url="https://boards.test",
        api_key="secret",
        api_key_header="X-API-Key",
        timeout_s=2.0,
    )


@pytest.fixture
def pipeline_config(tmp_path, devices, endpoint_settings):
    return PipelineConfig(
        log=TailSettings(
            path=str(tmp_path / "status.log"),
            poll_interval_ms=60000,
            encoding="utf-8",
        ),
        ready_ttl_minutes=5,
        expiry_interval_s=60,
        stop_timeout_s=1.0,
        devices=devices,
        content=ContentSettings(source_dir=str(tmp_path / "content")),
        endpoint=endpoint_settings,
        control=ControlSettings(enabled=False),
    )


@pytest.fixture
def content_mappings():
    return [
        ContentMapping(source_key="menu.json", destination_path="/content/a/menu.json"),
        ContentMapping(source_key="menu.json", destination_path="/content/b/menu.json"),
        ContentMapping(source_key="menu.json", destination_path="/content/c/menu.json"),
    ]
