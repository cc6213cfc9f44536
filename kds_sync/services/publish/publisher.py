"""
Snapshot Publisher

Pushes device snapshots to the display endpoint.

Robustness Guarantees:
1. While startup suppression is on, publish makes no network call
2. A device without a destination is skipped with a warning
3. Failures (non-2xx, timeout, transport) are logged and reported through
   the error callback; they never propagate to the caller
4. No retry: the next state change of the device publishes again
"""

from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from kds_sync.common.config import DeviceMapping, EndpointSettings
from kds_sync.common.exceptions import KdsSyncError, PublishError
from kds_sync.common.logging_setup import get_service_logger
from kds_sync.services.state import Snapshot
from .payload import render_payload

logger = get_service_logger("publish")

ErrorCallback = Callable[[KdsSyncError], Awaitable[None]]


@dataclass
class PublishStats:
    published: int = 0
    failed: int = 0
    suppressed: int = 0
    unmapped: int = 0

    def to_dict(self) -> dict:
        return {
            "published": self.published,
            "failed": self.failed,
            "suppressed": self.suppressed,
            "unmapped": self.unmapped,
        }


class SnapshotPublisher:
    """
    Publishes snapshots with one HTTP POST each.

    Usage:
        publisher = SnapshotPublisher(endpoint, devices)
        publisher.suppressed = True   # during backfill
        ...
        publisher.suppressed = False
        await publisher.publish(snapshot)
    """

    def __init__(
        self,
        endpoint: EndpointSettings,
        devices: list[DeviceMapping],
        client: httpx.AsyncClient | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.endpoint = endpoint
        self._devices = {d.device_id: d for d in devices}
        self.on_error = on_error
        self.suppressed = False
        self.stats = PublishStats()

        # Reusable HTTP client - avoids connection overhead per request
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.endpoint.timeout_s)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def url_for(self, destination_path: str) -> str:
        return f"{self.endpoint.base_url}/api{destination_path}"

    async def publish(self, snapshot: Snapshot) -> bool:
        """
        Publish one snapshot.

        Returns:
            True if the endpoint accepted it
        """
        if self.suppressed:
            self.stats.suppressed += 1
            logger.debug(f"Publish of {snapshot.device_id} suppressed during startup")
            return False

        device = self._devices.get(snapshot.device_id)
        if device is None or not device.destination_path:
            self.stats.unmapped += 1
            logger.warning(
                f"No destination configured for device {snapshot.device_id}, publish skipped",
                extra={"device": snapshot.device_id},
            )
            return False

        url = self.url_for(device.destination_path)
        payload = render_payload(snapshot, device.name)
        headers = {
            "Content-Type": "application/json",
            **self.endpoint.auth_headers(),
        }

        try:
            client = await self._get_client()
            response = await client.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.endpoint.timeout_s,
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            await self._failed(PublishError(
                f"{url} returned {e.response.status_code}",
                device_id=snapshot.device_id,
                status_code=e.response.status_code,
            ))
            return False
        except httpx.HTTPError as e:
            await self._failed(PublishError(
                f"{url} unreachable: {e.__class__.__name__}: {e}",
                device_id=snapshot.device_id,
            ))
            return False

        self.stats.published += 1
        logger.debug(
            f"Published {snapshot.device_id}: {len(payload['preparing'])} preparing, "
            f"{len(payload['ready'])} ready",
            extra={"device": snapshot.device_id, "status_code": response.status_code},
        )
        return True

    async def _failed(self, error: PublishError) -> None:
        self.stats.failed += 1
        logger.error(error.message, extra={"device": error.device_id})
        if self.on_error is None:
            return
        try:
            await self.on_error(error)
        except Exception as e:
            logger.error(f"Error callback failed: {e}")
