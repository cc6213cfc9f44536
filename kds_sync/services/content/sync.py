"""
Content Sync

Uploads configured content to the endpoint whenever it changes.

Robustness Guarantees:
1. A destination's digest is recorded only AFTER a successful upload
2. Failed uploads leave the digest untouched, so the next cycle retries
3. Each mapping is processed independently; one failure never blocks
   the rest of the cycle
4. Cycles never overlap (timer and manual force sync share a lock)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx

from kds_sync.common.config import ContentMapping, EndpointSettings
from kds_sync.common.exceptions import KdsSyncError, SyncError
from kds_sync.common.logging_setup import get_service_logger
from .hash_tracker import ContentHashTracker
from .sources import ContentSource

logger = get_service_logger("content.sync")

ErrorCallback = Callable[[KdsSyncError], Awaitable[None]]


@dataclass
class UploadResult:
    """Result of one destination upload attempt."""
    destination_path: str
    success: bool
    status_code: int | None = None
    error: str | None = None


@dataclass
class SyncSummary:
    """Outcome of one sync cycle"""
    attempted: int = 0
    succeeded: int = 0
    unchanged: int = 0
    failed: int = 0
    results: list[UploadResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "failures": [
                {"destination_path": r.destination_path, "error": r.error}
                for r in self.results
                if not r.success
            ],
        }


class ContentSyncManager:
    """
    Keeps endpoint content in step with local sources.

    One source key may map to several destination paths; each destination
    is compared and uploaded on its own.
    """

    def __init__(
        self,
        endpoint: EndpointSettings,
        mappings: list[ContentMapping],
        source: ContentSource,
        tracker: ContentHashTracker | None = None,
        client: httpx.AsyncClient | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.endpoint = endpoint
        self.mappings = list(mappings)
        self.source = source
        self.tracker = tracker or ContentHashTracker()
        self.on_error = on_error

        self._client = client
        self._owns_client = client is None
        self._cycle_lock = asyncio.Lock()

        self._cycle_count = 0
        self._last_summary: SyncSummary | None = None

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
        return f"{self.endpoint.base_url}{destination_path}"

    async def sync_once(self) -> SyncSummary:
        """Run one sync cycle over every mapping."""
        return await self._cycle(clear=False)

    async def force_sync(self) -> SyncSummary:
        """Forget every recorded digest and upload everything again."""
        logger.info("Forcing full content sync")
        return await self._cycle(clear=True)

    async def _cycle(self, clear: bool) -> SyncSummary:
        async with self._cycle_lock:
            if clear:
                self.tracker.clear()
            summary = await self._run_cycle()

        self._cycle_count += 1
        self._last_summary = summary

        if summary.attempted or summary.failed:
            logger.info(
                f"Content sync: {summary.succeeded}/{summary.attempted} uploads succeeded, "
                f"{summary.unchanged} unchanged, {summary.failed} failed",
                extra=summary.to_dict(),
            )
        else:
            logger.debug(f"Content sync: {summary.unchanged} destinations unchanged")
        return summary

    async def _run_cycle(self) -> SyncSummary:
        summary = SyncSummary()
        # Read each source once per cycle, however many destinations it feeds
        contents: dict[str, bytes | None] = {}

        for mapping in self.mappings:
            if mapping.source_key not in contents:
                contents[mapping.source_key] = await self._read_source(mapping)

            data = contents[mapping.source_key]
            if data is None:
                summary.failed += 1
                summary.results.append(UploadResult(
                    destination_path=mapping.destination_path,
                    success=False,
                    error=f"source {mapping.source_key} unreadable",
                ))
                continue

            if not self.tracker.has_changed(mapping.destination_path, data):
                summary.unchanged += 1
                continue

            summary.attempted += 1
            result = await self._upload(mapping, data)
            summary.results.append(result)

            if result.success:
                self.tracker.record_success(mapping.destination_path, data)
                summary.succeeded += 1
            else:
                summary.failed += 1

        return summary

    async def _read_source(self, mapping: ContentMapping) -> bytes | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.source.read, mapping.source_key)
        except OSError as e:
            await self._report(SyncError(
                f"Cannot read source {mapping.source_key}: {e}",
                destination_path=mapping.destination_path,
                operation="read",
            ))
            return None

    async def _upload(self, mapping: ContentMapping, data: bytes) -> UploadResult:
        url = self.url_for(mapping.destination_path)
        headers = {
            "Content-Type": "application/octet-stream",
            **self.endpoint.auth_headers(),
        }

        try:
            client = await self._get_client()
            response = await client.post(
                url,
                content=data,
                headers=headers,
                timeout=self.endpoint.timeout_s,
            )
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            await self._report(SyncError(
                f"Upload to {url} returned {status_code}",
                destination_path=mapping.destination_path,
                operation="upload",
            ))
            return UploadResult(
                destination_path=mapping.destination_path,
                success=False,
                status_code=status_code,
                error=f"HTTP {status_code}",
            )
        except httpx.HTTPError as e:
            await self._report(SyncError(
                f"Upload to {url} failed: {e.__class__.__name__}: {e}",
                destination_path=mapping.destination_path,
                operation="upload",
            ))
            return UploadResult(
                destination_path=mapping.destination_path,
                success=False,
                error=e.__class__.__name__,
            )

        logger.debug(
            f"Uploaded {mapping.source_key} -> {mapping.destination_path} ({len(data)} bytes)",
            extra={"destination": mapping.destination_path, "bytes": len(data)},
        )
        return UploadResult(
            destination_path=mapping.destination_path,
            success=True,
            status_code=response.status_code,
        )

    async def _report(self, error: SyncError) -> None:
        logger.warning(error.message, extra={"destination": error.destination_path})
        if self.on_error is None:
            return
        try:
            await self.on_error(error)
        except Exception as e:
            logger.error(f"Error callback failed: {e}")

    def get_status(self) -> dict:
        return {
            "mappings": len(self.mappings),
            "tracked_destinations": len(self.tracker),
            "cycles": self._cycle_count,
            "last_summary": self._last_summary.to_dict() if self._last_summary else None,
        }
