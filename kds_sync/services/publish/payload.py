"""
Snapshot Payload

Renders a device snapshot into the JSON body posted to the display
endpoint.
"""

from typing import Any

from kds_sync.common.timestamp import format_iso
from kds_sync.services.state import Snapshot


def render_payload(snapshot: Snapshot, name: str | None = None) -> dict[str, Any]:
    """
    Build the publish body for one device.

    preparing is ordered by createdAt ascending (oldest first), ready by
    readyAt descending (most recently finished first).
    """
    preparing = sorted(snapshot.preparing, key=lambda o: o.created_at)
    ready = sorted(
        (o for o in snapshot.ready if o.done_at is not None),
        key=lambda o: o.done_at,
        reverse=True,
    )

    return {
        "name": name or snapshot.device_name,
        "timestamp": format_iso(snapshot.taken_at),
        "status": snapshot.status,
        "preparing": [
            {"id": o.check_number, "createdAt": format_iso(o.created_at)}
            for o in preparing
        ],
        "ready": [
            {
                "id": o.check_number,
                "createdAt": format_iso(o.created_at),
                "readyAt": format_iso(o.done_at),
            }
            for o in ready
        ],
    }
