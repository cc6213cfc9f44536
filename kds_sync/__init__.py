"""
kds-sync - status log tailing and snapshot publishing for kitchen devices.

Reads the append-only status log written by the order controller,
rebuilds per-device preparing/ready queues and pushes snapshots of them
to the display endpoint. Also keeps static content on the endpoint in
sync with a local content directory.
"""

__version__ = "1.0.0"
