"""
Pipeline Services

Each component of the sync pipeline lives in its own subpackage:
- tail - Position cursor and log tailer
- records - Status line parser
- state - Device state manager
- publish - Snapshot publisher
- content - Content hash tracker and content sync manager
- pipeline - Orchestrator and the runnable service
"""
