"""
Pipeline

Responsibilities:
- Startup protocol (silent backfill, single flush, live tailing)
- Periodic tail, expiry and content sync tasks
- Standalone service with a local control server
"""

from .orchestrator import PipelineOrchestrator, PipelineState
from .service import PipelineService, load_config

__all__ = ["PipelineOrchestrator", "PipelineState", "PipelineService", "load_config"]
