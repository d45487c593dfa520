"""
Core Logic Layer.
This package holds the session-level orchestration: the download coordinator
that schedules segment fetches, the session boundary that owns locks and temp
state, and the pipeline that ties acquisition, alignment and muxing together.
"""

from .coordinator import DownloadCoordinator
from .pipeline import PipelineResult, SyncPipeline
from .session import AcquisitionSession

__all__ = [
    "AcquisitionSession",
    "DownloadCoordinator",
    "PipelineResult",
    "SyncPipeline",
]
