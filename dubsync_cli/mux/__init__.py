"""
Muxing Layer.

Builds and runs the external container tool that combines every acquired
track into one output file.
"""

from .command import MuxCommand, MuxInput
from .orchestrator import MuxOrchestrator

__all__ = ["MuxCommand", "MuxInput", "MuxOrchestrator"]
