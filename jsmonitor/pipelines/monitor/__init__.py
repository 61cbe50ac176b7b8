"""
Monitor pipeline.
Per-payload analysis and batch-cycle reporting.
"""

from .runner import MonitorRunner

__all__ = ["MonitorRunner"]
