"""Run orchestration."""

from .run import RunResult, SyncRun

__all__ = ["RunResult", "SyncRun"]
