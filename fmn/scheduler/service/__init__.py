"""Scheduler service package.

This package contains the core scheduler service components:
- store.py: YAML file-backed task store
- service.py: Pending index and wait/fire loop
"""
from .service import FireRecord, SchedulerService
from .store import TaskStore

__all__ = ["FireRecord", "SchedulerService", "TaskStore"]
