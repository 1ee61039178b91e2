"""Incremental wiki page and vote sync."""

from src.wikisync.domain.models import SyncSummary
from src.wikisync.sync import run_sync, run_sync_async

__all__ = ["SyncSummary", "run_sync", "run_sync_async"]
