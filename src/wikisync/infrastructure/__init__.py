"""Infrastructure adapters for the wiki sync."""

from src.wikisync.infrastructure.api_call_log import ApiCallLog
from src.wikisync.infrastructure.checkpoint_store import JsonCheckpointStore
from src.wikisync.infrastructure.crom_client import CromClient
from src.wikisync.infrastructure.snapshot_sink import JsonSnapshotSink

__all__ = ["ApiCallLog", "CromClient", "JsonCheckpointStore", "JsonSnapshotSink"]
