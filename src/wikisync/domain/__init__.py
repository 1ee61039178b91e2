"""Domain models and deterministic rules for the wiki sync."""

from src.wikisync.domain.errors import (
    CheckpointSchemaError,
    FatalSyncError,
    RateLimitedError,
    SyncError,
    TransientError,
)
from src.wikisync.domain.models import (
    DataAnomaly,
    DerivedUser,
    PageSummary,
    PageVoteSnapshot,
    SyncSummary,
    VoteEvent,
    VoteProgress,
)
from src.wikisync.domain.vote_ledger import VoteLedger

__all__ = [
    "CheckpointSchemaError",
    "DataAnomaly",
    "DerivedUser",
    "FatalSyncError",
    "PageSummary",
    "PageVoteSnapshot",
    "RateLimitedError",
    "SyncError",
    "SyncSummary",
    "TransientError",
    "VoteEvent",
    "VoteLedger",
    "VoteProgress",
]
