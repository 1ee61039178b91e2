from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from src.wikisync.domain.models import PageVoteSnapshot


@dataclass(frozen=True)
class VoteChangeDecision:
    needs_update: bool
    reason: str
    needs_probe: bool = False


def is_snapshot_expired(snapshot: PageVoteSnapshot, now: datetime, retention_days: int | None) -> bool:
    if retention_days is None or retention_days <= 0:
        return False
    try:
        updated = datetime.fromisoformat(snapshot.last_updated.replace("Z", "+00:00"))
    except ValueError:
        return True
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return now - updated > timedelta(days=retention_days)


def evaluate_vote_change(
    existing: PageVoteSnapshot | None,
    vote_count: int,
    rating: int,
    *,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> VoteChangeDecision:
    """Cheap checks first: snapshot presence, vote count, rating. Ties need a probe."""
    if existing is None:
        return VoteChangeDecision(needs_update=True, reason="new_page")
    if is_snapshot_expired(existing, now or datetime.now(timezone.utc), retention_days):
        return VoteChangeDecision(needs_update=True, reason="snapshot_expired")
    if existing.vote_count != vote_count:
        return VoteChangeDecision(needs_update=True, reason="vote_count_changed")
    if existing.rating != rating:
        return VoteChangeDecision(needs_update=True, reason="rating_changed")
    return VoteChangeDecision(needs_update=False, reason="probe_required", needs_probe=True)


def evaluate_probe(existing: PageVoteSnapshot, probed_first_vote_id: int | None) -> VoteChangeDecision:
    if probed_first_vote_id != existing.first_vote_id:
        return VoteChangeDecision(needs_update=True, reason="first_vote_changed")
    return VoteChangeDecision(needs_update=False, reason="unchanged")
