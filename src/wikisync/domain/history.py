from dataclasses import dataclass, field
from typing import Any

from src.wikisync.domain.models import DerivedUser, PageSummary, PageVoteSnapshot, VoteEvent
from src.wikisync.domain.state import SyncState

LIMITATIONS = (
    "fuzzyVoteRecords may lag behind page voteCount and rating",
    "vote history reflects what the upstream API returned, not ground truth",
    "revisions are limited to the most recent entries per page",
)


@dataclass(frozen=True)
class SyncHistory:
    """Vote state recovered from the previous snapshot, used for incremental updates."""

    taken_at: str
    page_states: dict[str, PageVoteSnapshot] = field(default_factory=dict)
    votes: dict[str, tuple[VoteEvent, ...]] = field(default_factory=dict)
    pages: tuple[PageSummary, ...] = ()

    def snapshot_for(self, url: str) -> PageVoteSnapshot | None:
        return self.page_states.get(url)

    def votes_for(self, url: str) -> tuple[VoteEvent, ...]:
        return self.votes.get(url, ())

    @classmethod
    def from_snapshot(cls, payload: dict[str, Any]) -> "SyncHistory":
        taken_at = str((payload.get("metadata") or {}).get("timestamp") or "")
        grouped: dict[str, list[VoteEvent]] = {}
        for record in payload.get("voteRecords") or ():
            vote = VoteEvent.from_dict(record)
            grouped.setdefault(vote.page_url, []).append(vote)
        votes = {url: tuple(items) for url, items in grouped.items()}
        pages = tuple(PageSummary.from_dict(p) for p in payload.get("pages") or ())

        stored_states = payload.get("pageVoteStates")
        if stored_states is not None:
            page_states = {str(url): PageVoteSnapshot.from_dict(s) for url, s in stored_states.items()}
        else:
            page_states = {}
            for page in pages:
                if not page.needs_vote_data:
                    continue
                page_votes = votes.get(page.url, ())
                newest = max(page_votes, key=lambda vote: vote.timestamp) if page_votes else None
                page_states[page.url] = PageVoteSnapshot(
                    vote_count=page.vote_count,
                    rating=page.rating,
                    first_vote_id=newest.voter_id if newest else None,
                    last_updated=taken_at,
                )
        return cls(taken_at=taken_at, page_states=page_states, votes=votes, pages=pages)


def build_snapshot_payload(
    state: SyncState,
    users: list[DerivedUser],
    *,
    taken_at: str,
    api_url: str,
    base_url: str,
    duration_seconds: float,
    error_tallies: dict[str, int],
) -> dict[str, Any]:
    pages = sorted(state.pages.values(), key=lambda page: page.url)
    votes = sorted(state.ledger, key=_vote_order)
    attributions = state.attributions()
    revisions = state.revisions()
    alternate_titles = state.alternate_titles()
    metadata = {
        "timestamp": taken_at,
        "runId": state.run_id,
        "mode": state.mode,
        "apiEndpoint": api_url,
        "baseUrl": base_url,
        "totalPages": len(pages),
        "pagesWithVotes": sum(1 for page in pages if page.needs_vote_data),
        "totalVoteRecords": len(votes),
        "totalUsers": len(users),
        "totalAttributions": len(attributions),
        "totalRevisions": len(revisions),
        "totalAlternateTitles": len(alternate_titles),
        "durationSeconds": round(duration_seconds, 3),
        "errorTallies": dict(sorted(error_tallies.items())),
        "dataAnomalies": [anomaly.to_dict() for anomaly in state.anomalies],
        "incompletePages": list(state.incomplete_pages),
        "limitations": list(LIMITATIONS),
    }
    return {
        "metadata": metadata,
        "pages": [page.to_dict() for page in pages],
        "voteRecords": [vote.to_dict() for vote in votes],
        "users": [user.to_dict() for user in users],
        "attributions": [a.to_dict() for a in attributions],
        "revisions": [r.to_dict() for r in revisions],
        "alternateTitles": [t.to_dict() for t in alternate_titles],
        "pageVoteStates": {url: s.to_dict() for url, s in sorted(state.page_states.items())},
    }


def _vote_order(vote: VoteEvent) -> tuple[str, str, int]:
    voter = -1 if vote.voter_id is None else vote.voter_id
    return (vote.page_url, vote.timestamp, voter)
