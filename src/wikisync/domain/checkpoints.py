from dataclasses import dataclass, field
from typing import Any

from src.wikisync.domain.models import PageSummary, PageVoteSnapshot, VoteEvent, VoteProgress

PAGE_STREAM = "pages"
VOTE_STREAM = "votes"


@dataclass(frozen=True)
class PageCheckpoint:
    run_id: str
    pages_processed: int
    cursor: str | None
    complete: bool
    pages: tuple[PageSummary, ...]
    created_at: str | None = None

    def to_state(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "pagesProcessed": self.pages_processed,
            "cursor": self.cursor,
            "complete": self.complete,
            "pages": [page.to_dict() for page in self.pages],
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], created_at: str | None = None) -> "PageCheckpoint":
        return cls(
            run_id=str(state["runId"]),
            pages_processed=int(state.get("pagesProcessed") or 0),
            cursor=state.get("cursor"),
            complete=bool(state.get("complete", False)),
            pages=tuple(PageSummary.from_dict(p) for p in state.get("pages") or ()),
            created_at=created_at,
        )


@dataclass(frozen=True)
class VoteCheckpoint:
    run_id: str
    progress: VoteProgress
    pages: tuple[PageSummary, ...]
    votes: tuple[VoteEvent, ...]
    page_states: dict[str, PageVoteSnapshot] = field(default_factory=dict)
    created_at: str | None = None

    def to_state(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "progress": self.progress.to_dict(),
            "pages": [page.to_dict() for page in self.pages],
            "voteRecords": [vote.to_dict() for vote in self.votes],
            "pageVoteStates": {url: s.to_dict() for url, s in self.page_states.items()},
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], created_at: str | None = None) -> "VoteCheckpoint":
        return cls(
            run_id=str(state["runId"]),
            progress=VoteProgress.from_dict(state.get("progress") or {}),
            pages=tuple(PageSummary.from_dict(p) for p in state.get("pages") or ()),
            votes=tuple(VoteEvent.from_dict(v) for v in state.get("voteRecords") or ()),
            page_states={
                str(url): PageVoteSnapshot.from_dict(s)
                for url, s in (state.get("pageVoteStates") or {}).items()
            },
            created_at=created_at,
        )
