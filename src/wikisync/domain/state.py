from dataclasses import dataclass, field
from typing import Any

from src.wikisync.domain.models import (
    AlternateTitle,
    Attribution,
    DataAnomaly,
    PageSummary,
    PageVoteSnapshot,
    Revision,
    VoteProgress,
)
from src.wikisync.domain.vote_ledger import VoteLedger


@dataclass
class SyncState:
    """In-memory working set owned by the sync workflow."""

    run_id: str
    mode: str
    pages: dict[str, PageSummary] = field(default_factory=dict)
    ledger: VoteLedger = field(default_factory=VoteLedger)
    progress: VoteProgress = field(default_factory=VoteProgress)
    page_states: dict[str, PageVoteSnapshot] = field(default_factory=dict)
    anomalies: list[DataAnomaly] = field(default_factory=list)
    incomplete_pages: list[dict[str, Any]] = field(default_factory=list)
    pages_processed: int = 0
    page_cursor: str | None = None
    pages_complete: bool = False

    def add_page(self, page: PageSummary) -> None:
        self.pages[page.url] = page

    def set_pages(self, pages: tuple[PageSummary, ...] | list[PageSummary]) -> None:
        self.pages = {page.url: page for page in pages}

    def pages_with_votes(self) -> list[PageSummary]:
        return [page for page in self.pages.values() if page.needs_vote_data]

    def attributions(self) -> list[Attribution]:
        return [a for page in self.pages.values() for a in page.attributions]

    def revisions(self) -> list[Revision]:
        return [r for page in self.pages.values() for r in page.revisions]

    def alternate_titles(self) -> list[AlternateTitle]:
        return [t for page in self.pages.values() for t in page.alternate_titles]
