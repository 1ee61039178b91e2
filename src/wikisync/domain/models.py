from dataclasses import dataclass, field
from typing import Any

from src.wikisync.domain.errors import SyncError

VoteKey = tuple[str, int | None, str]


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class Revision:
    page_url: str
    page_title: str
    revision_id: int | None
    timestamp: str | None
    user_id: int | None
    user_name: str | None
    comment: str | None = None
    revision_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "revisionId": self.revision_id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "userName": self.user_name,
            "comment": self.comment,
            "type": self.revision_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Revision":
        return cls(
            page_url=str(data["pageUrl"]),
            page_title=str(data.get("pageTitle") or ""),
            revision_id=_opt_int(data.get("revisionId")),
            timestamp=data.get("timestamp"),
            user_id=_opt_int(data.get("userId")),
            user_name=data.get("userName"),
            comment=data.get("comment"),
            revision_type=data.get("type"),
        )


@dataclass(frozen=True)
class Attribution:
    page_url: str
    page_title: str
    user_id: int | None
    user_name: str | None
    attribution_type: str | None
    date: str | None = None
    order: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageUrl": self.page_url,
            "pageTitle": self.page_title,
            "userId": self.user_id,
            "userName": self.user_name,
            "attributionType": self.attribution_type,
            "date": self.date,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attribution":
        return cls(
            page_url=str(data["pageUrl"]),
            page_title=str(data.get("pageTitle") or ""),
            user_id=_opt_int(data.get("userId")),
            user_name=data.get("userName"),
            attribution_type=data.get("attributionType"),
            date=data.get("date"),
            order=_opt_int(data.get("order")),
        )


@dataclass(frozen=True)
class AlternateTitle:
    page_url: str
    page_title: str
    title: str

    def to_dict(self) -> dict[str, Any]:
        return {"pageUrl": self.page_url, "pageTitle": self.page_title, "title": self.title}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlternateTitle":
        return cls(
            page_url=str(data["pageUrl"]),
            page_title=str(data.get("pageTitle") or ""),
            title=str(data.get("title") or ""),
        )


@dataclass(frozen=True)
class PageSummary:
    url: str
    wikidot_id: int | None
    title: str
    rating: int
    vote_count: int
    tags: tuple[str, ...] = ()
    created_at: str | None = None
    revision_count: int = 0
    category: str | None = None
    comment_count: int = 0
    created_by_id: int | None = None
    created_by_name: str | None = None
    source_length: int = 0
    revisions: tuple[Revision, ...] = field(default_factory=tuple)
    attributions: tuple[Attribution, ...] = field(default_factory=tuple)
    alternate_titles: tuple[AlternateTitle, ...] = field(default_factory=tuple)

    @property
    def needs_vote_data(self) -> bool:
        return self.vote_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "wikidotId": self.wikidot_id,
            "title": self.title,
            "rating": self.rating,
            "voteCount": self.vote_count,
            "category": self.category,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "revisionCount": self.revision_count,
            "commentCount": self.comment_count,
            "createdByWikidotId": self.created_by_id,
            "createdByUser": self.created_by_name,
            "sourceLength": self.source_length,
            "needsVoteData": self.needs_vote_data,
            "revisions": [r.to_dict() for r in self.revisions],
            "attributions": [a.to_dict() for a in self.attributions],
            "alternateTitles": [t.to_dict() for t in self.alternate_titles],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageSummary":
        return cls(
            url=str(data["url"]),
            wikidot_id=_opt_int(data.get("wikidotId")),
            title=str(data.get("title") or ""),
            rating=int(data.get("rating") or 0),
            vote_count=int(data.get("voteCount") or 0),
            category=data.get("category"),
            tags=tuple(data.get("tags") or ()),
            created_at=data.get("createdAt"),
            revision_count=int(data.get("revisionCount") or 0),
            comment_count=int(data.get("commentCount") or 0),
            created_by_id=_opt_int(data.get("createdByWikidotId")),
            created_by_name=data.get("createdByUser"),
            source_length=int(data.get("sourceLength") or 0),
            revisions=tuple(Revision.from_dict(r) for r in data.get("revisions") or ()),
            attributions=tuple(Attribution.from_dict(a) for a in data.get("attributions") or ()),
            alternate_titles=tuple(AlternateTitle.from_dict(t) for t in data.get("alternateTitles") or ()),
        )


@dataclass(frozen=True)
class VoteEvent:
    page_url: str
    voter_id: int | None
    timestamp: str
    direction: int
    voter_name: str | None = None

    @property
    def key(self) -> VoteKey:
        return (self.page_url, self.voter_id, self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageUrl": self.page_url,
            "voterWikidotId": self.voter_id,
            "voterName": self.voter_name,
            "direction": self.direction,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteEvent":
        return cls(
            page_url=str(data["pageUrl"]),
            voter_id=_opt_int(data.get("voterWikidotId")),
            timestamp=str(data["timestamp"]),
            direction=int(data.get("direction") or 0),
            voter_name=data.get("voterName"),
        )


@dataclass(frozen=True)
class PageVoteSnapshot:
    """Last known vote state of a page, as upstream reported it at ``last_updated``.

    Upstream vote history is only eventually consistent, so this is a record of
    what was observed, not a claim about the true vote set.
    """

    vote_count: int
    rating: int
    first_vote_id: int | None
    last_updated: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "voteCount": self.vote_count,
            "rating": self.rating,
            "firstVoteId": self.first_vote_id,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageVoteSnapshot":
        return cls(
            vote_count=int(data.get("voteCount") or 0),
            rating=int(data.get("rating") or 0),
            first_vote_id=_opt_int(data.get("firstVoteId")),
            last_updated=str(data.get("lastUpdated") or ""),
        )


@dataclass
class PartialProgress:
    cursor: str | None
    votes_collected: int
    # 全量重抓：續跑時不能在已知投票處提前停止
    full: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"cursor": self.cursor, "votesCollected": self.votes_collected, "full": self.full}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PartialProgress":
        return cls(
            cursor=data.get("cursor"),
            votes_collected=int(data.get("votesCollected") or 0),
            full=bool(data.get("full", False)),
        )


@dataclass
class VoteProgress:
    completed_pages: set[str] = field(default_factory=set)
    partial_pages: dict[str, PartialProgress] = field(default_factory=dict)
    total_votes_expected: int = 0
    total_votes_collected: int = 0

    def is_completed(self, url: str) -> bool:
        return url in self.completed_pages

    def mark_partial(self, url: str, cursor: str | None, votes_collected: int, full: bool = False) -> None:
        if url in self.completed_pages:
            raise ValueError(f"Page already completed, cannot move back to partial: {url}")
        self.partial_pages[url] = PartialProgress(cursor=cursor, votes_collected=votes_collected, full=full)

    def mark_completed(self, url: str) -> None:
        self.partial_pages.pop(url, None)
        self.completed_pages.add(url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completedPages": sorted(self.completed_pages),
            "partialPages": {url: p.to_dict() for url, p in sorted(self.partial_pages.items())},
            "totalVotesExpected": self.total_votes_expected,
            "totalVotesCollected": self.total_votes_collected,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoteProgress":
        completed = set(data.get("completedPages") or ())
        partial = {
            str(url): PartialProgress.from_dict(entry)
            for url, entry in (data.get("partialPages") or {}).items()
            if url not in completed
        }
        return cls(
            completed_pages=completed,
            partial_pages=partial,
            total_votes_expected=int(data.get("totalVotesExpected") or 0),
            total_votes_collected=int(data.get("totalVotesCollected") or 0),
        )


@dataclass(frozen=True)
class PageBatch:
    items: tuple[PageSummary, ...]
    next_cursor: str | None
    has_more: bool


@dataclass(frozen=True)
class VoteBatch:
    items: tuple[VoteEvent, ...]
    next_cursor: str | None
    has_more: bool


@dataclass(frozen=True)
class VoteFetchResult:
    votes: tuple[VoteEvent, ...]
    is_complete: bool
    next_cursor: str | None
    error: SyncError | None = None
    fetched_count: int = 0
    requests_ok: int = 0
    stopped_at_known: bool = False
    resumed: bool = False
    newest_vote: VoteEvent | None = None


@dataclass(frozen=True)
class DataAnomaly:
    kind: str
    page_url: str
    expected: int
    actual: int
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "pageUrl": self.page_url,
            "expected": self.expected,
            "actual": self.actual,
            "detail": self.detail,
        }


@dataclass
class DerivedUser:
    wikidot_id: int
    display_name: str | None
    roles: set[str] = field(default_factory=set)
    pages_created: int = 0
    total_votes_given: int = 0
    total_votes_received: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "wikidotId": self.wikidot_id,
            "displayName": self.display_name,
            "roles": sorted(self.roles),
            "pagesCreated": self.pages_created,
            "totalVotesGiven": self.total_votes_given,
            "totalVotesReceived": self.total_votes_received,
            "isActive": self.total_votes_given > 0 or self.pages_created > 0,
        }


@dataclass(frozen=True)
class SyncSummary:
    run_id: str
    mode: str
    pages_total: int
    pages_with_votes: int
    pages_with_content: int
    vote_pages_queued: int
    vote_pages_skipped: int
    vote_pages_completed: int
    vote_pages_incomplete: int
    votes_total: int
    users_total: int
    error_tallies: dict[str, int]
    anomalies_total: int
    duration_seconds: float
    snapshot_path: str | None
