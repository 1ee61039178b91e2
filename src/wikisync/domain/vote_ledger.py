from collections.abc import Iterable, Iterator

from src.wikisync.domain.models import VoteEvent, VoteKey


class VoteLedger:
    """Collected votes grouped by page, unique on (page url, voter id, timestamp)."""

    def __init__(self) -> None:
        self._pages: dict[str, dict[VoteKey, VoteEvent]] = {}

    def __len__(self) -> int:
        return sum(len(votes) for votes in self._pages.values())

    def __contains__(self, url: object) -> bool:
        return url in self._pages

    def add(self, vote: VoteEvent) -> bool:
        page_votes = self._pages.setdefault(vote.page_url, {})
        if vote.key in page_votes:
            return False
        page_votes[vote.key] = vote
        return True

    def merge(self, url: str, votes: Iterable[VoteEvent]) -> int:
        self._pages.setdefault(url, {})
        return sum(1 for vote in votes if self.add(vote))

    def replace_page(self, url: str, votes: Iterable[VoteEvent]) -> int:
        previous = len(self._pages.get(url, {}))
        self._pages[url] = {}
        added = self.merge(url, votes)
        return added - previous

    def retain(self, urls: Iterable[str]) -> int:
        keep = set(urls)
        dropped = [url for url in self._pages if url not in keep]
        removed = 0
        for url in dropped:
            removed += len(self._pages.pop(url))
        return removed

    def votes_for(self, url: str) -> list[VoteEvent]:
        return list(self._pages.get(url, {}).values())

    def keys_for(self, url: str) -> frozenset[VoteKey]:
        return frozenset(self._pages.get(url, {}))

    def count_for(self, url: str) -> int:
        return len(self._pages.get(url, {}))

    def newest_voter(self, url: str) -> int | None:
        votes = self._pages.get(url)
        if not votes:
            return None
        newest = max(votes.values(), key=lambda vote: vote.timestamp)
        return newest.voter_id

    def pages(self) -> list[str]:
        return list(self._pages)

    def __iter__(self) -> Iterator[VoteEvent]:
        for votes in self._pages.values():
            yield from votes.values()
