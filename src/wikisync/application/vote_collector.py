from typing import Protocol

import aiohttp
from src.config.logger_config import logger

from src.wikisync.application.error_policy import ErrorPolicy
from src.wikisync.domain.errors import FatalSyncError, SyncError
from src.wikisync.domain.models import PartialProgress, VoteBatch, VoteEvent, VoteFetchResult, VoteKey

VOTES_CONTEXT = "votes"


class VoteFetcher(Protocol):
    async def fetch_votes(
        self,
        session: aiohttp.ClientSession,
        page_url: str,
        cursor: str | None,
        first: int,
    ) -> VoteBatch: ...


class VoteCollector:
    """Pages through one page's vote history, newest first.

    In incremental mode the walk stops at the first vote already recorded for
    the page, since everything older was captured by an earlier run.
    """

    def __init__(
        self,
        fetcher: VoteFetcher,
        batch_size: int = 100,
        incremental: bool = True,
        error_policy: ErrorPolicy | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.fetcher = fetcher
        self.batch_size = batch_size
        self.incremental = incremental
        self.error_policy = error_policy

    async def collect(
        self,
        session: aiohttp.ClientSession,
        page_url: str,
        expected_count: int,
        known_keys: frozenset[VoteKey] = frozenset(),
        resume: PartialProgress | None = None,
    ) -> VoteFetchResult:
        cursor = resume.cursor if resume is not None else None
        already = resume.votes_collected if resume is not None else 0
        remaining = max(expected_count - already, 0)
        collected = []
        seen: set[VoteKey] = set()
        newest: VoteEvent | None = None
        fetched_count = 0
        requests_ok = 0

        if resume is not None:
            logger.debug("Resuming votes for {} at {} collected", page_url, already)

        while remaining > 0:
            try:
                batch = await self.fetcher.fetch_votes(
                    session,
                    page_url,
                    cursor,
                    min(self.batch_size, remaining),
                )
            except SyncError as exc:
                error: SyncError = exc
                if self.error_policy is not None:
                    try:
                        await self.error_policy.handle(VOTES_CONTEXT, exc)
                        continue
                    except FatalSyncError as fatal:
                        error = fatal
                logger.warning(
                    "Vote fetch for {} stopped after {} new votes: {}",
                    page_url,
                    len(collected),
                    error,
                )
                return VoteFetchResult(
                    votes=tuple(collected),
                    is_complete=False,
                    next_cursor=cursor,
                    error=error,
                    fetched_count=fetched_count,
                    requests_ok=requests_ok,
                    resumed=resume is not None,
                )

            requests_ok += 1
            if self.error_policy is not None:
                self.error_policy.record_success(VOTES_CONTEXT)
            fetched_count += len(batch.items)

            for vote in batch.items:
                if resume is None and newest is None:
                    newest = vote
                if self.incremental and vote.key in known_keys:
                    logger.debug("Reached known vote on {}, {} new", page_url, len(collected))
                    return VoteFetchResult(
                        votes=tuple(collected),
                        is_complete=True,
                        next_cursor=cursor,
                        fetched_count=fetched_count,
                        requests_ok=requests_ok,
                        stopped_at_known=True,
                        resumed=resume is not None,
                        newest_vote=newest,
                    )
                remaining -= 1
                if vote.key in seen:
                    continue
                seen.add(vote.key)
                collected.append(vote)
                if remaining <= 0:
                    break

            cursor = batch.next_cursor
            if not batch.has_more or not batch.items:
                break

        return VoteFetchResult(
            votes=tuple(collected),
            is_complete=True,
            next_cursor=cursor,
            fetched_count=fetched_count,
            requests_ok=requests_ok,
            resumed=resume is not None,
            newest_vote=newest,
        )
