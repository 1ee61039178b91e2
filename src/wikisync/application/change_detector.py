from datetime import datetime
from typing import Callable, Protocol

import aiohttp
from src.config.logger_config import logger

from src.wikisync.domain.change_policy import VoteChangeDecision, evaluate_probe, evaluate_vote_change
from src.wikisync.domain.errors import SyncError
from src.wikisync.domain.models import PageSummary, PageVoteSnapshot
from src.wikisync.domain.rules import utc_now


class FirstVoteProber(Protocol):
    async def fetch_first_voter(self, session: aiohttp.ClientSession, page_url: str) -> int | None: ...


class ChangeDetector:
    def __init__(
        self,
        prober: FirstVoteProber,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.prober = prober
        self.retention_days = retention_days
        self._clock = clock
        self.probes_sent = 0

    async def detect(
        self,
        session: aiohttp.ClientSession,
        page: PageSummary,
        snapshot: PageVoteSnapshot | None,
    ) -> VoteChangeDecision:
        if not page.needs_vote_data:
            return VoteChangeDecision(needs_update=False, reason="no_votes")

        decision = evaluate_vote_change(
            snapshot,
            page.vote_count,
            page.rating,
            now=self._clock(),
            retention_days=self.retention_days,
        )
        if not decision.needs_probe or snapshot is None:
            return decision

        self.probes_sent += 1
        try:
            first_voter = await self.prober.fetch_first_voter(session, page.url)
        except SyncError as exc:
            # 探测失败时宁可重新抓取
            logger.warning("First-vote probe failed for {}: {}", page.url, exc)
            return VoteChangeDecision(needs_update=True, reason="probe_failed")
        return evaluate_probe(snapshot, first_voter)
