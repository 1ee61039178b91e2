import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import aiohttp
from tqdm import tqdm
from src.config.logger_config import logger

from src.wikisync.application.change_detector import ChangeDetector
from src.wikisync.application.error_policy import ErrorPolicy
from src.wikisync.application.vote_collector import VOTES_CONTEXT, VoteCollector
from src.wikisync.domain.checkpoints import PageCheckpoint, VoteCheckpoint
from src.wikisync.domain.consolidate import consolidate_users
from src.wikisync.domain.errors import FatalSyncError, SyncError
from src.wikisync.domain.history import SyncHistory, build_snapshot_payload
from src.wikisync.domain.models import PageSummary, PageVoteSnapshot, SyncSummary, VoteFetchResult
from src.wikisync.domain.rules import assess_vote_completeness, build_run_id, utc_now
from src.wikisync.domain.state import SyncState
from src.wikisync.infrastructure.checkpoint_store import JsonCheckpointStore
from src.wikisync.infrastructure.crom_client import DEFAULT_API_URL, DEFAULT_BASE_URL, CromClient
from src.wikisync.infrastructure.snapshot_sink import JsonSnapshotSink

MODES = ("full", "resume", "votes")
PAGES_CONTEXT = "pages"


@dataclass(frozen=True)
class SyncWorkflowConfig:
    api_url: str = DEFAULT_API_URL
    base_url: str = DEFAULT_BASE_URL
    page_batch_size: int = 10
    vote_batch_size: int = 100
    checkpoint_interval: int = 1000
    vote_checkpoint_interval: int = 200
    incremental_update: bool = True
    vote_retention_days: int | None = 30
    connector_limit: int = 0
    connector_limit_per_host: int = 10
    connector_ttl_dns_cache: int = 300
    show_progress: bool = True


class SyncWiki:
    """Two-phase sync: list every page, then bring each page's votes up to date.

    All working data lives in one ``SyncState`` mutated only from ``run``.
    """

    def __init__(
        self,
        client: CromClient,
        checkpoints: JsonCheckpointStore,
        snapshots: JsonSnapshotSink,
        error_policy: ErrorPolicy | None = None,
        config: SyncWorkflowConfig | None = None,
        run_id: str | None = None,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.checkpoints = checkpoints
        self.snapshots = snapshots
        self.error_policy = error_policy or ErrorPolicy()
        self.config = config or SyncWorkflowConfig()
        self.run_id = run_id or build_run_id()
        self._clock = clock
        self._timer = timer
        self.change_detector = ChangeDetector(
            client,
            retention_days=self.config.vote_retention_days,
            clock=clock,
        )
        self.vote_collector = VoteCollector(
            client,
            batch_size=self.config.vote_batch_size,
            incremental=self.config.incremental_update,
            error_policy=self.error_policy,
        )
        self.tallies: Counter[str] = Counter()
        self.vote_stats: Counter[str] = Counter()

    async def run(self, mode: str = "full") -> SyncSummary:
        if mode not in MODES:
            raise ValueError(f"Unknown sync mode: {mode}")
        started = self._timer()
        state = SyncState(run_id=self.run_id, mode=mode)
        history = self._load_history()
        logger.info("Sync {} starting in {} mode", self.run_id, mode)

        connector = aiohttp.TCPConnector(
            limit=self.config.connector_limit,
            limit_per_host=self.config.connector_limit_per_host,
            ttl_dns_cache=self.config.connector_ttl_dns_cache,
        )
        async with aiohttp.ClientSession(connector=connector) as session:
            if mode == "votes":
                self._restore_pages_for_votes(state, history)
            elif mode == "resume":
                self._restore_from_checkpoints(state)

            if not state.pages_complete:
                try:
                    await self._run_page_phase(session, state)
                except FatalSyncError:
                    self._emergency_save(state, started)
                    raise

            await self._run_vote_phase(session, state, history)

        users = consolidate_users(state.pages.values(), state.ledger, state.attributions())
        duration = self._timer() - started
        payload = build_snapshot_payload(
            state,
            users,
            taken_at=self._clock().isoformat(),
            api_url=self.config.api_url,
            base_url=self.config.base_url,
            duration_seconds=duration,
            error_tallies=self.error_tallies(),
        )
        snapshot_path = self.snapshots.write_snapshot(payload, "votes" if mode == "votes" else "final")

        pages_with_votes = state.pages_with_votes()
        return SyncSummary(
            run_id=self.run_id,
            mode=mode,
            pages_total=len(state.pages),
            pages_with_votes=len(pages_with_votes),
            pages_with_content=sum(1 for page in state.pages.values() if page.source_length > 0),
            vote_pages_queued=self.vote_stats["queued"],
            vote_pages_skipped=self.vote_stats["skipped"],
            vote_pages_completed=self.vote_stats["completed"],
            vote_pages_incomplete=len(state.incomplete_pages),
            votes_total=len(state.ledger),
            users_total=len(users),
            error_tallies=self.error_tallies(),
            anomalies_total=len(state.anomalies),
            duration_seconds=duration,
            snapshot_path=str(snapshot_path),
        )

    def error_tallies(self) -> dict[str, int]:
        merged = Counter(self.error_policy.tallies)
        merged.update(self.tallies)
        return {kind: count for kind, count in merged.items() if count}

    def _load_history(self) -> SyncHistory | None:
        payload = self.snapshots.load_latest(include_emergency=False)
        if payload is None:
            logger.info("No previous snapshot, every page with votes will be fetched")
            return None
        history = SyncHistory.from_snapshot(payload)
        logger.info(
            "Loaded vote history: {} page states from {}",
            len(history.page_states),
            history.taken_at or "unknown time",
        )
        return history

    def _restore_pages_for_votes(self, state: SyncState, history: SyncHistory | None) -> None:
        if history is not None and history.pages:
            state.set_pages(history.pages)
            logger.info("Vote-only run using {} pages from the latest snapshot", len(state.pages))
        else:
            checkpoint = self.checkpoints.load_page_checkpoint()
            if checkpoint is None or not checkpoint.pages:
                raise FatalSyncError("votes", "no snapshot or page checkpoint to take pages from")
            state.set_pages(checkpoint.pages)
            logger.info("Vote-only run using {} pages from checkpoint {}", len(state.pages), checkpoint.run_id)
        state.pages_processed = len(state.pages)
        state.pages_complete = True

    def _restore_from_checkpoints(self, state: SyncState) -> None:
        page_cp = self.checkpoints.load_page_checkpoint()
        vote_cp = self.checkpoints.load_vote_checkpoint()

        if vote_cp is not None and (page_cp is None or (vote_cp.created_at or "") >= (page_cp.created_at or "")):
            state.set_pages(vote_cp.pages)
            for vote in vote_cp.votes:
                state.ledger.add(vote)
            state.progress = vote_cp.progress
            state.page_states.update(vote_cp.page_states)
            state.pages_processed = len(state.pages)
            state.pages_complete = True
            logger.info(
                "Resuming vote phase of {}: {} pages done, {} partial",
                vote_cp.run_id,
                len(vote_cp.progress.completed_pages),
                len(vote_cp.progress.partial_pages),
            )
            return

        if page_cp is not None:
            state.set_pages(page_cp.pages)
            state.pages_processed = page_cp.pages_processed
            state.page_cursor = page_cp.cursor
            state.pages_complete = page_cp.complete
            logger.info(
                "Resuming page phase of {} at {} pages (complete={})",
                page_cp.run_id,
                page_cp.pages_processed,
                page_cp.complete,
            )
            return

        logger.info("No checkpoint found, starting a full sync")

    async def _run_page_phase(self, session: aiohttp.ClientSession, state: SyncState) -> None:
        total = None
        try:
            total = await self.client.fetch_total_page_count(session)
        except SyncError as exc:
            logger.warning("Could not fetch total page count: {}", exc)

        cursor = state.page_cursor
        next_checkpoint = (state.pages_processed // self.config.checkpoint_interval + 1) * self.config.checkpoint_interval

        with tqdm(
            total=total,
            initial=state.pages_processed,
            desc="Pages",
            unit=" page",
            leave=True,
            disable=not self.config.show_progress,
        ) as progress:
            while True:
                try:
                    batch = await self.client.fetch_pages(session, cursor, self.config.page_batch_size)
                except SyncError as exc:
                    await self.error_policy.handle(PAGES_CONTEXT, exc)
                    continue
                self.error_policy.record_success(PAGES_CONTEXT)

                for page in batch.items:
                    state.add_page(page)
                state.pages_processed += len(batch.items)
                cursor = batch.next_cursor
                state.page_cursor = cursor
                progress.update(len(batch.items))

                if not batch.has_more or not batch.items:
                    break
                if state.pages_processed >= next_checkpoint:
                    self.checkpoints.save_page_checkpoint(self._page_checkpoint(state))
                    next_checkpoint += self.config.checkpoint_interval

        state.pages_complete = True
        self.checkpoints.save_page_checkpoint(self._page_checkpoint(state))
        logger.info("Page phase complete: {} pages", len(state.pages))

    async def _run_vote_phase(
        self,
        session: aiohttp.ClientSession,
        state: SyncState,
        history: SyncHistory | None,
    ) -> None:
        pages = state.pages_with_votes()
        urls = {page.url for page in pages}

        if history is not None:
            for page in pages:
                partial = state.progress.partial_pages.get(page.url)
                # 全量重抓中的頁面已丟棄舊票，不能再補回
                refetching = partial is not None and partial.full
                if page.url not in state.ledger and not refetching and history.votes_for(page.url):
                    state.ledger.merge(page.url, history.votes_for(page.url))
                snapshot = history.snapshot_for(page.url)
                if snapshot is not None:
                    state.page_states.setdefault(page.url, snapshot)
        dropped = state.ledger.retain(urls)
        if dropped:
            logger.info("Dropped {} votes of pages that no longer have votes", dropped)
        state.page_states = {url: s for url, s in state.page_states.items() if url in urls}

        progress_state = state.progress
        progress_state.total_votes_expected = sum(page.vote_count for page in pages)
        queue = [page for page in pages if not progress_state.is_completed(page.url)]
        self.vote_stats["queued"] = len(queue)
        logger.info(
            "Vote phase: {} pages with votes, {} queued, {} already complete",
            len(pages),
            len(queue),
            len(pages) - len(queue),
        )

        with tqdm(
            total=len(pages),
            initial=len(pages) - len(queue),
            desc="Votes",
            unit=" page",
            leave=True,
            disable=not self.config.show_progress,
        ) as progress:
            for index, page in enumerate(queue, start=1):
                await self._sync_page_votes(session, state, page)
                progress.update(1)
                if index % self.config.vote_checkpoint_interval == 0:
                    self.checkpoints.save_vote_checkpoint(self._vote_checkpoint(state))

        self.checkpoints.save_vote_checkpoint(self._vote_checkpoint(state))
        logger.info(
            "Vote phase complete: {} fetched, {} unchanged, {} incomplete, {} votes held",
            self.vote_stats["completed"],
            self.vote_stats["skipped"],
            len(state.incomplete_pages),
            len(state.ledger),
        )

    async def _sync_page_votes(self, session: aiohttp.ClientSession, state: SyncState, page: PageSummary) -> None:
        partial = state.progress.partial_pages.get(page.url)
        full = not self.config.incremental_update

        if partial is not None:
            full = full or partial.full
        elif self.config.incremental_update:
            decision = await self.change_detector.detect(session, page, state.page_states.get(page.url))
            self.vote_stats[f"reason:{decision.reason}"] += 1
            if decision.reason == "probe_failed":
                self.tallies["probe_failed"] += 1
            if not decision.needs_update:
                state.progress.mark_completed(page.url)
                self.vote_stats["skipped"] += 1
                return
            full = decision.reason == "snapshot_expired"

        result = await self.vote_collector.collect(
            session,
            page.url,
            page.vote_count,
            known_keys=frozenset() if full else state.ledger.keys_for(page.url),
            resume=partial,
        )
        if result.stopped_at_known and self._count_after_merge(state, page.url, result) != page.vote_count:
            # 舊票被撤回時，提前停止會把它留在本地，改為整頁重抓
            logger.info(
                "Votes of {} do not add up to {} after stopping at a known vote, refetching the page",
                page.url,
                page.vote_count,
            )
            self.vote_stats["refetched"] += 1
            full = True
            partial = None
            result = await self.vote_collector.collect(session, page.url, page.vote_count)

        self._apply_vote_result(state, page, result, partial.votes_collected if partial else 0, full=full)

    @staticmethod
    def _count_after_merge(state: SyncState, url: str, result: VoteFetchResult) -> int:
        return len(state.ledger.keys_for(url) | {vote.key for vote in result.votes})

    def _apply_vote_result(
        self,
        state: SyncState,
        page: PageSummary,
        result: VoteFetchResult,
        previously_collected: int,
        *,
        full: bool = False,
    ) -> None:
        url = page.url
        if not result.resumed and (full or (result.is_complete and not result.stopped_at_known)):
            state.ledger.replace_page(url, result.votes)
            added = len(result.votes)
        else:
            added = state.ledger.merge(url, result.votes)
        state.progress.total_votes_collected += added

        if not result.is_complete:
            collected = previously_collected + result.fetched_count
            state.progress.mark_partial(url, result.next_cursor, collected, full=full)
            state.incomplete_pages.append(
                {
                    "pageUrl": url,
                    "expected": page.vote_count,
                    "collected": collected,
                    "cursor": result.next_cursor,
                    "error": str(result.error) if result.error is not None else None,
                }
            )
            if isinstance(result.error, FatalSyncError):
                logger.error("Giving up on votes for {} this run: {}", url, result.error)
                self.error_policy.reset(VOTES_CONTEXT)
                self._save_safely(
                    "vote checkpoint",
                    lambda: self.checkpoints.save_vote_checkpoint(self._vote_checkpoint(state)),
                )
            return

        state.progress.mark_completed(url)
        self.vote_stats["completed"] += 1
        if result.newest_vote is not None:
            first_vote_id = result.newest_vote.voter_id
        else:
            first_vote_id = state.ledger.newest_voter(url)
        state.page_states[url] = PageVoteSnapshot(
            vote_count=page.vote_count,
            rating=page.rating,
            first_vote_id=first_vote_id,
            last_updated=self._clock().isoformat(),
        )
        anomaly = assess_vote_completeness(url, page.vote_count, state.ledger.count_for(url))
        if anomaly is not None:
            state.anomalies.append(anomaly)
            self.tallies["data_anomaly"] += 1
            logger.warning("Vote count anomaly on {}: {}", url, anomaly.detail)

    def _page_checkpoint(self, state: SyncState) -> PageCheckpoint:
        return PageCheckpoint(
            run_id=state.run_id,
            pages_processed=state.pages_processed,
            cursor=state.page_cursor,
            complete=state.pages_complete,
            pages=tuple(state.pages.values()),
        )

    def _vote_checkpoint(self, state: SyncState) -> VoteCheckpoint:
        return VoteCheckpoint(
            run_id=state.run_id,
            progress=state.progress,
            pages=tuple(state.pages.values()),
            votes=tuple(state.ledger),
            page_states=dict(state.page_states),
        )

    def _emergency_save(self, state: SyncState, started: float) -> None:
        logger.error("Fatal error, saving everything collected so far")
        # 页面阶段未完成，只写页面检查点；否则续跑会误用投票检查点
        self._save_safely("page checkpoint", lambda: self.checkpoints.save_page_checkpoint(self._page_checkpoint(state)))

        def write_emergency_snapshot():
            users = consolidate_users(state.pages.values(), state.ledger, state.attributions())
            payload = build_snapshot_payload(
                state,
                users,
                taken_at=self._clock().isoformat(),
                api_url=self.config.api_url,
                base_url=self.config.base_url,
                duration_seconds=self._timer() - started,
                error_tallies=self.error_tallies(),
            )
            return self.snapshots.write_snapshot(payload, "emergency")

        self._save_safely("emergency snapshot", write_emergency_snapshot)

    @staticmethod
    def _save_safely(label: str, save: Callable[[], object]) -> None:
        try:
            save()
        except OSError as exc:
            logger.exception("Failed to save {}: {}", label, exc)
