from __future__ import annotations
import asyncio
from dataclasses import replace

from src.config.settings import SyncSettings, load_settings
from src.wikisync.application.error_policy import ErrorPolicy, ErrorPolicyConfig
from src.wikisync.application.rate_limiter import RateLimitConfig, RateLimiter
from src.wikisync.application.workflows.sync_wiki import SyncWiki, SyncWorkflowConfig
from src.wikisync.domain.models import SyncSummary
from src.wikisync.domain.rules import build_run_id
from src.wikisync.infrastructure.checkpoint_store import JsonCheckpointStore
from src.wikisync.infrastructure.crom_client import CromClient
from src.wikisync.infrastructure.api_call_log import ApiCallLog
from src.wikisync.infrastructure.snapshot_sink import JsonSnapshotSink


def build_workflow_config(settings: SyncSettings) -> SyncWorkflowConfig:
    return SyncWorkflowConfig(
        api_url=settings.api_url,
        base_url=settings.base_url,
        page_batch_size=settings.page_batch_size,
        vote_batch_size=settings.vote_batch_size,
        checkpoint_interval=max(settings.checkpoint_interval, 1),
        vote_checkpoint_interval=max(settings.vote_checkpoint_interval, 1),
        incremental_update=settings.incremental_update,
        vote_retention_days=settings.vote_retention_days or None,
        show_progress=settings.show_progress,
    )


async def run_sync_async(
    mode: str = "full",
    *,
    settings: SyncSettings | None = None,
    show_progress: bool | None = None,
) -> SyncSummary:
    settings = settings or load_settings()
    if show_progress is not None:
        settings = replace(settings, show_progress=show_progress)
    run_id = build_run_id()

    call_log = ApiCallLog(settings.raw_dir, run_id=run_id)
    rate_limiter = RateLimiter(
        RateLimitConfig(
            point_budget=settings.point_budget,
            window_seconds=settings.window_seconds,
            requests_per_second=settings.requests_per_second,
        )
    )
    client = CromClient(
        api_url=settings.api_url,
        base_url=settings.base_url,
        rate_limiter=rate_limiter,
        call_log=call_log,
        run_id=run_id,
    )
    error_policy = ErrorPolicy(
        ErrorPolicyConfig(
            max_rate_limit_retries=settings.max_rate_limit_retries,
            max_retries=settings.max_retries,
            rate_limit_backoff_seconds=settings.rate_limit_backoff_seconds,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            rate_limit_amnesty_seconds=settings.rate_limit_amnesty_seconds,
        )
    )
    workflow = SyncWiki(
        client=client,
        checkpoints=JsonCheckpointStore(settings.checkpoint_dir, keep=settings.checkpoint_keep),
        snapshots=JsonSnapshotSink(settings.data_dir, base_url=settings.base_url),
        error_policy=error_policy,
        config=build_workflow_config(settings),
        run_id=run_id,
    )
    try:
        return await workflow.run(mode)
    finally:
        call_log.close()


def run_sync(
    mode: str = "full",
    *,
    settings: SyncSettings | None = None,
    show_progress: bool | None = None,
) -> SyncSummary:
    return asyncio.run(run_sync_async(mode, settings=settings, show_progress=show_progress))
