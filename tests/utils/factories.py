from src.wikisync.domain.models import SyncSummary


def make_summary(mode: str = "full", **changes) -> SyncSummary:
    values = dict(
        run_id="wikisync_test",
        mode=mode,
        pages_total=3,
        pages_with_votes=2,
        pages_with_content=3,
        vote_pages_queued=2,
        vote_pages_skipped=0,
        vote_pages_completed=2,
        vote_pages_incomplete=0,
        votes_total=4,
        users_total=2,
        error_tallies={},
        anomalies_total=0,
        duration_seconds=1.5,
        snapshot_path="artifacts/wikisync/data/snapshot.json",
    )
    values.update(changes)
    return SyncSummary(**values)
