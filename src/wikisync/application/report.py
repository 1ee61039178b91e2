from src.wikisync.domain.models import SyncSummary


def _percent(part: int, whole: int) -> str:
    if whole <= 0:
        return "0.0%"
    return f"{part / whole * 100:.1f}%"


def render_report(summary: SyncSummary) -> str:
    """Human-readable end-of-run report."""
    avg_votes = summary.votes_total / summary.pages_with_votes if summary.pages_with_votes else 0.0
    lines = [
        f"Sync {summary.run_id} ({summary.mode}) finished in {summary.duration_seconds:.1f}s",
        f"  Pages:            {summary.pages_total}",
        f"  Pages with votes: {summary.pages_with_votes} ({_percent(summary.pages_with_votes, summary.pages_total)})",
        f"  Pages w/ content: {summary.pages_with_content} ({_percent(summary.pages_with_content, summary.pages_total)})",
        f"  Vote records:     {summary.votes_total} (avg {avg_votes:.1f} per voted page)",
        f"  Users:            {summary.users_total}",
        (
            f"  Vote pages:       {summary.vote_pages_queued} queued, {summary.vote_pages_completed} fetched, "
            f"{summary.vote_pages_skipped} unchanged, {summary.vote_pages_incomplete} incomplete"
        ),
        f"  Data anomalies:   {summary.anomalies_total}",
    ]
    if summary.error_tallies:
        lines.append("  Errors:")
        for kind, count in sorted(summary.error_tallies.items()):
            lines.append(f"    {kind}: {count}")
    else:
        lines.append("  Errors:           none")
    if summary.snapshot_path:
        lines.append(f"  Snapshot:         {summary.snapshot_path}")
    return "\n".join(lines)
