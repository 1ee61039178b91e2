import re
from datetime import datetime, timezone
from urllib.parse import urlparse

from pathvalidate import sanitize_filename as lib_sanitize

from src.wikisync.domain.models import DataAnomaly

STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
STAMP_PATTERN = re.compile(r"-(\d{8}T\d{12}Z)(?:-(\d+))?\.json$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_stamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime(STAMP_FORMAT)


def parse_stamp(filename: str) -> tuple[str, int] | None:
    match = STAMP_PATTERN.search(filename)
    if not match:
        return None
    return match.group(1), int(match.group(2) or 0)


def build_run_id(moment: datetime | None = None) -> str:
    return f"wikisync_{format_stamp(moment or utc_now())}"


def site_label(base_url: str) -> str:
    parsed = urlparse(base_url)
    host = parsed.netloc or parsed.path or base_url
    safe_name = lib_sanitize(host, replacement_text="_")
    if not safe_name:
        return "site"
    return safe_name


def make_snapshot_filename(base_url: str, kind: str, moment: datetime) -> str:
    return f"snapshot-{site_label(base_url)}-{kind}-{format_stamp(moment)}.json"


def make_checkpoint_filename(prefix: str, moment: datetime, sequence: int = 0) -> str:
    suffix = f"-{sequence}" if sequence else ""
    return f"{prefix}-{format_stamp(moment)}{suffix}.json"


def estimate_page_query_cost(batch_size: int) -> int:
    return 1 + batch_size * 10


def estimate_vote_query_cost(first: int) -> int:
    return 1 + first


def assess_vote_completeness(
    page_url: str,
    expected: int,
    actual: int,
    *,
    tolerance: int = 0,
) -> DataAnomaly | None:
    difference = expected - actual
    if abs(difference) <= tolerance:
        return None
    direction = "missing" if difference > 0 else "extra"
    return DataAnomaly(
        kind="vote_count_mismatch",
        page_url=page_url,
        expected=expected,
        actual=actual,
        detail=f"{abs(difference)} {direction} votes",
    )
