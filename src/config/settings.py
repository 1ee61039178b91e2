# 同步程式的設定，預設值來自原本的生產環境配置 (300,000 點 / 5 分鐘)

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

ENV_PREFIX = "WIKISYNC_"


@dataclass(frozen=True)
class SyncSettings:
    api_url: str = "https://apiv2.crom.avn.sh/graphql"
    base_url: str = "http://scp-wiki-cn.wikidot.com"
    page_batch_size: int = 10
    vote_batch_size: int = 100
    requests_per_second: float = 4.0
    point_budget: int = 300_000
    window_seconds: float = 300.0
    checkpoint_interval: int = 1000
    vote_checkpoint_interval: int = 200
    checkpoint_keep: int = 3
    max_rate_limit_retries: int = 50
    max_retries: int = 15
    rate_limit_backoff_seconds: float = 60.0
    retry_backoff_seconds: float = 8.0
    rate_limit_amnesty_seconds: float = 60.0
    incremental_update: bool = True
    vote_retention_days: int = 30
    data_dir: Path = Path("artifacts/wikisync/data")
    checkpoint_dir: Path = Path("artifacts/wikisync/checkpoints")
    raw_dir: Path = Path("artifacts/wikisync/raw")
    show_progress: bool = True


def load_settings(env_file: str | Path | None = None, **overrides: Any) -> SyncSettings:
    load_dotenv(dotenv_path=env_file)
    values: dict[str, Any] = {}
    for item in fields(SyncSettings):
        raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is None or raw.strip() == "":
            continue
        values[item.name] = _coerce(item.name, raw.strip(), item.default)
    values.update({key: value for key, value in overrides.items() if value is not None})
    return SyncSettings(**values)


def _coerce(name: str, raw: str, default: Any) -> Any:
    env_name = f"{ENV_PREFIX}{name.upper()}"
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"{env_name} must be a boolean, got {raw!r}")
    if isinstance(default, Path):
        return Path(raw)
    try:
        if isinstance(default, int):
            value: int | float = int(raw)
        elif isinstance(default, float):
            value = float(raw)
        else:
            return raw
    except ValueError as exc:
        raise ValueError(f"{env_name} must be numeric, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{env_name} must not be negative, got {raw!r}")
    return value
