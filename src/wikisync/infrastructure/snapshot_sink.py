import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from src.config.logger_config import logger

from src.wikisync.domain.rules import make_snapshot_filename, parse_stamp, utc_now

SNAPSHOT_KINDS = ("final", "votes", "emergency")


class JsonSnapshotSink:
    def __init__(
        self,
        output_dir: str | Path,
        base_url: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url
        self._clock = clock

    def write_snapshot(self, payload: dict[str, Any], kind: str = "final") -> Path:
        if kind not in SNAPSHOT_KINDS:
            raise ValueError(f"Unknown snapshot kind: {kind}")
        file_path = self.output_dir / make_snapshot_filename(self.base_url, kind, self._clock())
        tmp_path = file_path.with_name(f".{file_path.name}.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, file_path)
        logger.info("Snapshot written: {}", file_path)
        return file_path

    def list_snapshots(self, include_emergency: bool = False) -> list[Path]:
        kinds = SNAPSHOT_KINDS if include_emergency else ("final", "votes")
        ranked: list[tuple[tuple[str, int], Path]] = []
        for kind in kinds:
            for path in self.output_dir.glob(f"snapshot-*-{kind}-*.json"):
                parsed = parse_stamp(path.name)
                if parsed is not None:
                    ranked.append((parsed, path))
        ranked.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in ranked]

    def load_latest(self, include_emergency: bool = False) -> dict[str, Any] | None:
        for path in self.list_snapshots(include_emergency=include_emergency):
            try:
                with path.open("r", encoding="utf-8") as f:
                    payload = json.load(f)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable snapshot {}: {}", path.name, exc)
                continue
            if isinstance(payload, dict):
                logger.info("Loaded previous snapshot: {}", path.name)
                return payload
        return None
