import asyncio
import json
from collections import Counter
from pathlib import Path
from typing import IO, Any

from src.config.logger_config import logger


class ApiCallLog:
    """Append-only JSONL record of every GraphQL call a run makes.

    The file is opened on the first event, so runs that never reach the API
    leave nothing behind.
    """

    def __init__(self, output_dir: str | Path, run_id: str) -> None:
        self.output_dir = Path(output_dir)
        self.run_id = run_id
        self.file_path = self.output_dir / f"api_calls_{run_id}.jsonl"
        self.outcomes: Counter[tuple[str, str]] = Counter()
        self._lock = asyncio.Lock()
        self._handle: IO[str] | None = None
        self._closed = False

    @property
    def events_written(self) -> int:
        return sum(self.outcomes.values())

    async def write_event(self, event: dict[str, Any]) -> None:
        record = {**event, "run_id": event.get("run_id") or self.run_id}
        line = json.dumps(record, ensure_ascii=False, default=str)
        async with self._lock:
            if self._closed:
                raise RuntimeError(f"API call log for {self.run_id} is closed")
            if self._handle is None:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                self._handle = self.file_path.open("a", encoding="utf-8")
            self._handle.write(line + "\n")
            self._handle.flush()
            self.outcomes[(str(record.get("operation")), str(record.get("outcome")))] += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is None:
            return
        self._handle.close()
        by_outcome = Counter()
        for (_, outcome), count in self.outcomes.items():
            by_outcome[outcome] += count
        logger.info(
            "API call log {}: {} calls ({})",
            self.file_path,
            self.events_written,
            ", ".join(f"{name}={count}" for name, count in sorted(by_outcome.items())),
        )
