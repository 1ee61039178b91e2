import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar, TypeVar

from src.config.logger_config import logger

from src.wikisync.domain.checkpoints import PAGE_STREAM, VOTE_STREAM, PageCheckpoint, VoteCheckpoint
from src.wikisync.domain.errors import CheckpointSchemaError
from src.wikisync.domain.rules import make_checkpoint_filename, parse_stamp, utc_now

T = TypeVar("T")


@dataclass(frozen=True)
class CheckpointRecord:
    path: Path
    stream: str
    created_at: str
    state: dict[str, Any]


class JsonCheckpointStore:
    """Append-only checkpoint files, one directory per stream.

    Artifacts are never rewritten. ``load_latest`` walks from the newest file
    backwards and skips anything it cannot read.
    """

    SCHEMA: ClassVar[str] = "wikisync.checkpoint"
    VERSION: ClassVar[int] = 1
    PREFIXES: ClassVar[dict[str, str]] = {
        PAGE_STREAM: "page-checkpoint",
        VOTE_STREAM: "vote-checkpoint",
    }

    def __init__(
        self,
        root_dir: str | Path,
        keep: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.keep = keep
        self._clock = clock

    def stream_dir(self, stream: str) -> Path:
        if stream not in self.PREFIXES:
            raise ValueError(f"Unknown checkpoint stream: {stream}")
        path = self.root_dir / stream
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save(self, stream: str, state: dict[str, Any], *, key: int | None = None) -> Path:
        directory = self.stream_dir(stream)
        moment = self._clock()
        prefix = self.PREFIXES[stream] if key is None else f"{self.PREFIXES[stream]}-{key}"
        sequence = 0
        target = directory / make_checkpoint_filename(prefix, moment, sequence)
        while target.exists():
            sequence += 1
            target = directory / make_checkpoint_filename(prefix, moment, sequence)

        envelope = {
            "schema": self.SCHEMA,
            "version": self.VERSION,
            "stream": stream,
            "createdAt": moment.isoformat(),
            "state": state,
        }
        tmp_path = target.with_name(f".{target.name}.tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(envelope, f, ensure_ascii=False)
        os.replace(tmp_path, target)
        logger.info("Saved {} checkpoint: {}", stream, target.name)

        if self.keep > 0:
            self.prune(stream, self.keep)
        return target

    def list_artifacts(self, stream: str) -> list[Path]:
        """Checkpoint files of a stream, newest first."""
        ranked: list[tuple[tuple[str, int], Path]] = []
        for path in self.stream_dir(stream).glob(f"{self.PREFIXES[stream]}-*.json"):
            parsed = parse_stamp(path.name)
            if parsed is None:
                continue
            ranked.append((parsed, path))
        ranked.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in ranked]

    def _read(self, path: Path, stream: str) -> CheckpointRecord:
        with path.open("r", encoding="utf-8") as f:
            envelope = json.load(f)
        if not isinstance(envelope, dict):
            raise CheckpointSchemaError(f"{path.name}: not a checkpoint envelope")
        if envelope.get("schema") != self.SCHEMA or envelope.get("version") != self.VERSION:
            raise CheckpointSchemaError(
                f"{path.name}: unsupported schema {envelope.get('schema')!r} v{envelope.get('version')!r}"
            )
        if envelope.get("stream") != stream:
            raise CheckpointSchemaError(f"{path.name}: belongs to stream {envelope.get('stream')!r}")
        state = envelope.get("state")
        if not isinstance(state, dict):
            raise CheckpointSchemaError(f"{path.name}: missing state")
        return CheckpointRecord(
            path=path,
            stream=stream,
            created_at=str(envelope.get("createdAt") or ""),
            state=state,
        )

    def load_latest(
        self,
        stream: str,
        decode: Callable[[CheckpointRecord], T] | None = None,
    ) -> T | CheckpointRecord | None:
        for path in self.list_artifacts(stream):
            try:
                record = self._read(path, stream)
                return decode(record) if decode is not None else record
            except (CheckpointSchemaError, OSError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable checkpoint {}: {}", path.name, exc)
        return None

    def prune(self, stream: str, keep: int) -> int:
        removed = 0
        for path in self.list_artifacts(stream)[max(keep, 0) :]:
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("Failed to remove old checkpoint {}: {}", path.name, exc)
        return removed

    def save_page_checkpoint(self, checkpoint: PageCheckpoint) -> Path:
        return self.save(PAGE_STREAM, checkpoint.to_state(), key=checkpoint.pages_processed)

    def load_page_checkpoint(self) -> PageCheckpoint | None:
        return self.load_latest(
            PAGE_STREAM,
            lambda record: PageCheckpoint.from_state(record.state, created_at=record.created_at),
        )

    def save_vote_checkpoint(self, checkpoint: VoteCheckpoint) -> Path:
        return self.save(VOTE_STREAM, checkpoint.to_state())

    def load_vote_checkpoint(self) -> VoteCheckpoint | None:
        return self.load_latest(
            VOTE_STREAM,
            lambda record: VoteCheckpoint.from_state(record.state, created_at=record.created_at),
        )
