"""
Bounded conversational memory for registered agents.

Each agent identity owns an ordered list of entries capped at ``cap``; the
oldest entries are evicted first. Appends to one identity are serialized by
that identity's lock. Reads return a snapshot copy.

With a persist directory configured, every entry is also appended to
``<identity>.jsonl`` and the last ``cap`` lines are loaded back the first time
an identity is touched.
"""

import asyncio
import json
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from ..observability.logging import get_logger

logger = get_logger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class MemoryRole(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class MemoryEntry:
    role: MemoryRole
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return json.dumps(
            {"role": self.role.value, "content": self.content, "timestamp": self.timestamp.isoformat()}
        )

    @classmethod
    def from_json(cls, line: str) -> "MemoryEntry":
        data = json.loads(line)
        return cls(
            role=MemoryRole(data["role"]),
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class MemoryStore:
    def __init__(self, cap: int = 50, persist_directory: Path | str | None = None):
        if cap < 1:
            raise ValueError(f"memory cap must be at least 1, got: {cap}")
        self.cap = cap
        self.persist_directory = Path(persist_directory) if persist_directory else None
        self._entries: dict[str, deque[MemoryEntry]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _bucket(self, identity: str) -> deque[MemoryEntry]:
        bucket = self._entries.get(identity)
        if bucket is None:
            bucket = deque(self._rehydrate(identity), maxlen=self.cap)
            self._entries[identity] = bucket
        return bucket

    def _lock(self, identity: str) -> asyncio.Lock:
        return self._locks.setdefault(identity, asyncio.Lock())

    async def append(self, identity: str, *entries: MemoryEntry) -> None:
        async with self._lock(identity):
            self._bucket(identity).extend(entries)
            if self.persist_directory:
                await asyncio.to_thread(self._persist, identity, entries)

    async def record_exchange(self, identity: str, prompt: str, output: str) -> None:
        """Append one input/output pair for an agent, adjacent in order."""
        await self.append(
            identity, MemoryEntry(MemoryRole.INPUT, prompt), MemoryEntry(MemoryRole.OUTPUT, output)
        )

    def read(self, identity: str) -> list[MemoryEntry]:
        """Snapshot of an identity's memory, oldest first."""
        return list(self._bucket(identity))

    def clear(self, identity: str) -> None:
        self._entries.pop(identity, None)
        path = self._path(identity)
        if path and path.exists():
            path.unlink()

    def identities(self) -> list[str]:
        return sorted(self._entries)

    def _path(self, identity: str) -> Path | None:
        if not self.persist_directory:
            return None
        return self.persist_directory / f"{_SAFE_NAME.sub('_', identity)}.jsonl"

    def _persist(self, identity: str, entries: tuple[MemoryEntry, ...]) -> None:
        path = self._path(identity)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            for entry in entries:
                f.write(entry.to_json() + "\n")

    def _rehydrate(self, identity: str) -> list[MemoryEntry]:
        path = self._path(identity)
        if not path or not path.exists():
            return []

        entries = []
        for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(MemoryEntry.from_json(line))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping corrupt memory line {line_no} in {path}: {e}")
        logger.debug(f"Loaded {len(entries[-self.cap:])} memory entries for {identity}")
        return entries[-self.cap :]
