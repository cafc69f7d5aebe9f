"""Append-only record sinks (events, alerts, audit log)."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterator, Protocol

logger = logging.getLogger(__name__)


class Recordable(Protocol):
    def to_record(self) -> dict[str, Any]: ...


class MemorySink:
    """Keeps appended records in a list (tests, dashboards)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[Recordable] = []

    def append(self, item: Recordable) -> None:
        with self._lock:
            self._items.append(item)

    def __call__(self, item: Recordable) -> None:
        self.append(item)

    def items(self) -> list[Recordable]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class JsonlSink:
    """Append-only JSON-lines file; every record is flushed as soon as it is written.

    Example: events.jsonl, one ``to_record()`` dict per line. Existing content is never
    rewritten.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def ensure_file(self) -> None:
        """Create the file if missing (does NOT clear existing content)."""

        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("", encoding="utf-8")

    def append(self, item: Recordable) -> None:
        line = json.dumps(item.to_record(), ensure_ascii=False)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()

    def __call__(self, item: Recordable) -> None:
        self.append(item)

    def iter_records(self) -> Iterator[dict[str, Any]]:
        """Yield stored records; a torn last line (crash mid-write) is skipped."""

        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("%s 第 %s 行不是有效JSON，已跳过", self._path, lineno)
                    continue
                if isinstance(obj, dict):
                    yield obj

    def read_all(self) -> list[dict[str, Any]]:
        return list(self.iter_records())
