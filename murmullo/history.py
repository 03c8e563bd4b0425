"""
Transcription history persistence.

One JSON object per line in ~/.murmullo/history.jsonl.
"""

import json
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Protocol

from .types import HistoryRecord

logger = logging.getLogger(__name__)


MAX_LIST_LIMIT = 10000


class HistoryStore(Protocol):
    def save(self, record: HistoryRecord) -> None: ...

    def recent(self, limit: int = 50) -> List[HistoryRecord]: ...


class JsonlHistoryStore:
    """Append-only history file, safe to share between threads."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def save(self, record: HistoryRecord) -> None:
        line = json.dumps(asdict(record), ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def recent(self, limit: int = 50) -> List[HistoryRecord]:
        """Newest first."""
        if not 1 <= limit <= MAX_LIST_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        with self._lock:
            if not self.path.exists():
                return []
            lines = self.path.read_text(encoding="utf-8").splitlines()

        records: List[HistoryRecord] = []
        for line in reversed(lines):
            if len(records) >= limit:
                break
            try:
                records.append(HistoryRecord(**json.loads(line)))
            except (ValueError, TypeError) as e:
                logger.warning("[History] Skipping malformed line: %s", e)
        return records
