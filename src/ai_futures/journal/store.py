"""JSONL journal store for pipeline events."""

from __future__ import annotations

import json
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

JOURNAL_EVENT_TYPES = frozenset(
    {
        "cycle_start",
        "market_data",
        "ai_decision",
        "normalization",
        "sizing",
        "order",
        "protection",
        "equity",
        "cycle_end",
        "error",
    }
)


class JournalStore:
    """Append-only JSONL event store. Safe to append from worker threads."""

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        """Append one event line to daily JSONL file."""
        if event_type not in JOURNAL_EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        record = {
            "timestamp": now.isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
        line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
        file_path = self._file_path_for_day(now.date())
        with self._lock, file_path.open("a", encoding="utf-8") as f:
            f.write(line)

    def load_recent(self, limit: int, *, event_type: str | None = None) -> list[dict[str, Any]]:
        """Load recent events from the most recent journal files."""
        if limit <= 0:
            return []

        rows: list[dict[str, Any]] = []
        files = sorted(self._journal_dir.glob("*.jsonl"), reverse=True)
        for file in files:
            lines = file.read_text(encoding="utf-8").splitlines()
            for line in reversed(lines):
                if not line.strip():
                    continue
                row = json.loads(line)
                if event_type is not None and row.get("event_type") != event_type:
                    continue
                rows.append(row)
                if len(rows) >= limit:
                    return list(reversed(rows))
        return list(reversed(rows))

    def load_equity_marks(self, limit: int) -> list[float]:
        """Total-equity marks from ``equity`` events, oldest first."""
        marks: list[float] = []
        for row in self.load_recent(limit, event_type="equity"):
            value = row.get("payload", {}).get("total_equity")
            if isinstance(value, (int, float)):
                marks.append(float(value))
        return marks

    def _file_path_for_day(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"
