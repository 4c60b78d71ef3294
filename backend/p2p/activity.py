"""Bounded, timestamped buffer of coordinator activity lines."""

from collections import deque
from datetime import datetime

from config import LOG_HISTORY_SIZE
from p2p.models import ActivityEntry


class ActivityLog:
    """Keeps the most recent activity lines for the UI."""

    def __init__(self, max_entries: int = LOG_HISTORY_SIZE) -> None:
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)

    def append(self, message: str) -> ActivityEntry:
        entry = ActivityEntry(timestamp=datetime.now(), message=message)
        self._entries.append(entry)
        return entry

    def entries(self) -> list[ActivityEntry]:
        return list(self._entries)

    def lines(self) -> list[str]:
        return [entry.format() for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
