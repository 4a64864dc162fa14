"""Operation history kept in a JSON file."""

import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .._utils import logger, load_json, save_json, utc_now, utc_timestamp, PathLike

HISTORY_LIMIT = 50

ALLOWED_CONTEXT_KEYS = (
    "mode",
    "file",
    "snapshot_id",
    "snapshot_label",
    "archive_path",
    "message",
    "action",
    "user_selection",
)

STALE_MESSAGE = "Operation timed out or crashed."


def _sanitize_context(context: Optional[Dict[str, Any]]) -> Dict[str, str]:
    sanitized = {}
    for key in ALLOWED_CONTEXT_KEYS:
        value = (context or {}).get(key)
        if value is None or isinstance(value, (dict, list, tuple, set)):
            continue
        sanitized[key] = str(value).strip()
    return sanitized


class HistoryRepository:
    """Newest-first list of export/import/snapshot operations, capped at 50."""

    def __init__(self, path: PathLike, limit: int = HISTORY_LIMIT):
        self.path = Path(path)
        self.limit = limit
        self._lock = threading.RLock()

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = load_json(self.path)
        except ValueError as e:
            logger.warning(f"History file unreadable, starting fresh: {e}")
            return []
        return data if isinstance(data, list) else []

    def _persist(self, entries: List[Dict[str, Any]]) -> None:
        save_json(entries[: self.limit], self.path)

    def _modify(self, entry_id: str, change) -> bool:
        with self._lock:
            entries = self._load()
            found = False
            for entry in entries:
                if entry.get("id") == entry_id:
                    change(entry)
                    found = True
            if found:
                self._persist(entries)
            return found

    def start(self, operation_type: str, context: Optional[Dict[str, Any]] = None,
              user_id: Optional[Any] = None) -> str:
        entry_id = str(uuid.uuid4())
        entry = {
            "id": entry_id,
            "type": operation_type,
            "status": "running",
            "started_at": utc_timestamp(),
            "finished_at": None,
            "user_id": user_id,
            "context": _sanitize_context(context),
        }
        with self._lock:
            entries = self._load()
            entries.insert(0, entry)
            self._persist(entries)
        return entry_id

    def finish(self, entry_id: str, status: str, context: Optional[Dict[str, Any]] = None) -> bool:
        def change(entry):
            entry["status"] = status
            entry["finished_at"] = utc_timestamp()
            entry["context"] = {**entry.get("context", {}), **_sanitize_context(context)}
        return self._modify(entry_id, change)

    def update_context(self, entry_id: str, context: Dict[str, Any]) -> bool:
        def change(entry):
            entry["context"] = {**entry.get("context", {}), **_sanitize_context(context)}
        return self._modify(entry_id, change)

    def update_progress(self, entry_id: str, percent: int, message: str = "") -> bool:
        def change(entry):
            entry["progress"] = {"percent": max(0, min(100, int(percent))), "message": message.strip()}
        return self._modify(entry_id, change)

    def all(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent entries, hiding those whose archive was deleted."""
        self.cleanup_stale()
        entries = [entry for entry in self._load() if self._archive_exists(entry)]
        return entries[:limit]

    def find(self, entry_id: str) -> Optional[Dict[str, Any]]:
        for entry in self._load():
            if entry.get("id") == entry_id:
                return entry
        return None

    def cleanup_stale(self, max_age: int = 3600) -> int:
        """Mark running entries older than max_age seconds as failed."""
        now = utc_now()
        cleaned = 0
        with self._lock:
            entries = self._load()
            for entry in entries:
                if entry.get("status") != "running":
                    continue
                try:
                    started = datetime.fromisoformat(entry.get("started_at") or "")
                except ValueError:
                    continue
                if started.tzinfo is None:
                    started = started.replace(tzinfo=timezone.utc)
                if (now - started).total_seconds() > max_age:
                    entry["status"] = "error"
                    entry["finished_at"] = utc_timestamp()
                    entry["context"] = {**entry.get("context", {}), "message": STALE_MESSAGE}
                    cleaned += 1
            if cleaned:
                self._persist(entries)
                logger.info(f"Marked {cleaned} stale history entr{'y' if cleaned == 1 else 'ies'} as failed")
        return cleaned

    @staticmethod
    def _archive_exists(entry: Dict[str, Any]) -> bool:
        context = entry.get("context") or {}
        archive_path = context.get("archive_path")
        return not archive_path or os.path.exists(archive_path)
