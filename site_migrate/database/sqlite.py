"""SQLite implementations of the relational and options interfaces."""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .._utils import logger, PathLike
from ..interfaces import OptionsStore, RelationalStore


class SqliteRelationalStore(RelationalStore):
    """Relational store backed by a local SQLite database file."""

    placeholder = "?"
    backslash_escapes = False

    def __init__(self, database_path: PathLike = ":memory:"):
        self.database_path = str(database_path)
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.database_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def list_tables(self, prefix: str = "") -> List[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
            "AND name LIKE ? ESCAPE '\\' ORDER BY name",
            (escaped + "%",),
        )
        return [row["name"] for row in rows]

    def table_exists(self, name: str) -> bool:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        )
        return bool(rows)

    def show_create_table(self, name: str) -> str:
        rows = self.query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?",
            (name,),
        )
        return rows[0]["sql"] if rows and rows[0]["sql"] else ""

    def fetch_rows(self, name: str) -> List[Dict[str, Any]]:
        return self.query(f"SELECT * FROM `{name}`")

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(sql, tuple(params))
            return cursor.rowcount

    def truncate(self, name: str) -> None:
        self.execute(f"DELETE FROM `{name}`")

    def bulk_insert(self, table: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0

        inserted = 0
        with self._lock, self._conn:
            # Rows of one batch can carry different column sets.
            groups: Dict[tuple, List[Dict[str, Any]]] = {}
            for row in rows:
                groups.setdefault(tuple(row.keys()), []).append(row)

            for columns, group in groups.items():
                column_list = ", ".join(f"`{column}`" for column in columns)
                markers = ", ".join("?" for _ in columns)
                self._conn.executemany(
                    f"INSERT INTO `{table}` ({column_list}) VALUES ({markers})",
                    [tuple(self._adapt(row[column]) for column in columns) for row in group],
                )
                inserted += len(group)
        return inserted

    def set_foreign_key_checks(self, enabled: bool) -> None:
        with self._lock:
            self._conn.execute(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}")

    @staticmethod
    def _adapt(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return value


class SqliteOptionsStore(OptionsStore):
    """Site options kept in the ``<prefix>options`` table.

    Non-string values are stored JSON-encoded and returned as stored.
    """

    def __init__(self, store: SqliteRelationalStore, table_prefix: str = "wp_"):
        self.store = store
        self.table = f"{table_prefix}options"
        self.ensure_table()

    def ensure_table(self) -> None:
        self.store.execute(
            f"CREATE TABLE IF NOT EXISTS `{self.table}` ("
            "option_id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "option_name TEXT NOT NULL UNIQUE, "
            "option_value TEXT, "
            "autoload TEXT NOT NULL DEFAULT 'yes')"
        )

    def get(self, key: str, default: Any = None) -> Any:
        rows = self.store.query(
            f"SELECT option_value FROM `{self.table}` WHERE option_name = ?",
            (key,),
        )
        return rows[0]["option_value"] if rows else default

    def set(self, key: str, value: Any) -> None:
        if not isinstance(value, str):
            value = json.dumps(value, ensure_ascii=False)
        self.store.execute(
            f"INSERT INTO `{self.table}` (option_name, option_value, autoload) VALUES (?, ?, 'yes') "
            "ON CONFLICT(option_name) DO UPDATE SET option_value = excluded.option_value",
            (key, value),
        )
        logger.debug(f"Option updated: {key}")

    def delete(self, key: str) -> None:
        self.store.execute(f"DELETE FROM `{self.table}` WHERE option_name = ?", (key,))
