"""Raw SQL rendering and replay for legacy dump files."""

import re
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import Any, Callable, List, Optional

from .._utils import logger, utc_timestamp
from ..errors import DangerousStatementSkipped
from ..interfaces import RelationalStore
from .models import DatabaseDump

DANGEROUS_STATEMENT = re.compile(r"^\s*(DROP|TRUNCATE|DELETE\s+FROM\s+\w+\s*;?\s*$)", re.IGNORECASE)

_LINE_COMMENT = re.compile(r"^--.*$", re.MULTILINE)
_BLOCK_COMMENT = re.compile(r"^/\*.*?\*/;?$", re.MULTILINE | re.DOTALL)

INSERT_BATCH_SIZE = 100
PROGRESS_INTERVAL = 100


@dataclass
class ReplayResult:
    executed: int = 0
    failed: int = 0
    skipped: List[DangerousStatementSkipped] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.executed + self.failed + len(self.skipped)


def strip_sql_comments(sql: str) -> str:
    sql = _LINE_COMMENT.sub("", sql)
    return _BLOCK_COMMENT.sub("", sql)


def split_sql_statements(sql: str, backslash_escapes: bool = True) -> List[str]:
    """Split on semicolons outside of quoted strings.

    Args:
        sql: SQL text with comments already removed
        backslash_escapes: Treat ``\\'`` inside strings as an escaped quote

    Returns:
        Non-empty statements, each keeping its terminating semicolon
    """
    statements: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    escaped = False

    for char in sql:
        current.append(char)
        if quote is not None:
            if escaped:
                escaped = False
            elif char == "\\" and backslash_escapes:
                escaped = True
            elif char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == ";":
            statements.append("".join(current))
            current = []

    tail = "".join(current)
    if tail.strip():
        statements.append(tail)

    return [statement.strip() for statement in statements if statement.strip()]


def is_dangerous_statement(statement: str) -> bool:
    """DROP, TRUNCATE and DELETE without a WHERE clause."""
    return bool(DANGEROUS_STATEMENT.match(statement))


def replay_sql(
    sql: str,
    store: RelationalStore,
    progress_callback: Optional[Callable[[int], None]] = None,
    backslash_escapes: Optional[bool] = None,
) -> ReplayResult:
    """Execute a raw SQL dump statement by statement.

    Dangerous statements are skipped with a warning; failing statements are
    logged and replay continues.

    Args:
        sql: Raw SQL dump
        store: Destination relational store
        progress_callback: Receives a percentage every hundred statements
        backslash_escapes: Passed to the statement splitter; defaults to the
            store's string literal dialect

    Returns:
        ReplayResult with executed, failed and skipped counts
    """
    if backslash_escapes is None:
        backslash_escapes = store.backslash_escapes
    statements = split_sql_statements(strip_sql_comments(sql), backslash_escapes)
    result = ReplayResult()
    total = len(statements)
    logger.info(f"Replaying {total} SQL statement(s)")

    for position, statement in enumerate(statements, start=1):
        if is_dangerous_statement(statement):
            skipped = DangerousStatementSkipped(statement)
            logger.warning(str(skipped))
            result.skipped.append(skipped)
        else:
            try:
                store.execute(statement)
                result.executed += 1
            except Exception as e:
                logger.error(f"Database import error: {e}")
                result.failed += 1

        if progress_callback is not None and position % PROGRESS_INTERVAL == 0:
            progress_callback(int(position / total * 100))

    if progress_callback is not None and total:
        progress_callback(100)

    logger.info(
        f"SQL replay finished: {result.executed} executed, {result.failed} failed, "
        f"{len(result.skipped)} skipped"
    )
    return result


def quote_sql_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (datetime, date)):
        value = value.isoformat(sep=" ") if isinstance(value, datetime) else value.isoformat()
    if isinstance(value, bytes):
        return "X'" + value.hex() + "'"
    return "'" + str(value).replace("'", "''") + "'"


def render_sql_dump(dump: DatabaseDump) -> str:
    """Render a dump as CREATE and INSERT statements."""
    lines = [
        "-- site-migrate database dump",
        f"-- Site: {dump.site_url}",
        f"-- Prefix: {dump.table_prefix}",
        f"-- Generated: {utc_timestamp()}",
        "",
    ]

    for name, table in dump.tables.items():
        if not table.create_statement:
            continue
        lines.append(f"-- Table structure for `{name}`")
        lines.append(table.create_statement.rstrip().rstrip(";") + ";")
        lines.append("")

        if not table.rows:
            continue
        lines.append(f"-- Data for table `{name}`")
        for offset in range(0, len(table.rows), INSERT_BATCH_SIZE):
            batch = table.rows[offset:offset + INSERT_BATCH_SIZE]
            columns = list(batch[0].keys())
            column_list = ", ".join(f"`{column}`" for column in columns)
            values = ",\n".join(
                "(" + ",".join(quote_sql_value(row.get(column)) for column in columns) + ")"
                for row in batch
            )
            lines.append(f"INSERT INTO `{name}` ({column_list}) VALUES\n{values};")
        lines.append("")

    return "\n".join(lines) + "\n"
