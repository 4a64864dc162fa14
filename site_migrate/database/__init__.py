from .exporter import FullDatabaseExporter
from .importer import FullDatabaseImporter, detect_prefix_from_tables, is_valid_table_name
from .models import DatabaseDump, TableDump
from .replacer import DomainReplacer
from .sql import (
    ReplayResult,
    is_dangerous_statement,
    render_sql_dump,
    replay_sql,
    split_sql_statements,
)
from .sqlite import SqliteOptionsStore, SqliteRelationalStore

__all__ = [
    "DatabaseDump",
    "DomainReplacer",
    "FullDatabaseExporter",
    "FullDatabaseImporter",
    "ReplayResult",
    "SqliteOptionsStore",
    "SqliteRelationalStore",
    "TableDump",
    "detect_prefix_from_tables",
    "is_dangerous_statement",
    "is_valid_table_name",
    "render_sql_dump",
    "replay_sql",
    "split_sql_statements",
]
