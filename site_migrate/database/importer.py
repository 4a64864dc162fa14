"""Restore a DatabaseDump onto the destination relational store."""

import re
from typing import Any, Dict, Iterable, List, Optional

from .._utils import logger
from ..errors import DatabaseImportError
from ..interfaces import RelationalStore
from .models import DatabaseDump, TableDump
from .replacer import DomainReplacer

TABLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")

CORE_TABLE_SUFFIXES = ("posts", "options", "users", "usermeta", "terms", "term_taxonomy")

MAX_BATCH_SIZE = 500
OPTIONS_BATCH_SIZE = 100

# Destination options that survive an import untouched.
SKIPPED_OPTION_SUFFIXES = ("user_roles",)
SKIPPED_OPTIONS = frozenset({
    "default_role",
    "admin_email",
    "auth_key",
    "secure_auth_key",
    "logged_in_key",
    "nonce_key",
    "auth_salt",
    "secure_auth_salt",
    "logged_in_salt",
    "nonce_salt",
})


def is_valid_table_name(name: str) -> bool:
    return bool(TABLE_NAME_PATTERN.match(name or ""))


def detect_prefix_from_tables(table_names: Iterable[str]) -> str:
    """Guess the table prefix from core table names.

    A candidate prefix is accepted when at least three core tables share it.
    """
    names = set(table_names)
    for name in sorted(names):
        for suffix in CORE_TABLE_SUFFIXES:
            if not name.endswith(suffix):
                continue
            prefix = name[: -len(suffix)]
            matches = sum(1 for candidate in CORE_TABLE_SUFFIXES if prefix + candidate in names)
            if matches >= 3:
                return prefix
    return ""


def replace_table_prefix(name: str, source_prefix: str, target_prefix: str) -> str:
    if source_prefix and name.startswith(source_prefix):
        return target_prefix + name[len(source_prefix):]
    return name


def replace_schema_prefix(schema: str, source_prefix: str, target_prefix: str) -> str:
    """Rewrite quoted identifiers and the created table name to the target prefix."""
    schema = schema.replace(f"`{source_prefix}", f"`{target_prefix}")
    schema = schema.replace(f'"{source_prefix}', f'"{target_prefix}')
    return re.sub(
        rf"(CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?){re.escape(source_prefix)}",
        lambda match: match.group(1) + target_prefix,
        schema,
        count=1,
        flags=re.IGNORECASE,
    )


def is_skipped_option(name: str) -> bool:
    return name in SKIPPED_OPTIONS or any(name.endswith(suffix) for suffix in SKIPPED_OPTION_SUFFIXES)


class FullDatabaseImporter:
    """Apply a dump onto the current database.

    Foreign-key checks are disabled for the duration of the import and always
    re-enabled afterwards. The destination users and usermeta tables are left
    untouched when the dump does not carry them, and the roles, default role
    and admin email options of the destination are preserved.
    """

    def __init__(
        self,
        store: RelationalStore,
        table_prefix: str,
        replacer: Optional[DomainReplacer] = None,
    ):
        """Initialize importer.

        Args:
            store: Relational store of the destination site
            table_prefix: Table prefix of the destination site
            replacer: Rewrites source URLs and paths before rows are inserted
        """
        self.store = store
        self.table_prefix = table_prefix
        self.replacer = replacer

    @property
    def options_table(self) -> str:
        return f"{self.table_prefix}options"

    def import_dump(self, dump: DatabaseDump) -> Dict[str, Any]:
        """Restore every table of the dump.

        Args:
            dump: Database dump to apply

        Returns:
            Summary with imported tables, inserted rows and skipped tables

        Raises:
            DatabaseImportError: Empty dump, or the first truncate/insert failure
        """
        if not dump.tables:
            raise DatabaseImportError("Database dump is empty or invalid.")

        if self.replacer is not None:
            self.replacer.replace_dump(dump)

        summary: Dict[str, Any] = {"tables": [], "rows": 0, "skipped": []}

        self.store.set_foreign_key_checks(False)
        try:
            preserved = self._backup_critical_options()

            source_prefix = dump.table_prefix or detect_prefix_from_tables(dump.tables)
            if not dump.table_prefix and source_prefix:
                logger.info(f"Auto-detected source prefix: '{source_prefix}'")
            replace_prefix = bool(source_prefix) and source_prefix != self.table_prefix
            if replace_prefix:
                logger.info(f"Replacing table prefix '{source_prefix}' with '{self.table_prefix}'")

            protected = self._protected_tables(dump.tables)
            total = len(dump.tables)

            for position, (original_name, table) in enumerate(dump.tables.items(), start=1):
                name = original_name
                schema = table.create_statement
                if replace_prefix:
                    name = replace_table_prefix(original_name, source_prefix, self.table_prefix)
                    if schema:
                        schema = replace_schema_prefix(schema, source_prefix, self.table_prefix)

                if not is_valid_table_name(name):
                    logger.warning(f"Skipping table with invalid name: {name!r}")
                    summary["skipped"].append(name)
                    continue

                logger.info(f"Importing table {position}/{total}: {name}")
                if not self._ensure_table(name, schema):
                    summary["skipped"].append(name)
                    continue

                if name in protected:
                    logger.info(f"Skipping truncation of protected table: {name}")
                else:
                    try:
                        self.store.truncate(name)
                    except Exception as e:
                        raise DatabaseImportError(f"Unable to truncate table {name}.", table=name) from e

                summary["rows"] += self._insert_rows(name, table)
                summary["tables"].append(name)

            self._restore_critical_options(preserved)
        finally:
            self.store.set_foreign_key_checks(True)

        logger.info(
            f"Database import complete: {len(summary['tables'])} table(s), "
            f"{summary['rows']} row(s), {len(summary['skipped'])} skipped"
        )
        return summary

    def _protected_tables(self, dump_tables: Dict[str, TableDump]) -> List[str]:
        protected = []
        for suffix in ("users", "usermeta"):
            if any(name.endswith(suffix) for name in dump_tables):
                continue
            destination = f"{self.table_prefix}{suffix}"
            if self.store.table_exists(destination):
                logger.warning(f"Protecting existing {suffix} table: {destination} (not in dump)")
                protected.append(destination)
        return protected

    def _ensure_table(self, name: str, schema: str) -> bool:
        if self.store.table_exists(name):
            return True

        if not schema:
            logger.warning(f"Missing schema for table {name}; table skipped")
            return False
        if "create table" not in schema.lower():
            logger.warning(f"Schema for table {name} does not contain CREATE TABLE")

        try:
            self.store.execute(schema)
        except Exception as e:
            logger.error(f"Failed to create table {name}: {e}")
            return False

        if not self.store.table_exists(name):
            logger.error(f"Table {name} still missing after creation attempt; skipped")
            return False
        return True

    def _insert_rows(self, name: str, table: TableDump) -> int:
        rows = table.rows
        if name == self.options_table:
            rows = [row for row in rows if not is_skipped_option(str(row.get("option_name", "")))]
            batch_size = OPTIONS_BATCH_SIZE
        else:
            batch_size = MAX_BATCH_SIZE

        inserted = 0
        for offset in range(0, len(rows), batch_size):
            inserted += self._insert_batch(name, rows[offset:offset + batch_size])
        return inserted

    def _insert_batch(self, name: str, batch: List[Dict[str, Any]]) -> int:
        try:
            return self.store.bulk_insert(name, batch)
        except Exception as e:
            if not self.store.is_duplicate_key_error(e):
                raise DatabaseImportError(f"Failed to insert rows into {name}.", table=name) from e

        # Rows already present are acceptable; insert the rest one by one.
        inserted = 0
        for row in batch:
            try:
                inserted += self.store.bulk_insert(name, [row])
            except Exception as e:
                if not self.store.is_duplicate_key_error(e):
                    raise DatabaseImportError(f"Failed to insert rows into {name}.", table=name) from e
        return inserted

    def _critical_option_keys(self) -> List[str]:
        return [f"{self.table_prefix}user_roles", "default_role", "admin_email"]

    def _backup_critical_options(self) -> Dict[str, Any]:
        if not self.store.table_exists(self.options_table):
            return {}

        backup = {}
        sql = (
            f"SELECT option_value FROM `{self.options_table}` "
            f"WHERE option_name = {self.store.placeholder}"
        )
        for key in self._critical_option_keys():
            rows = self.store.query(sql, (key,))
            if rows:
                backup[key] = rows[0]["option_value"]
            else:
                logger.debug(f"Critical option not found: {key}")
        return backup

    def _restore_critical_options(self, preserved: Dict[str, Any]) -> None:
        if not preserved or not self.store.table_exists(self.options_table):
            return

        placeholder = self.store.placeholder
        for key, value in preserved.items():
            self.store.execute(
                f"DELETE FROM `{self.options_table}` WHERE option_name = {placeholder}",
                (key,),
            )
            self.store.bulk_insert(
                self.options_table,
                [{"option_name": key, "option_value": value, "autoload": "yes"}],
            )
        logger.info(f"Restored {len(preserved)} critical option(s)")
