"""Full database export into a DatabaseDump."""

from typing import Callable, Dict, Optional

from .._utils import logger
from ..errors import JobCancelledError
from ..interfaces import RelationalStore
from .models import DatabaseDump, TableDump

CANCEL_POLL_ROWS = 500


class FullDatabaseExporter:
    """Capture schema and rows of every table under the active prefix."""

    def __init__(
        self,
        store: RelationalStore,
        table_prefix: str,
        site_url: str = "",
        home_url: str = "",
        paths: Optional[Dict[str, str]] = None,
    ):
        """Initialize exporter.

        Args:
            store: Relational store of the source site
            table_prefix: Prefix selecting the site's tables
            site_url: Site URL recorded for domain replacement on import
            home_url: Home URL recorded for domain replacement on import
            paths: ``root``, ``content`` and ``uploads`` paths of the source site
        """
        self.store = store
        self.table_prefix = table_prefix
        self.site_url = site_url
        self.home_url = home_url or site_url
        self.paths = dict(paths or {})

    @classmethod
    def for_site(cls, store: RelationalStore, site) -> "FullDatabaseExporter":
        """Build an exporter from a SiteConfig."""
        return cls(
            store,
            table_prefix=site.table_prefix,
            site_url=site.site_url,
            home_url=site.home_url,
            paths=site.paths,
        )

    def export(self, cancel_check: Optional[Callable[[], bool]] = None) -> DatabaseDump:
        """Dump every table with its CREATE statement and full row scan.

        Args:
            cancel_check: Polled between tables and every few hundred rows;
                returning True aborts the dump

        Returns:
            DatabaseDump of the site
        """
        dump = DatabaseDump(
            site_url=self.site_url,
            home_url=self.home_url,
            table_prefix=self.table_prefix,
            paths=self.paths,
        )

        tables = self.store.list_tables(self.table_prefix)
        logger.info(f"Exporting {len(tables)} table(s) with prefix '{self.table_prefix}'")

        for table in tables:
            if cancel_check is not None and cancel_check():
                raise JobCancelledError("Database export cancelled")

            rows = []
            for position, row in enumerate(self.store.fetch_rows(table), 1):
                if cancel_check is not None and position % CANCEL_POLL_ROWS == 0 and cancel_check():
                    raise JobCancelledError("Database export cancelled")
                rows.append(row)
            dump.tables[table] = TableDump(
                create_statement=self.store.show_create_table(table),
                rows=rows,
            )
            logger.debug(f"Exported table {table}: {len(rows)} row(s)")

        logger.info(f"Database export complete: {len(dump.tables)} table(s), {dump.row_count} row(s)")
        return dump
