"""Whole-site archives: database dump plus site file trees."""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ._utils import logger, PathLike
from .archive import (
    DATABASE_SQL_NAME,
    FILES_PREFIX,
    ArchiveType,
    CancelCheck,
    Extractor,
    Packer,
    collect_directory_assets,
)
from .config import SiteConfig
from .database import (
    DatabaseDump,
    DomainReplacer,
    FullDatabaseExporter,
    FullDatabaseImporter,
    render_sql_dump,
)
from .errors import FormatError
from .interfaces import RelationalStore

FULL_SITE_COMPONENTS = ("uploads", "plugins", "themes", "mu-plugins", "content")
SNAPSHOT_COMPONENTS = ("uploads",)


def component_prefix(component: str) -> str:
    return f"{FILES_PREFIX}{component}"


class FullSiteExporter:
    """Pack the site's database and file components into one container."""

    def __init__(self, store: RelationalStore, site: SiteConfig, packer: Packer):
        self.store = store
        self.site = site
        self.packer = packer

    def collect_assets(self, components: Sequence[str]) -> List[Any]:
        """Assets for each component under ``files/<component>/``.

        The ``content`` component excludes the directories of the other
        components.
        """
        paths = self.site.component_paths
        assets = []
        for component in components:
            directory = paths.get(component)
            if not directory:
                logger.warning(f"Unknown site component: {component}")
                continue
            exclude: Iterable[str] = ()
            if component == "content":
                exclude = [path for name, path in paths.items() if name != "content"]
            found = collect_directory_assets(directory, component_prefix(component), exclude=exclude)
            logger.debug(f"Component {component}: {len(found)} file(s)")
            assets.extend(found)
        return assets

    def export_to(
        self,
        target_path: PathLike,
        cancel_check: CancelCheck = None,
        archive_type: str = ArchiveType.FULL_SITE.value,
        label: str = "",
        components: Sequence[str] = FULL_SITE_COMPONENTS,
        include_sql: bool = False,
    ) -> Path:
        """Write a container holding ``{"type", "database"}`` and the components.

        Args:
            target_path: Container path
            cancel_check: Polled between tables and while copying files
            archive_type: ``full-site`` or ``snapshot``
            label: Manifest label
            components: Site components to include
            include_sql: Also store the raw SQL rendering as ``database.sql``

        Returns:
            Path to the created container
        """
        dump = FullDatabaseExporter.for_site(self.store, self.site).export(cancel_check)
        payload = {"type": archive_type, "database": dump.to_payload()}
        extra = {DATABASE_SQL_NAME: render_sql_dump(dump).encode("utf-8")} if include_sql else None

        return self.packer.create_archive(
            payload,
            {"type": archive_type, "label": label, "includes": list(components)},
            assets=self.collect_assets(components),
            target_path=target_path,
            extra_entries=extra,
            cancel_check=cancel_check,
        )


class FullSiteImporter:
    """Restore database and file components from a full-site or snapshot container."""

    def __init__(
        self,
        store: RelationalStore,
        site: SiteConfig,
        extractor: Extractor,
        replace_domains: bool = True,
    ):
        self.store = store
        self.site = site
        self.extractor = extractor
        self.replace_domains = replace_domains

    def load_dump(self, payload: Dict[str, Any]) -> DatabaseDump:
        database = payload.get("database") if isinstance(payload, dict) else None
        if not isinstance(database, dict):
            raise FormatError("Archive payload carries no database dump")
        return DatabaseDump.model_validate(database)

    def import_database(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        dump = self.load_dump(payload)
        replacer = None
        if self.replace_domains:
            replacer = DomainReplacer(self.site.site_url, self.site.paths)
        importer = FullDatabaseImporter(self.store, self.site.table_prefix, replacer=replacer)
        return importer.import_dump(dump)

    def restore_component(self, archive_path: PathLike, component: str, keep_existing: bool = False) -> int:
        """Copy ``files/<component>/`` out of the container into the site.

        Args:
            archive_path: Container path
            component: Component name
            keep_existing: Leave files already present at the destination untouched

        Returns:
            Number of files written
        """
        destination = self.site.component_paths.get(component)
        if not destination:
            raise ValueError(f"Unknown site component: {component}")
        os.makedirs(destination, exist_ok=True)
        return self.extractor.extract_tree(
            archive_path,
            component_prefix(component),
            destination,
            overwrite=not keep_existing,
        )

    def restore(self, archive_path: PathLike, components: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Verify the container, then restore the database and every component."""
        extracted = self.extractor.extract(archive_path)
        summary = {"database": self.import_database(extracted.payload), "files": {}}
        included = components
        if included is None:
            included = extracted.manifest.includes if extracted.manifest else SNAPSHOT_COMPONENTS
        for component in included:
            summary["files"][component] = self.restore_component(archive_path, component)
        return summary
