"""Collaborators shared by every pipeline step."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ..archive import CancelCheck, Extractor, Packer, select_backend
from ..chunking import ChunkJobRepository, ChunkTransferService
from ..config import MigrateConfig
from ..content import ContentImporter
from ..full_site import FullSiteExporter, FullSiteImporter
from ..interfaces import ContentProvider, MediaProvider, OptionsStore, RelationalStore, SiteHooks
from ..recovery import HistoryRepository, JobLock, SnapshotManager, create_job_lock
from .state import StateStore, create_state_store
from .status import StatusReporter

HISTORY_FILE = "history.json"


@dataclass
class PipelineContext:
    config: MigrateConfig
    store: RelationalStore
    packer: Packer
    extractor: Extractor
    state: StateStore
    job_lock: JobLock
    history: HistoryRepository
    options: Optional[OptionsStore] = None
    chunks: Optional[ChunkTransferService] = None
    snapshots: Optional[SnapshotManager] = None
    content_importer: Optional[ContentImporter] = None
    hooks: SiteHooks = field(default_factory=SiteHooks)

    @classmethod
    def from_config(
        cls,
        config: MigrateConfig,
        store: RelationalStore,
        options: Optional[OptionsStore] = None,
        redis_client: Optional["redis.Redis"] = None,
        content: Optional[ContentProvider] = None,
        media: Optional[MediaProvider] = None,
        hooks: Optional[SiteHooks] = None,
    ) -> "PipelineContext":
        """Wire every collaborator from configuration.

        Args:
            config: Complete configuration
            store: Relational store of the local site
            options: Options store of the local site
            redis_client: Required by the redis lock and state backends
            content: Content provider enabling page/post/bundle imports
            media: Media provider enabling attachment restore
            hooks: Host callbacks run at the end of an import
        """
        storage = Path(config.pipeline.storage_dir)
        backend = select_backend(config.archive.backend)
        packer = Packer(backend, output_dir=config.archive.exports_dir, extension=config.archive.extension)
        extractor = Extractor(backend, temp_dir=storage / "tmp")
        job_lock = create_job_lock(config.lock, redis_client)
        site_exporter = FullSiteExporter(store, config.site, packer)

        def export_site(output_path: Path, cancel_check: CancelCheck) -> Path:
            return site_exporter.export_to(output_path, cancel_check=cancel_check)

        chunks = ChunkTransferService(
            ChunkJobRepository.from_config(config.chunk),
            config.chunk,
            exporter=export_site,
            job_lock=job_lock,
        )
        content_importer = None
        if content is not None:
            content_importer = ContentImporter(content, extractor, media=media, options=options)

        return cls(
            config=config,
            store=store,
            packer=packer,
            extractor=extractor,
            state=create_state_store(config.pipeline, redis_client),
            job_lock=job_lock,
            history=HistoryRepository(storage / HISTORY_FILE),
            options=options,
            chunks=chunks,
            snapshots=SnapshotManager(site_exporter, config.snapshot.directory, config.snapshot.retention),
            content_importer=content_importer,
            hooks=hooks or SiteHooks(),
        )

    @property
    def storage_dir(self) -> Path:
        return Path(self.config.pipeline.storage_dir)

    @property
    def exports_dir(self) -> Path:
        return Path(self.config.archive.exports_dir)

    def scratch_dir(self, params: Dict[str, Any]) -> Path:
        """Per-run working directory named by the ``storage`` param."""
        storage = params.get("storage")
        if not storage:
            raise ValueError("Pipeline params carry no storage directory")
        return self.storage_dir / storage

    def status(self, params: Dict[str, Any]) -> StatusReporter:
        return StatusReporter(self.state, params["run_id"])

    @property
    def full_site_exporter(self) -> FullSiteExporter:
        return FullSiteExporter(self.store, self.config.site, self.packer)

    @property
    def full_site_importer(self) -> FullSiteImporter:
        return FullSiteImporter(self.store, self.config.site, self.extractor)
