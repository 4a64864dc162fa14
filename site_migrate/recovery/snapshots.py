"""Pre-import snapshots of database and uploads with retention."""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .._utils import logger, load_json, remove_path, save_json, PathLike
from ..archive import ArchiveType
from ..errors import NotFoundError, WriteError
from ..full_site import FullSiteExporter

ARCHIVE_NAME = "snapshot.wpbkp"
META_NAME = "snapshot.json"
DEFAULT_RETENTION = 3


class SnapshotMeta(BaseModel):
    id: str
    label: str = ""
    created_at: str
    path: str = ""
    size: int = 0
    includes: List[str] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


class SnapshotManager:
    """Create, list and prune snapshot containers.

    Each snapshot lives in ``<YmdHis>-<uuid4>/`` holding ``snapshot.wpbkp`` and
    ``snapshot.json``.
    """

    def __init__(self, exporter: FullSiteExporter, directory: PathLike, retention: int = DEFAULT_RETENTION):
        """Initialize manager.

        Args:
            exporter: Full-site exporter used to capture database and files
            directory: Base directory for snapshots
            retention: Number of snapshots kept; older ones are pruned
        """
        self.exporter = exporter
        self.directory = Path(directory)
        self.retention = max(1, retention)

    def create(
        self,
        label: str = "pre-import",
        include_plugins: bool = False,
        include_themes: bool = False,
        meta: Optional[Dict[str, Any]] = None,
    ) -> SnapshotMeta:
        """Capture the database and uploads (plus optional plugins/themes).

        Returns:
            SnapshotMeta of the new snapshot
        """
        created = datetime.now(timezone.utc)
        snapshot_id = f"{created.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4()}"
        snapshot_dir = self.directory / snapshot_id
        try:
            snapshot_dir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise WriteError(f"Unable to create snapshot folder: {e}") from e

        includes = ["uploads"]
        if include_plugins:
            includes.append("plugins")
        if include_themes:
            includes.append("themes")

        logger.info(f"Creating snapshot {snapshot_id} ({', '.join(includes)})")
        archive = snapshot_dir / ARCHIVE_NAME
        try:
            self.exporter.export_to(
                archive,
                archive_type=ArchiveType.SNAPSHOT.value,
                label=label,
                components=includes,
            )
        except BaseException:
            remove_path(snapshot_dir)
            raise

        snapshot = SnapshotMeta(
            id=snapshot_id,
            label=label,
            created_at=created.isoformat(),
            path=str(archive),
            size=archive.stat().st_size,
            includes=includes,
            meta=meta or {},
        )
        save_json(snapshot.model_dump(), snapshot_dir / META_NAME)
        logger.info(f"Snapshot created: {snapshot_id} ({snapshot.size:,} bytes)")

        self.enforce_retention()
        return snapshot

    def all(self) -> List[SnapshotMeta]:
        """Snapshots sorted by creation time, newest first."""
        if not self.directory.is_dir():
            return []

        snapshots = []
        for meta_file in self.directory.glob(f"*/{META_NAME}"):
            try:
                snapshot = SnapshotMeta.model_validate(load_json(meta_file))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping unreadable snapshot metadata {meta_file}: {e}")
                continue
            snapshot.path = str(meta_file.parent / ARCHIVE_NAME)
            snapshots.append(snapshot)

        snapshots.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return snapshots

    def get(self, snapshot_id: str) -> Optional[SnapshotMeta]:
        for snapshot in self.all():
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def delete(self, snapshot_id: str) -> bool:
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot not found: {snapshot_id}")
        remove_path(Path(snapshot.path).parent)
        logger.info(f"Snapshot deleted: {snapshot_id}")
        return True

    def enforce_retention(self) -> List[str]:
        """Delete the oldest snapshots beyond the retention count."""
        removed = []
        for snapshot in self.all()[self.retention:]:
            remove_path(Path(snapshot.path).parent)
            removed.append(snapshot.id)
        if removed:
            logger.info(f"Pruned {len(removed)} old snapshot(s)")
        return removed

    def restore_params(self, snapshot_id: str) -> Dict[str, Any]:
        """Import pipeline params that roll the site back to a snapshot."""
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot not found: {snapshot_id}")
        if not Path(snapshot.path).is_file():
            raise NotFoundError(f"Snapshot archive missing: {snapshot.path}")
        return {
            "archive_path": snapshot.path,
            "confirmed": True,
            "skip_snapshot": True,
            "keep_archive": True,
            "snapshot_id": snapshot.id,
            "snapshot_label": snapshot.label,
            "action": "rollback",
        }
