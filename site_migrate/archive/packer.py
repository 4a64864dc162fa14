"""Build archive containers from a payload, manifest metadata and assets."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .._utils import logger, compute_bytes_checksum, remove_path, utc_timestamp, PathLike
from ..errors import EncodingError, JobCancelledError, WriteError
from .backends import ArchiveBackend, CancelCheck, is_ignored, normalize_entry_name, select_backend
from .models import (
    FORMAT_VERSION,
    MANIFEST_NAME,
    PAYLOAD_NAME,
    ArchiveAsset,
    ArchiveManifest,
    AttachmentManifestEntry,
)

AssetLike = Union[ArchiveAsset, Mapping[str, str]]


def encode_payload(payload: Any) -> bytes:
    """Serialize a payload to the exact bytes stored in the container."""
    try:
        text = json.dumps(payload, indent=4, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Failed to encode archive payload: {e}") from e
    return text.encode("utf-8")


def _coerce_asset(asset: AssetLike) -> ArchiveAsset:
    if isinstance(asset, ArchiveAsset):
        return asset
    source = asset.get("source_path") or asset.get("source")
    target = asset.get("target_path") or asset.get("target")
    if not source or not target:
        raise ValueError(f"Asset needs a source and a target path: {dict(asset)}")
    return ArchiveAsset(source_path=str(source), target_path=str(target))


def collect_directory_assets(
    directory: PathLike,
    target_prefix: str,
    exclude: Sequence[PathLike] = (),
) -> List[ArchiveAsset]:
    """Walk a directory into assets placed under target_prefix.

    VCS metadata and ``.DS_Store`` files are ignored, as are the excluded
    subdirectories.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    excluded = {os.path.abspath(path) for path in exclude}
    prefix = target_prefix.strip("/")
    assets = []

    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(
            d for d in dirs
            if os.path.abspath(os.path.join(root, d)) not in excluded
            and not is_ignored(os.path.join(root, d) + "/")
        )
        for filename in sorted(files):
            source = os.path.join(root, filename)
            if is_ignored(source) or not os.path.isfile(source):
                continue
            relative = os.path.relpath(source, directory).replace(os.sep, "/")
            assets.append(ArchiveAsset(source_path=source, target_path=f"{prefix}/{relative}"))

    return assets


class Packer:
    """Create archive containers.

    The manifest checksum is the SHA-256 of the exact payload bytes written to
    ``payload/content.json``.
    """

    def __init__(
        self,
        backend: Optional[ArchiveBackend] = None,
        output_dir: Optional[PathLike] = None,
        extension: str = ".wpbkp",
        producer_version: Optional[str] = None,
    ):
        self.backend = backend or select_backend()
        self.output_dir = Path(output_dir) if output_dir else Path(tempfile.gettempdir())
        self.extension = extension
        self.producer_version = producer_version or self._get_version()

    def build_manifest(self, payload_bytes: bytes, meta: Mapping[str, Any]) -> ArchiveManifest:
        media = [
            entry if isinstance(entry, AttachmentManifestEntry)
            else AttachmentManifestEntry.model_validate(entry)
            for entry in meta.get("media") or []
        ]
        return ArchiveManifest(
            format_version=FORMAT_VERSION,
            producer_version=self.producer_version,
            type=str(meta.get("type") or "page"),
            label=str(meta.get("label") or ""),
            created_at=utc_timestamp(),
            checksum=compute_bytes_checksum(payload_bytes),
            media=media,
            includes=list(meta.get("includes") or []),
        )

    def create_archive(
        self,
        payload: Any,
        meta: Mapping[str, Any],
        assets: Iterable[AssetLike] = (),
        target_path: Optional[PathLike] = None,
        extra_entries: Optional[Dict[str, bytes]] = None,
        cancel_check: CancelCheck = None,
    ) -> Path:
        """Write payload, manifest and assets into a new container.

        Args:
            payload: JSON-serializable payload document
            meta: ``type``, ``label``, ``media`` and ``includes`` for the manifest
            assets: Files copied unmodified; unreadable ones are skipped
            target_path: Container path; a fresh temp file when omitted
            extra_entries: Additional named byte streams
            cancel_check: Polled while copying; returning True aborts the write

        Returns:
            Path to the created container
        """
        payload_bytes = encode_payload(payload)
        manifest = self.build_manifest(payload_bytes, meta)
        manifest_bytes = json.dumps(manifest.to_wire(), indent=4, ensure_ascii=False).encode("utf-8")

        archive_path = self._resolve_target(target_path)
        logger.info(f"Creating {manifest.type} archive: {archive_path}")

        try:
            writer = self.backend.open_writer(archive_path)
        except OSError as e:
            remove_path(archive_path)
            raise WriteError(f"Unable to open archive for writing: {archive_path}: {e}") from e

        skipped = 0
        try:
            with writer:
                writer.add_bytes(MANIFEST_NAME, manifest_bytes)
                writer.add_bytes(PAYLOAD_NAME, payload_bytes, cancel_check)

                for name, data in (extra_entries or {}).items():
                    writer.add_bytes(name, data)

                for asset in assets:
                    asset = _coerce_asset(asset)
                    if not self._add_asset(writer, asset, cancel_check):
                        skipped += 1
        except JobCancelledError:
            logger.info(f"Archive creation cancelled: {archive_path}")
            remove_path(archive_path)
            raise
        except (OSError, ValueError) as e:
            remove_path(archive_path)
            raise WriteError(f"Failed to write archive {archive_path}: {e}") from e

        if skipped:
            logger.warning(f"Archive {archive_path.name}: skipped {skipped} unreadable asset(s)")
        logger.info(f"Archive created: {archive_path.stat().st_size:,} bytes")
        return archive_path

    def _add_asset(self, writer, asset: ArchiveAsset, cancel_check: CancelCheck) -> bool:
        source = asset.source_path
        if not os.path.isfile(source) or not os.access(source, os.R_OK):
            logger.warning(f"Skipping missing asset: {source}")
            return False
        try:
            writer.add_file(normalize_entry_name(asset.target_path), source, cancel_check)
        except JobCancelledError:
            raise
        except OSError as e:
            logger.warning(f"Skipping asset {source}: {e}")
            return False
        return True

    def _resolve_target(self, target_path: Optional[PathLike]) -> Path:
        if target_path is not None:
            target = Path(target_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            return target

        self.output_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="site-migrate-", suffix=self.extension, dir=self.output_dir)
        os.close(fd)
        return Path(name)

    def _get_version(self) -> str:
        try:
            from .. import __version__
            return __version__
        except ImportError:
            return "unknown"
