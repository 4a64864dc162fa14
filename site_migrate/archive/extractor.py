"""Read and verify archive containers."""

import hmac
import json
import os
import shutil
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

from .._utils import logger, compute_bytes_checksum, is_within_directory, PathLike
from ..errors import FormatError, IntegrityError
from .backends import COPY_BLOCK_SIZE, ArchiveBackend, ArchiveReader, alternate_backend, select_backend
from .models import MANIFEST_NAME, PAYLOAD_NAME, ArchiveManifest, ExtractedArchive

T = TypeVar("T")


class Extractor:
    """Open containers, verify the payload checksum and stream assets out."""

    def __init__(self, backend: Optional[ArchiveBackend] = None, temp_dir: Optional[PathLike] = None):
        self.backend = backend or select_backend()
        self.temp_dir = Path(temp_dir) if temp_dir else None

    def _with_reader(self, archive_path: PathLike, action: Callable[[ArchiveReader], T]) -> T:
        """Run action against the primary backend, then the alternate one."""
        archive_path = Path(archive_path)
        if not archive_path.is_file():
            raise FormatError(f"Archive not found: {archive_path}")

        backends = [self.backend]
        alternate = alternate_backend(self.backend)
        if alternate is not None:
            backends.append(alternate)

        last_error: Optional[FormatError] = None
        for backend in backends:
            try:
                with backend.open_reader(archive_path) as reader:
                    return action(reader)
            except FormatError as e:
                logger.warning(f"{backend.name} backend could not read {archive_path.name}: {e}")
                last_error = e

        raise last_error or FormatError(f"Unable to read archive: {archive_path}")

    def list_entries(self, archive_path: PathLike) -> List[str]:
        return self._with_reader(archive_path, lambda reader: sorted(reader.names()))

    def read_manifest(self, archive_path: PathLike) -> ArchiveManifest:
        return self._with_reader(archive_path, self._read_manifest)

    def extract(self, archive_path: PathLike) -> ExtractedArchive:
        """Read manifest and payload, verifying the payload checksum.

        Raises:
            FormatError: missing streams or invalid JSON
            IntegrityError: payload checksum does not match the manifest, or the
                payload stream fails its CRC or decompression
        """
        def action(reader: ArchiveReader) -> ExtractedArchive:
            manifest = self._read_manifest(reader)
            payload_bytes = self._read_payload(reader)

            actual = compute_bytes_checksum(payload_bytes)
            if not hmac.compare_digest(actual, manifest.checksum.lower()):
                raise IntegrityError(
                    f"Archive checksum mismatch: expected {manifest.checksum}, got {actual}"
                )

            try:
                payload = json.loads(payload_bytes.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise FormatError(f"Invalid payload JSON: {e}") from e

            logger.info(f"Archive verified: {manifest.type} ({len(payload_bytes):,} payload bytes)")
            return ExtractedArchive(
                type=manifest.type,
                payload=payload,
                media=manifest.media,
                manifest=manifest,
            )

        return self._with_reader(archive_path, action)

    def extract_media_file(self, archive_relative_path: str, archive_path: PathLike) -> Path:
        """Stream one asset into a fresh temporary file and return its path."""
        def action(reader: ArchiveReader) -> Path:
            if not reader.has(archive_relative_path):
                raise FormatError(f"Asset not found in archive: {archive_relative_path}")

            suffix = Path(archive_relative_path).suffix
            if self.temp_dir is not None:
                self.temp_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix="site-migrate-media-", suffix=suffix, dir=self.temp_dir)
            try:
                with os.fdopen(fd, "wb") as target, reader.open(archive_relative_path) as source:
                    shutil.copyfileobj(source, target, COPY_BLOCK_SIZE)
            except BaseException:
                os.unlink(name)
                raise
            return Path(name)

        return self._with_reader(archive_path, action)

    def extract_tree(self, archive_path: PathLike, prefix: str, destination: PathLike,
                     overwrite: bool = True) -> int:
        """Copy every entry under prefix into destination.

        Returns:
            Number of files written
        """
        prefix = prefix.strip("/") + "/"
        destination = Path(destination)

        def action(reader: ArchiveReader) -> int:
            written = 0
            for name in reader.names():
                if not name.startswith(prefix):
                    continue
                relative = name[len(prefix):]
                target = destination / relative
                if not is_within_directory(destination, target):
                    logger.warning(f"Refusing archive entry outside destination: {name}")
                    continue
                if target.exists() and not overwrite:
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with reader.open(name) as source, open(target, "wb") as out:
                    shutil.copyfileobj(source, out, COPY_BLOCK_SIZE)
                written += 1
            return written

        count = self._with_reader(archive_path, action)
        logger.info(f"Extracted {count} file(s) from {prefix} to {destination}")
        return count

    def _read_manifest(self, reader: ArchiveReader) -> ArchiveManifest:
        data = self._read_stream(reader, MANIFEST_NAME)
        try:
            return ArchiveManifest.model_validate(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, ValueError) as e:
            raise FormatError(f"Invalid manifest: {e}") from e

    @staticmethod
    def _read_stream(reader: ArchiveReader, name: str) -> bytes:
        if not reader.has(name):
            raise FormatError(f"Archive is missing {name}")
        try:
            return reader.read(name)
        except (OSError, EOFError, KeyError, zipfile.BadZipFile, zlib.error) as e:
            raise FormatError(f"Failed to read {name}: {e}") from e

    @staticmethod
    def _read_payload(reader: ArchiveReader) -> bytes:
        if not reader.has(PAYLOAD_NAME):
            raise FormatError(f"Archive is missing {PAYLOAD_NAME}")
        try:
            return reader.read(PAYLOAD_NAME)
        except OSError as e:
            raise FormatError(f"Failed to read {PAYLOAD_NAME}: {e}") from e
        except (EOFError, zipfile.BadZipFile, zlib.error, FormatError) as e:
            raise IntegrityError(f"Payload stream is corrupt: {e}") from e
