from .backends import (
    ArchiveBackend,
    CancelCheck,
    NativeZipBackend,
    StreamingZipBackend,
    STORED_EXTENSIONS,
    IGNORED_PATTERNS,
    select_backend,
)
from .extractor import Extractor
from .models import (
    DATABASE_SQL_NAME,
    FILES_PREFIX,
    FORMAT_VERSION,
    MANIFEST_NAME,
    MEDIA_PREFIX,
    PAYLOAD_NAME,
    ArchiveAsset,
    ArchiveManifest,
    ArchiveType,
    AttachmentManifestEntry,
    ExtractedArchive,
)
from .packer import Packer, collect_directory_assets, encode_payload

__all__ = [
    "ArchiveBackend",
    "CancelCheck",
    "NativeZipBackend",
    "StreamingZipBackend",
    "STORED_EXTENSIONS",
    "IGNORED_PATTERNS",
    "select_backend",
    "Extractor",
    "DATABASE_SQL_NAME",
    "FILES_PREFIX",
    "FORMAT_VERSION",
    "MANIFEST_NAME",
    "MEDIA_PREFIX",
    "PAYLOAD_NAME",
    "ArchiveAsset",
    "ArchiveManifest",
    "ArchiveType",
    "AttachmentManifestEntry",
    "ExtractedArchive",
    "Packer",
    "collect_directory_assets",
    "encode_payload",
]
