"""Data models for the archive container."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

FORMAT_VERSION = 1

MANIFEST_NAME = "manifest.json"
PAYLOAD_NAME = "payload/content.json"
DATABASE_SQL_NAME = "database.sql"
MEDIA_PREFIX = "media/"
FILES_PREFIX = "files/"


class ArchiveType(str, Enum):
    PAGE = "page"
    POST = "post"
    FORM = "forms"
    OPTIONS_PAGE = "options_page"
    BUNDLE = "bundle"
    SNAPSHOT = "snapshot"
    FULL_SITE = "full-site"


class AttachmentManifestEntry(BaseModel):
    """One deduplicatable media asset referenced by a manifest."""

    original_id: int
    parent_id: int = Field(default=0, validation_alias=AliasChoices("parent_id", "parent"))
    filename: str
    mime_type: str = ""
    filesize: int = 0
    checksum: str = Field(default="", description="SHA-256 hex of the file bytes")
    source_url: str = ""
    title: str = ""
    alt: str = ""
    caption: str = ""
    description: str = ""
    archive_path: str = Field(default="", description="Relative path inside the container")

    model_config = ConfigDict(populate_by_name=True)


class ArchiveManifest(BaseModel):
    """Container metadata; checksum protects the payload stream only."""

    format_version: int = FORMAT_VERSION
    producer_version: str = Field(default="", alias="plugin_version")
    type: str
    label: str = ""
    created_at: str = Field(..., alias="created_at_gmt")
    checksum: str = Field(..., description="SHA-256 hex of the payload stream")
    media: List[AttachmentManifestEntry] = Field(default_factory=list)
    includes: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ArchiveAsset(BaseModel):
    """A file on disk copied unmodified into the container."""

    source_path: str
    target_path: str


class ExtractedArchive(BaseModel):
    type: str
    payload: Any
    media: List[AttachmentManifestEntry] = Field(default_factory=list)
    manifest: Optional[ArchiveManifest] = None
