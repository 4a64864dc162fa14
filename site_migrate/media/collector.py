"""Discover the attachments a post references and describe them for a manifest."""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .._utils import logger, compute_checksum
from ..archive import MEDIA_PREFIX, ArchiveAsset, AttachmentManifestEntry
from ..interfaces import ContentProvider, MediaProvider

CONTENT_ID_PATTERNS = (
    re.compile(r"wp-image-([0-9]+)", re.IGNORECASE),
    re.compile(r'data-id="([0-9]+)"', re.IGNORECASE),
    re.compile(r"attachment_([0-9]+)", re.IGNORECASE),
    re.compile(r'"id":\s*([0-9]+)', re.IGNORECASE),
)
GALLERY_PATTERN = re.compile(r'\[gallery[^\]]*ids="([^"]+)"', re.IGNORECASE)


@dataclass
class AttachmentCollection:
    """Manifest entries plus the files to copy into the container."""
    entries: List[AttachmentManifestEntry] = field(default_factory=list)
    assets: List[ArchiveAsset] = field(default_factory=list)

    def add(self, entry: AttachmentManifestEntry, asset: ArchiveAsset) -> None:
        if any(existing.archive_path == entry.archive_path for existing in self.entries):
            return
        self.entries.append(entry)
        self.assets.append(asset)

    def merge(self, other: Optional["AttachmentCollection"]) -> None:
        if other is None:
            return
        for entry, asset in zip(other.entries, other.assets):
            self.add(entry, asset)

    def has_items(self) -> bool:
        return bool(self.entries)


def parse_content_ids(content: str) -> List[int]:
    ids = []
    for pattern in CONTENT_ID_PATTERNS:
        ids.extend(int(match) for match in pattern.findall(content or ""))
    return ids


def parse_gallery_ids(content: str) -> List[int]:
    ids = []
    for group in GALLERY_PATTERN.findall(content or ""):
        ids.extend(int(value) for value in (part.strip() for part in group.split(",")) if value.isdigit())
    return ids


class AttachmentCollector:
    """Turn attachment references of a post into manifest entries and assets."""

    def __init__(self, content: ContentProvider, media: MediaProvider):
        self.content = content
        self.media = media

    def collect_for_post(self, post: Dict[str, Any]) -> Optional[AttachmentCollection]:
        """Collect every attachment referenced by the post.

        Args:
            post: Post dict as returned by the content provider

        Returns:
            AttachmentCollection, or None when nothing usable was found
        """
        collection = AttachmentCollection()
        for attachment_id in self.discover_attachment_ids(post):
            built = self.build_entry(attachment_id, int(post.get("id") or 0))
            if built is not None:
                collection.add(*built)
        return collection if collection.has_items() else None

    def discover_attachment_ids(self, post: Dict[str, Any]) -> List[int]:
        content = post.get("content") or ""
        ids: List[int] = []
        if post.get("featured_media"):
            ids.append(int(post["featured_media"]))
        ids.extend(parse_content_ids(content))
        ids.extend(parse_gallery_ids(content))
        if post.get("id"):
            ids.extend(self._probe_meta(int(post["id"])))

        unique = []
        for value in ids:
            if value > 0 and value not in unique:
                unique.append(value)
        return unique

    def _probe_meta(self, post_id: int) -> List[int]:
        """Numeric meta values that point at attachments (image fields)."""
        found = []
        for value in self.content.get_meta(post_id).values():
            values: Iterable[Any] = value if isinstance(value, list) else [value]
            for candidate in values:
                if isinstance(candidate, bool):
                    continue
                if isinstance(candidate, int) or (isinstance(candidate, str) and candidate.strip().isdigit()):
                    if self.media.get_attachment(int(candidate)) is not None:
                        found.append(int(candidate))
        return found

    def build_entry(self, attachment_id: int, parent_id: int):
        attachment = self.media.get_attachment(attachment_id)
        if attachment is None:
            return None

        file_path = attachment.get("file_path")
        if not file_path or not os.path.isfile(file_path):
            logger.warning(f"Skipping attachment {attachment_id}: file missing")
            return None

        filename = os.path.basename(file_path)
        entry = AttachmentManifestEntry(
            original_id=attachment_id,
            parent_id=parent_id,
            filename=filename,
            mime_type=attachment.get("mime_type") or "",
            filesize=os.path.getsize(file_path),
            checksum=compute_checksum(file_path),
            source_url=attachment.get("url") or "",
            title=attachment.get("title") or "",
            alt=attachment.get("alt") or "",
            caption=attachment.get("caption") or "",
            description=attachment.get("description") or "",
            archive_path=f"{MEDIA_PREFIX}{attachment_id}-{filename}",
        )
        return entry, ArchiveAsset(source_path=file_path, target_path=entry.archive_path)
