"""Restore manifest attachments into the local media library."""

import os
import re
from typing import Any, Dict, Optional, Sequence

from .._utils import logger, compute_checksum, PathLike
from ..archive import AttachmentManifestEntry, Extractor
from ..errors import MigrationError
from ..interfaces import ContentProvider, MediaProvider

ORIGINAL_THUMBNAIL_META = "_original_thumbnail"


class AttachmentRestorer:
    """Deduplicate, sideload and relink the attachments of one archive.

    An entry whose checksum matches a local attachment (by stored checksum, or
    by filename with identical file bytes) is reused instead of imported again.
    """

    def __init__(self, content: ContentProvider, media: MediaProvider, extractor: Extractor):
        self.content = content
        self.media = media
        self.extractor = extractor

    def restore(
        self,
        entries: Sequence[Any],
        archive_path: PathLike,
        parent_id: int = 0,
    ) -> Dict[str, Dict]:
        """Restore entries and rewrite the parent post's references.

        Args:
            entries: Manifest media entries (models or dicts)
            archive_path: Container holding the ``media/`` assets
            parent_id: Post the attachments belong to; 0 skips relinking

        Returns:
            ``{"id_map": {old: new}, "url_map": {old_url: new_url}}``
        """
        id_map: Dict[int, int] = {}
        url_map: Dict[str, str] = {}

        for raw in entries:
            entry = raw if isinstance(raw, AttachmentManifestEntry) else AttachmentManifestEntry.model_validate(raw)
            if not entry.checksum or not entry.archive_path:
                continue

            attachment_id = self.find_existing(entry)
            if attachment_id is None:
                attachment_id = self._sideload(entry, archive_path, parent_id)
                if attachment_id is None:
                    continue

            id_map[entry.original_id] = attachment_id
            attachment = self.media.get_attachment(attachment_id) or {}
            if entry.source_url and attachment.get("url"):
                url_map[entry.source_url] = attachment["url"]

        if parent_id:
            self.update_content_references(parent_id, url_map, id_map)
            self.maybe_update_thumbnail(parent_id, id_map)

        return {"id_map": id_map, "url_map": url_map}

    def find_existing(self, entry: AttachmentManifestEntry) -> Optional[int]:
        existing = self.media.find_by_checksum(entry.checksum)
        if existing:
            logger.debug(f"Reusing attachment {existing} for {entry.filename}")
            return existing

        for candidate in self.media.find_by_filename(entry.filename):
            file_path = candidate.get("file_path")
            if not file_path or not os.path.isfile(file_path):
                continue
            if compute_checksum(file_path) == entry.checksum:
                attachment_id = int(candidate["id"])
                self.media.set_checksum(attachment_id, entry.checksum)
                logger.debug(f"Reusing attachment {attachment_id} matched by filename {entry.filename}")
                return attachment_id
        return None

    def _sideload(self, entry: AttachmentManifestEntry, archive_path: PathLike, parent_id: int) -> Optional[int]:
        try:
            temp_path = self.extractor.extract_media_file(entry.archive_path, archive_path)
        except MigrationError as e:
            logger.warning(f"Skipping media {entry.archive_path}: {e}")
            return None

        fields = {
            "filename": entry.filename,
            "mime_type": entry.mime_type,
            "title": entry.title,
            "alt": entry.alt,
            "caption": entry.caption,
            "description": entry.description,
        }
        try:
            attachment_id = self.media.sideload_file(str(temp_path), parent_id, fields)
        except Exception as e:
            logger.warning(f"Failed to sideload {entry.filename}: {e}")
            return None
        finally:
            temp_path.unlink(missing_ok=True)

        self.media.set_checksum(attachment_id, entry.checksum)
        logger.info(f"Imported attachment {entry.original_id} as {attachment_id}")
        return attachment_id

    def update_content_references(self, post_id: int, url_map: Dict[str, str], id_map: Dict[int, int]) -> bool:
        if not url_map and not id_map:
            return False
        post = self.content.get_post_by_id(post_id)
        if post is None:
            return False

        content = post.get("content") or ""
        excerpt = post.get("excerpt") or ""
        for old, new in url_map.items():
            if old and new:
                content = content.replace(old, new)
                excerpt = excerpt.replace(old, new)
        for old_id, new_id in id_map.items():
            content = re.sub(rf"wp-image-{old_id}\b", f"wp-image-{new_id}", content)

        if content == (post.get("content") or "") and excerpt == (post.get("excerpt") or ""):
            return False
        self.content.upsert_post({"id": post_id, "content": content, "excerpt": excerpt})
        return True

    def maybe_update_thumbnail(self, post_id: int, id_map: Dict[int, int]) -> None:
        post = self.content.get_post_by_id(post_id)
        if post is None:
            return

        original = self.content.get_meta(post_id).get(ORIGINAL_THUMBNAIL_META)
        if not original:
            return
        new_id = id_map.get(int(original))
        if new_id and int(post.get("featured_media") or 0) != new_id:
            self.content.upsert_post({"id": post_id, "featured_media": new_id})
        self.content.set_meta(post_id, ORIGINAL_THUMBNAIL_META, None)
