"""Single-entity, bundle and options-page archives."""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .._utils import logger, PathLike
from ..archive import ArchiveType, Packer
from ..errors import NotFoundError
from ..interfaces import ContentProvider, MediaProvider, OptionsStore
from ..media import AttachmentCollection, AttachmentCollector
from .selection import EXPORTABLE_POST_TYPES, ContentSelection

MEDIA_KEY = "_media"
FIELDS_CONFIG_META = "_fields_config"
WIDGET_OPTION_PREFIX = "widget_"


class ContentExporter:
    """Build content archives through the Packer."""

    def __init__(
        self,
        content: ContentProvider,
        packer: Packer,
        media: Optional[MediaProvider] = None,
        options: Optional[OptionsStore] = None,
    ):
        self.content = content
        self.packer = packer
        self.options = options
        self.collector = AttachmentCollector(content, media) if media is not None else None

    def _load_post(self, post_type: str, post_id: int) -> Dict[str, Any]:
        if post_type not in EXPORTABLE_POST_TYPES:
            raise ValueError(f"Unsupported export type: {post_type}")
        post = self.content.get_post_by_id(post_id)
        if post is None or post.get("post_type") != post_type:
            raise NotFoundError(f"No {post_type} with id {post_id}")
        return post

    def _collect_media(self, post: Dict[str, Any]) -> Optional[AttachmentCollection]:
        if self.collector is None:
            return None
        return self.collector.collect_for_post(post)

    def prepare_post_data(self, post: Dict[str, Any], media: Optional[AttachmentCollection] = None) -> Dict[str, Any]:
        post_id = int(post["id"])
        post_type = post.get("post_type") or ArchiveType.PAGE.value
        meta = self.content.get_meta(post_id)
        data = {
            "type": post_type,
            "ID": post_id,
            "title": post.get("title") or "",
            "content": post.get("content") or "",
            "excerpt": post.get("excerpt") or "",
            "slug": post.get("slug") or "",
            "status": post.get("status") or "publish",
            "author": post.get("author"),
            "date": post.get("date"),
            "meta": meta,
            "featured_media": int(post.get("featured_media") or 0),
        }
        if post_type == ArchiveType.POST.value:
            data["taxonomies"] = self.content.get_taxonomy_terms(post_id)
        if post_type == ArchiveType.FORM.value:
            data["fields_config"] = meta.get(FIELDS_CONFIG_META, "")
        if media is not None and media.has_items():
            data[MEDIA_KEY] = [entry.model_dump() for entry in media.entries]
        return data

    def build_entity(self, post_type: str, post_id: int) -> Tuple[Dict[str, Any], AttachmentCollection]:
        post = self._load_post(post_type, post_id)
        media = self._collect_media(post) or AttachmentCollection()
        return self.prepare_post_data(post, media), media

    def export_entity(self, post_type: str, post_id: int, target_path: Optional[PathLike] = None) -> Path:
        """Export one page, post or form.

        Args:
            post_type: ``page``, ``post`` or ``forms``
            post_id: Entity id
            target_path: Container path; a temp file when omitted

        Returns:
            Path to the archive
        """
        payload, media = self.build_entity(post_type, post_id)
        label = f"{post_type}-{post_id}"
        logger.info(f"Exporting {label} with {len(media.entries)} attachment(s)")
        return self.packer.create_archive(
            payload,
            {"type": post_type, "label": label, "media": media.entries},
            assets=media.assets,
            target_path=target_path,
        )

    def build_bundle(self, selection: ContentSelection) -> Tuple[Dict[str, Any], AttachmentCollection]:
        media = AttachmentCollection()
        items = []
        for post_type, post_id in selection.items:
            try:
                item, item_media = self.build_entity(post_type, post_id)
            except (NotFoundError, ValueError) as e:
                logger.warning(f"Skipping bundle item {post_type}:{post_id}: {e}")
                continue
            items.append(item)
            media.merge(item_media)

        options: Dict[str, Any] = {}
        widgets: Dict[str, Any] = {}
        if self.options is not None:
            for key in selection.options:
                options[key] = self.options.get(key)
            for group in selection.widget_groups:
                widgets[group] = self.options.get(f"{WIDGET_OPTION_PREFIX}{group}")

        payload = {
            "type": ArchiveType.BUNDLE.value,
            "items": items,
            "options": {"options": options, "widgets": widgets},
        }
        return payload, media

    def export_bundle(self, selection: ContentSelection, target_path: Optional[PathLike] = None) -> Path:
        if selection.is_empty():
            raise ValueError("Nothing selected for export")
        payload, media = self.build_bundle(selection)
        logger.info(f"Exporting bundle: {len(payload['items'])} item(s), {len(media.entries)} attachment(s)")
        return self.packer.create_archive(
            payload,
            {"type": ArchiveType.BUNDLE.value, "label": "bundle", "media": media.entries},
            assets=media.assets,
            target_path=target_path,
        )

    def export_options_page(self, key: str, target_path: Optional[PathLike] = None) -> Path:
        if self.options is None:
            raise ValueError("Options export requires an options store")
        value = self.options.get(key)
        if value is None:
            raise NotFoundError(f"Option not found: {key}")
        payload = {"type": ArchiveType.OPTIONS_PAGE.value, "menu_slug": key, "value": value}
        return self.packer.create_archive(
            payload,
            {"type": ArchiveType.OPTIONS_PAGE.value, "label": key},
            target_path=target_path,
        )
