"""Import page, post, form, options-page and bundle archives."""

from typing import Any, Dict, List, Optional

from .._utils import logger, PathLike
from ..archive import ArchiveType, Extractor
from ..errors import FormatError
from ..interfaces import ContentProvider, MediaProvider, OptionsStore
from ..media import ORIGINAL_THUMBNAIL_META, AttachmentRestorer
from .exporter import FIELDS_CONFIG_META, MEDIA_KEY, WIDGET_OPTION_PREFIX
from .selection import EXPORTABLE_POST_TYPES


class ContentImporter:
    """Upsert archived entities by slug and post type, relinking their media."""

    def __init__(
        self,
        content: ContentProvider,
        extractor: Extractor,
        media: Optional[MediaProvider] = None,
        options: Optional[OptionsStore] = None,
    ):
        self.content = content
        self.extractor = extractor
        self.options = options
        self.restorer = AttachmentRestorer(content, media, extractor) if media is not None else None

    def import_archive(self, archive_path: PathLike) -> Dict[str, Any]:
        """Verify and import a content archive.

        Args:
            archive_path: Container path

        Returns:
            Summary with the archive ``type``, imported post ids and option count
        """
        extracted = self.extractor.extract(archive_path)
        payload = extracted.payload
        if not isinstance(payload, dict):
            raise FormatError("Content payload must be a JSON object")

        # Single-entity payloads written without an embedded media list fall
        # back to the manifest's entries.
        if extracted.type in EXPORTABLE_POST_TYPES and MEDIA_KEY not in payload and extracted.media:
            payload = {**payload, MEDIA_KEY: [entry.model_dump() for entry in extracted.media]}

        return self.import_payload(extracted.type, payload, archive_path)

    def import_payload(self, archive_type: str, payload: Dict[str, Any], archive_path: PathLike) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"type": archive_type, "imported": [], "options": 0}

        if archive_type in EXPORTABLE_POST_TYPES:
            summary["imported"].append(self.import_entity(payload, archive_path))
        elif archive_type == ArchiveType.BUNDLE.value:
            for item in payload.get("items") or []:
                try:
                    summary["imported"].append(self.import_entity(item, archive_path))
                except FormatError as e:
                    logger.warning(f"Skipping bundle item: {e}")
            summary["options"] = self.import_options(payload.get("options") or {})
        elif archive_type == ArchiveType.OPTIONS_PAGE.value:
            summary["options"] = self.import_options_page(payload)
        else:
            raise FormatError(f"Unsupported content archive type: {archive_type}")

        logger.info(f"Imported {archive_type}: {len(summary['imported'])} item(s), {summary['options']} option(s)")
        return summary

    def import_entity(self, data: Dict[str, Any], archive_path: Optional[PathLike] = None) -> int:
        post_type = data.get("type") or ArchiveType.PAGE.value
        if post_type not in EXPORTABLE_POST_TYPES:
            raise FormatError(f"Unsupported entity type: {post_type}")
        if not data.get("title") or not data.get("slug"):
            raise FormatError(f"{post_type} data needs a title and a slug")

        fields = {
            "post_type": post_type,
            "title": data["title"],
            "content": data.get("content") or "",
            "excerpt": data.get("excerpt") or "",
            "slug": data["slug"],
            "status": data.get("status") or "publish",
        }
        if data.get("date"):
            fields["date"] = data["date"]

        existing = self.content.find_post_by_slug(data["slug"], post_type)
        if existing is not None:
            fields["id"] = existing["id"]
        post_id = self.content.upsert_post(fields)
        logger.info(f"{'Updated' if existing else 'Created'} {post_type} '{data['slug']}' as {post_id}")

        for key, value in (data.get("meta") or {}).items():
            self.content.set_meta(post_id, key, value)
        if post_type == ArchiveType.FORM.value and data.get("fields_config"):
            self.content.set_meta(post_id, FIELDS_CONFIG_META, data["fields_config"])
        for taxonomy, terms in (data.get("taxonomies") or {}).items():
            self.content.set_taxonomy_terms(post_id, taxonomy, _term_slugs(terms))

        self._restore_media(data, post_id, archive_path)
        return post_id

    def _restore_media(self, data: Dict[str, Any], post_id: int, archive_path: Optional[PathLike]) -> None:
        entries = data.get(MEDIA_KEY) or []
        if not entries:
            return
        if self.restorer is None or archive_path is None:
            logger.warning(f"Media of post {post_id} not restored: no media provider")
            return
        if data.get("featured_media"):
            self.content.set_meta(post_id, ORIGINAL_THUMBNAIL_META, int(data["featured_media"]))
        self.restorer.restore(entries, archive_path, post_id)

    def import_options(self, options: Dict[str, Any]) -> int:
        if self.options is None:
            return 0
        count = 0
        for key, value in (options.get("options") or {}).items():
            self.options.set(key, value)
            count += 1
        for group, value in (options.get("widgets") or {}).items():
            self.options.set(f"{WIDGET_OPTION_PREFIX}{group}", value)
            count += 1
        return count

    def import_options_page(self, payload: Dict[str, Any]) -> int:
        if not payload.get("menu_slug") or "value" not in payload:
            raise FormatError("Options page data needs menu_slug and value")
        if self.options is None:
            raise FormatError("Options page import requires an options store")
        self.options.set(payload["menu_slug"], payload["value"])
        return 1


def _term_slugs(terms: List[Any]) -> List[str]:
    slugs = []
    for term in terms or []:
        slug = term.get("slug") if isinstance(term, dict) else term
        if slug:
            slugs.append(str(slug))
    return slugs
