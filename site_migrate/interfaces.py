"""Narrow interfaces to the hosting application's collaborators."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class RelationalStore(ABC):
    """Thin query interface to the site's relational database.

    Identifiers are quoted with backticks; ``placeholder`` is the driver's
    parameter marker and ``backslash_escapes`` tells whether string literals
    use backslash escaping.
    """

    placeholder: str = "%s"
    backslash_escapes: bool = True

    @abstractmethod
    def list_tables(self, prefix: str = "") -> List[str]:
        """Return table names starting with prefix."""
        pass

    @abstractmethod
    def table_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def show_create_table(self, name: str) -> str:
        """Return the CREATE TABLE statement for an existing table."""
        pass

    @abstractmethod
    def fetch_rows(self, name: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement, returning affected rows. Raises on failure."""
        pass

    @abstractmethod
    def truncate(self, name: str) -> None:
        pass

    @abstractmethod
    def bulk_insert(self, table: str, rows: List[Dict[str, Any]]) -> int:
        pass

    @abstractmethod
    def set_foreign_key_checks(self, enabled: bool) -> None:
        pass

    def is_duplicate_key_error(self, error: Exception) -> bool:
        message = str(error).lower()
        return "duplicate" in message or "unique constraint" in message


class OptionsStore(ABC):
    """Key/value site options."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class ContentProvider(ABC):
    """Post/page/form storage of the hosting application.

    Posts are dicts with ``id``, ``post_type``, ``title``, ``content``,
    ``excerpt``, ``slug``, ``status``, ``author``, ``date`` and
    ``featured_media`` (attachment id or 0).
    """

    @abstractmethod
    def get_post_by_id(self, post_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def find_post_by_slug(self, slug: str, post_type: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def upsert_post(self, fields: Dict[str, Any]) -> int:
        """Insert or update a post; fields carrying an ``id`` update it."""
        pass

    @abstractmethod
    def get_meta(self, post_id: int) -> Dict[str, Any]:
        pass

    @abstractmethod
    def set_meta(self, post_id: int, key: str, value: Any) -> None:
        """Store a meta value; ``None`` removes the key."""
        pass

    @abstractmethod
    def get_taxonomy_terms(self, post_id: int) -> Dict[str, List[str]]:
        pass

    @abstractmethod
    def set_taxonomy_terms(self, post_id: int, taxonomy: str, terms: List[str]) -> None:
        pass


class MediaProvider(ABC):
    """Attachment storage of the hosting application."""

    @abstractmethod
    def get_attachment(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        """Return attachment fields including ``file_path`` and ``url``."""
        pass

    @abstractmethod
    def find_by_checksum(self, checksum: str) -> Optional[int]:
        pass

    @abstractmethod
    def find_by_filename(self, filename: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def sideload_file(self, path: str, parent_id: int, fields: Dict[str, Any]) -> int:
        """Ingest a local file as a new attachment and return its id."""
        pass

    @abstractmethod
    def set_checksum(self, attachment_id: int, checksum: str) -> None:
        pass


class SiteHooks:
    """Optional host callbacks invoked by the import pipeline."""

    def flush_rewrite_rules(self) -> None:
        pass

    def flush_cache(self) -> None:
        pass
