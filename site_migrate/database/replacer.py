"""Rewrite source domains and filesystem paths inside a database dump."""

import json
import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from .._utils import logger
from .models import DatabaseDump


def _untrailingslashit(value: str) -> str:
    return value.rstrip("/\\")


def _strip_port(url: str) -> str:
    parts = urlsplit(url)
    if not parts.hostname or parts.port is None:
        return url
    return urlunsplit((parts.scheme, parts.hostname, parts.path, parts.query, parts.fragment))


class DomainReplacer:
    """Search/replace helper aware of JSON-encoded cell values.

    Replacement is simultaneous: the longest matching search string wins and
    replaced text is never searched again.
    """

    def __init__(self, target_url: str, target_paths: Optional[Mapping[str, str]] = None):
        """Initialize replacer.

        Args:
            target_url: Destination base URL (scheme, host and optional path)
            target_paths: Destination ``root``/``content``/``uploads`` paths
        """
        self.target_url = _strip_port(_untrailingslashit(target_url))
        self.target_paths = dict(target_paths or {})

    def build_map(self, dump: DatabaseDump) -> Dict[str, str]:
        """Search => replacement map for the dump's source environment."""
        mapping = self._build_domain_map(self._collect_domain_signatures(dump))
        mapping.update(self._build_path_map(dump.paths))
        return mapping

    def replace_dump(self, dump: DatabaseDump) -> int:
        """Rewrite every string cell of the dump in place.

        Returns:
            Number of cells changed
        """
        mapping = self.build_map(dump)
        if not mapping or not dump.tables:
            return 0

        pattern = self._compile(mapping)
        changed = 0
        for table in dump.tables.values():
            for row in table.rows:
                for column, value in row.items():
                    updated = self._replace_value(value, pattern, mapping)
                    if updated != value:
                        row[column] = updated
                        changed += 1

        logger.info(f"Domain replacement rewrote {changed} cell(s) for {self.target_url}")
        return changed

    def replace_text(self, text: str, dump: DatabaseDump) -> str:
        """Apply the dump's replacement map to a single string (raw SQL)."""
        mapping = self.build_map(dump)
        if not mapping:
            return text
        return self._replace_value(text, self._compile(mapping), mapping)

    @staticmethod
    def _collect_domain_signatures(dump: DatabaseDump) -> List[str]:
        signatures: List[str] = []
        for url in (dump.site_url, dump.home_url):
            if not url:
                continue
            parts = urlsplit(url)
            if not parts.hostname:
                continue

            path = parts.path.strip("/")
            signature = parts.hostname
            if parts.port:
                signature += f":{parts.port}"
            if path:
                signature += f"/{path}"
            signatures.append(signature.strip("/"))

            # Old URLs are sometimes stored without the port.
            if parts.port:
                signatures.append(f"{parts.hostname}/{path}".strip("/"))

        return list(dict.fromkeys(s for s in signatures if s))

    def _build_domain_map(self, signatures: List[str]) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for signature in signatures:
            for scheme in ("http", "https"):
                base = f"{scheme}://{signature}"
                mapping[base] = self.target_url
                mapping[base + "/"] = self.target_url + "/"
        return mapping

    def _build_path_map(self, source_paths: Mapping[str, str]) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for key, old_path in (source_paths or {}).items():
            if not old_path or not isinstance(old_path, str):
                continue
            new_path = _untrailingslashit(str(self.target_paths.get(key) or ""))
            if not new_path:
                continue
            old_path = _untrailingslashit(old_path)
            mapping[old_path] = new_path
            mapping[old_path + "/"] = new_path + "/"
        return mapping

    @staticmethod
    def _compile(mapping: Mapping[str, str]) -> "re.Pattern[str]":
        keys = sorted(mapping, key=len, reverse=True)
        return re.compile("|".join(re.escape(key) for key in keys))

    def _replace_value(self, value: Any, pattern: "re.Pattern[str]", mapping: Mapping[str, str]) -> Any:
        if not isinstance(value, str) or not value:
            return value

        stripped = value.strip()
        if stripped[:1] in ("{", "[") and stripped[-1:] in ("}", "]"):
            try:
                data = json.loads(stripped)
            except ValueError:
                data = None
            if isinstance(data, (dict, list)):
                updated = self._replace_recursive(data, pattern, mapping)
                if updated == data:
                    return value
                return json.dumps(updated, ensure_ascii=False)

        return pattern.sub(lambda match: mapping[match.group(0)], value)

    def _replace_recursive(self, data: Any, pattern: "re.Pattern[str]", mapping: Mapping[str, str]) -> Any:
        if isinstance(data, dict):
            return {key: self._replace_recursive(item, pattern, mapping) for key, item in data.items()}
        if isinstance(data, list):
            return [self._replace_recursive(item, pattern, mapping) for item in data]
        if isinstance(data, str):
            return self._replace_value(data, pattern, mapping)
        return data
