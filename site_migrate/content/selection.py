from dataclasses import dataclass, field
from typing import Any, List, Mapping, Tuple

from ..archive import ArchiveType

EXPORTABLE_POST_TYPES = (ArchiveType.PAGE.value, ArchiveType.POST.value, ArchiveType.FORM.value)


@dataclass
class ContentSelection:
    """Entities, option keys and widget groups chosen for a bundle export."""
    items: List[Tuple[str, int]] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    widget_groups: List[str] = field(default_factory=list)

    def add_item(self, post_type: str, post_id: int) -> None:
        if post_id > 0 and (post_type, post_id) not in self.items:
            self.items.append((post_type, post_id))

    def add_option(self, key: str) -> None:
        key = key.strip()
        if key and key not in self.options:
            self.options.append(key)

    def add_widget_group(self, group: str) -> None:
        group = group.strip()
        if group and group not in self.widget_groups:
            self.widget_groups.append(group)

    def is_empty(self) -> bool:
        return not (self.items or self.options or self.widget_groups)

    @classmethod
    def from_request(cls, request: Mapping[str, Any]) -> "ContentSelection":
        """Build from ``post_types`` plus ``selected_<type>_ids`` style fields."""
        selection = cls()
        for post_type in request.get("post_types") or []:
            for value in request.get(f"selected_{post_type}_ids") or []:
                try:
                    selection.add_item(str(post_type), int(value))
                except (TypeError, ValueError):
                    continue
        for key in request.get("options_keys") or []:
            selection.add_option(str(key))
        for group in request.get("widget_groups") or []:
            selection.add_widget_group(str(group))
        return selection
