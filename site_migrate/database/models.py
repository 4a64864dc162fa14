"""Data models for full database dumps."""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class TableDump(BaseModel):
    """One table: its CREATE statement and every row in column order."""

    create_statement: str = Field(default="", alias="schema")
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class DatabaseDump(BaseModel):
    """Serialized relational state of a site."""

    site_url: str = ""
    home_url: str = ""
    table_prefix: str = ""
    paths: Dict[str, str] = Field(default_factory=dict)
    tables: Dict[str, TableDump] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    @property
    def row_count(self) -> int:
        return sum(len(table.rows) for table in self.tables.values())
