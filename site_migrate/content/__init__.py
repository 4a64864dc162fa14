from .exporter import ContentExporter
from .importer import ContentImporter
from .selection import ContentSelection

__all__ = [
    "ContentExporter",
    "ContentImporter",
    "ContentSelection",
]
