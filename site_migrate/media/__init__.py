from .collector import AttachmentCollection, AttachmentCollector
from .restorer import ORIGINAL_THUMBNAIL_META, AttachmentRestorer

__all__ = [
    "AttachmentCollection",
    "AttachmentCollector",
    "AttachmentRestorer",
    "ORIGINAL_THUMBNAIL_META",
]
