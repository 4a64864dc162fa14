"""Tests for attachment discovery."""

from site_migrate.media import AttachmentCollector
from site_migrate.media.collector import AttachmentCollection, parse_content_ids, parse_gallery_ids
from tests.base.fixtures import InMemoryContentProvider, InMemoryMediaProvider


def test_parse_content_ids():
    content = (
        '<img class="wp-image-7 size-full"><figure data-id="8"></figure>'
        '<div id="attachment_9"></div><!-- wp:image {"id": 10} -->'
    )

    assert parse_content_ids(content) == [7, 8, 9, 10]
    assert parse_content_ids("") == []


def test_parse_gallery_ids():
    assert parse_gallery_ids('[gallery columns="2" ids="3, 4,x,5"]') == [3, 4, 5]


def test_discover_deduplicates_in_order(temp_dir):
    content = InMemoryContentProvider()
    media = InMemoryMediaProvider(temp_dir)
    media.add_attachment(12, "field.jpg", b"field")
    post = content.add_post(1, content='<img class="wp-image-5">[gallery ids="5,6"]', featured_media=6)
    content.set_meta(1, "hero_image", "12")
    content.set_meta(1, "unrelated", 77)
    content.set_meta(1, "flag", True)

    ids = AttachmentCollector(content, media).discover_attachment_ids(post)

    assert ids == [6, 5, 12]


def test_collect_skips_missing_files(temp_dir):
    content = InMemoryContentProvider()
    media = InMemoryMediaProvider(temp_dir, base_url="http://source.test/uploads")
    media.add_attachment(5, "kept.png", b"png", mime_type="image/png", alt="Kept")
    media.add_attachment(6, "gone.png", b"png")
    temp_dir.joinpath("gone.png").unlink()
    post = content.add_post(1, content='<img class="wp-image-5"><img class="wp-image-6">')

    collection = AttachmentCollector(content, media).collect_for_post(post)

    [entry] = collection.entries
    assert entry.original_id == 5
    assert entry.parent_id == 1
    assert entry.filename == "kept.png"
    assert entry.mime_type == "image/png"
    assert entry.alt == "Kept"
    assert entry.filesize == 3
    assert entry.source_url == "http://source.test/uploads/kept.png"
    assert entry.archive_path == "media/5-kept.png"
    assert collection.assets[0].target_path == "media/5-kept.png"


def test_collect_returns_none_without_attachments(temp_dir):
    content = InMemoryContentProvider()
    post = content.add_post(1, content="plain text")

    assert AttachmentCollector(content, InMemoryMediaProvider(temp_dir)).collect_for_post(post) is None


def test_collection_merge_skips_duplicates(temp_dir):
    content = InMemoryContentProvider()
    media = InMemoryMediaProvider(temp_dir)
    media.add_attachment(5, "a.png", b"a")
    collector = AttachmentCollector(content, media)
    first = AttachmentCollection()
    first.add(*collector.build_entry(5, 1))
    second = AttachmentCollection()
    second.add(*collector.build_entry(5, 2))

    first.merge(second)
    first.merge(None)

    assert len(first.entries) == 1
    assert len(first.assets) == 1
