"""End-to-end export and import runs over real archives."""

import base64
from pathlib import Path

import pytest

from site_migrate.archive import Packer, select_backend
from site_migrate.content import ContentExporter
from site_migrate.database import SqliteOptionsStore, SqliteRelationalStore
from site_migrate.pipeline import (
    PipelineContext,
    StatusType,
    build_export_pipeline,
    build_import_pipeline,
    get_status,
)
from tests.base.fixtures import InMemoryContentProvider, InMemoryMediaProvider, make_config, seed_site


class Site:
    """One side of a migration: configuration, database and pipelines."""

    def __init__(self, root: Path, site_url: str, title: str, content=None, media=None):
        self.config = make_config(root, site_url=site_url)
        self.store = SqliteRelationalStore(":memory:")
        seed_site(self.config, self.store, title=title)
        self.options = SqliteOptionsStore(self.store, self.config.site.table_prefix)
        self.context = PipelineContext.from_config(
            self.config, self.store, options=self.options, content=content, media=media,
        )
        self.export = build_export_pipeline(self.context)
        self.import_ = build_import_pipeline(self.context)

    def post(self, post_id: int):
        return self.store.query("SELECT * FROM wp_posts WHERE ID = ?", (post_id,))[0]

    def close(self):
        self.store.close()


@pytest.fixture
def source(temp_dir):
    site = Site(temp_dir / "source", "http://source.test", "Hello")
    yield site
    site.close()


@pytest.fixture
def target(temp_dir):
    site = Site(temp_dir / "target", "http://target.test", "Target")
    yield site
    site.close()


async def export_site(site: Site, **params) -> str:
    result = await site.export.start(params, inline=True)
    assert result["completed"] is True, result.get("error")
    return result["archive_path"]


@pytest.mark.asyncio
async def test_export_produces_full_site_archive(source):
    archive_path = await export_site(source, include_themes=True)

    entries = source.context.extractor.list_entries(archive_path)
    extracted = source.context.extractor.extract(archive_path)

    assert Path(archive_path).parent == Path(source.config.archive.exports_dir)
    assert Path(archive_path).name.startswith("source.test-")
    assert extracted.type == "full-site"
    assert extracted.payload["package"]["site_url"] == "http://source.test"
    assert "wp_posts" in extracted.payload["database"]["tables"]
    assert "database.sql" in entries
    assert "package.json" in entries
    assert "files/uploads/2024/01/photo.jpg" in entries
    assert "files/themes/theme-one/style.css" in entries
    assert "files/mu-plugins/loader.php" in entries
    assert not any(name.startswith("files/plugins/") for name in entries)
    assert not [p for p in Path(source.config.pipeline.storage_dir).iterdir() if p.name.startswith("export-")]

    history = source.context.history.all()
    assert history[0]["status"] == "success"
    assert history[0]["context"]["archive_path"] == archive_path


@pytest.mark.asyncio
async def test_import_waits_for_confirmation_then_migrates(source, target):
    archive_path = await export_site(source, include_themes=True)

    halted = await target.import_.start({"archive_path": archive_path}, inline=True)

    assert halted["requires_confirmation"] is True
    assert halted["confirmation"]["type"] == "full-site"
    assert halted["confirmation"]["source_url"] == "http://source.test"
    assert target.post(1)["post_title"] == "Target"

    params = await target.import_.confirm(halted["run_id"], inline=True)

    assert params["completed"] is True, params.get("error")
    post = target.post(1)
    assert post["post_title"] == "Hello"
    assert post["guid"] == "http://target.test/?p=1"
    assert post["post_content"] == '<a href="http://target.test/about/">About</a>'
    assert target.options.get("siteurl") == "http://target.test"
    assert target.options.get("home") == "http://target.test"
    assert target.options.get("blogname") == "Hello site"
    assert params["users"] == 1

    site = target.config.site
    assert (Path(site.uploads_path) / "2024" / "01" / "photo.jpg").is_file()
    assert (Path(site.themes_path) / "theme-one" / "style.css").is_file()
    assert params["files"]["uploads"] == 1

    snapshots = target.context.snapshots.all()
    assert [s.id for s in snapshots] == [params["snapshot_id"]]

    status = await get_status(target.context.state, params["run_id"])
    assert status.type == StatusType.DONE
    assert status.data["snapshot_id"] == params["snapshot_id"]
    assert await target.context.job_lock.current() is None
    assert Path(archive_path).is_file()


@pytest.mark.asyncio
async def test_snapshot_rollback_restores_previous_site(source, target):
    archive_path = await export_site(source)
    params = await target.import_.start({"archive_path": archive_path, "confirmed": True}, inline=True)
    assert target.post(1)["post_title"] == "Hello"

    rollback = target.context.snapshots.restore_params(params["snapshot_id"])
    result = await target.import_.start(rollback, inline=True)

    assert result["completed"] is True, result.get("error")
    assert target.post(1)["post_title"] == "Target"
    assert len(target.context.snapshots.all()) == 1
    entry = target.context.history.find(result["history_id"])
    assert entry["context"]["action"] == "rollback"


@pytest.mark.asyncio
async def test_skip_snapshot(source, target):
    archive_path = await export_site(source)

    params = await target.import_.start(
        {"archive_path": archive_path, "confirmed": True, "skip_snapshot": True},
        inline=True,
    )

    assert params["completed"] is True
    assert "snapshot_id" not in params
    assert target.context.snapshots.all() == []


@pytest.mark.asyncio
async def test_invalid_archive_fails_validation(target, temp_dir):
    bogus = temp_dir / "bogus.wpbkp"
    bogus.write_bytes(b"not a zip archive")

    params = await target.import_.start({"archive_path": str(bogus), "confirmed": True}, inline=True)

    assert params["error"]["title"] == "Invalid archive"
    assert params["error"]["step"] == "validate"
    assert await target.context.job_lock.current() is None
    assert target.post(1)["post_title"] == "Target"


@pytest.mark.asyncio
async def test_missing_archive_fails_upload(target, temp_dir):
    params = await target.import_.start({"archive_path": str(temp_dir / "missing.wpbkp")}, inline=True)

    assert params["error"]["title"] == "Upload failed"


@pytest.mark.asyncio
async def test_uploaded_file_is_moved_into_scratch(source, target, temp_dir):
    archive_path = await export_site(source)
    upload = temp_dir / "upload.wpbkp"
    upload.write_bytes(Path(archive_path).read_bytes())

    params = await target.import_.start(
        {"upload_path": str(upload), "archive": "site.wpbkp", "confirmed": True, "skip_snapshot": True},
        inline=True,
    )

    assert params["completed"] is True, params.get("error")
    assert not upload.exists()
    assert params["archive"] == "site.wpbkp"
    assert not Path(params["archive_path"]).exists()


@pytest.mark.asyncio
async def test_chunked_upload_feeds_import(source, target):
    archive_path = await export_site(source)
    data = Path(archive_path).read_bytes()
    chunks = target.context.chunks
    size = chunks.config.max_chunk_size
    job = chunks.init_upload(-(-len(data) // size), chunk_size=size)

    for index in range(0, len(data), size):
        chunks.upload_chunk(job["job_id"], index // size, base64.b64encode(data[index:index + size]).decode())

    params = await target.import_.start(
        {"chunk_job_id": job["job_id"], "confirmed": True, "skip_snapshot": True},
        inline=True,
    )

    assert params["completed"] is True, params.get("error")
    assert target.post(1)["post_title"] == "Hello"
    assert not chunks.repository.exists(job["job_id"])


@pytest.mark.asyncio
async def test_content_archive_runs_through_import_pipeline(temp_dir):
    source_content = InMemoryContentProvider()
    source_content.add_post(42, "page", title="About", slug="about", content="About us")
    packer = Packer(select_backend(), output_dir=temp_dir / "exports")
    archive_path = ContentExporter(source_content, packer).export_entity("page", 42, temp_dir / "about.wpbkp")

    content = InMemoryContentProvider()
    site = Site(temp_dir / "target", "http://target.test", "Target", content=content)
    try:
        params = await site.import_.start({"archive_path": str(archive_path), "confirmed": True}, inline=True)
    finally:
        site.close()

    assert params["completed"] is True, params.get("error")
    assert params["content"]["type"] == "page"
    imported = content.find_post_by_slug("about", "page")
    assert imported["title"] == "About"
    assert params["content"]["imported"] == [imported["id"]]
    assert "database" not in params


@pytest.mark.asyncio
async def test_content_archive_without_provider_is_rejected(target, temp_dir):
    content = InMemoryContentProvider()
    content.add_post(42, "page", title="About", slug="about")
    packer = Packer(select_backend(), output_dir=temp_dir / "exports")
    archive_path = ContentExporter(content, packer).export_entity("page", 42)

    params = await target.import_.start({"archive_path": str(archive_path), "confirmed": True}, inline=True)

    assert params["error"]["title"] == "Unsupported archive"
