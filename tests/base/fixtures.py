"""Shared fixtures and fakes for site-migrate tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from site_migrate.config import (
    ArchiveConfig,
    ChunkConfig,
    LockConfig,
    MigrateConfig,
    PipelineConfig,
    SiteConfig,
    SnapshotConfig,
)
from site_migrate.database import SqliteOptionsStore, SqliteRelationalStore
from site_migrate.interfaces import ContentProvider, MediaProvider


def make_config(root: Path, site_url: str = "http://source.test", backend: str = "auto",
                retention: int = 3) -> MigrateConfig:
    """Complete configuration rooted in a temporary directory."""
    root = Path(root)
    site_root = root / "site"
    content = site_root / "wp-content"
    storage = root / "storage"
    return MigrateConfig(
        archive=ArchiveConfig(backend=backend, exports_dir=str(root / "exports")),
        chunk=ChunkConfig(
            directory=str(root / "chunks"),
            default_chunk_size=64,
            min_chunk_size=16,
            max_chunk_size=1024,
        ),
        lock=LockConfig(directory=str(storage)),
        snapshot=SnapshotConfig(directory=str(root / "snapshots"), retention=retention),
        pipeline=PipelineConfig(storage_dir=str(storage), state_dir=str(storage / "state")),
        site=SiteConfig(
            site_url=site_url,
            home_url=site_url,
            root_path=str(site_root),
            content_path=str(content),
            uploads_path=str(content / "uploads"),
            plugins_path=str(content / "plugins"),
            themes_path=str(content / "themes"),
            mu_plugins_path=str(content / "mu-plugins"),
            database_path=str(root / "site.sqlite"),
        ),
    )


def seed_site(config: MigrateConfig, store: SqliteRelationalStore, title: str = "Hello") -> None:
    """Create a small site: posts, options, users and a few files."""
    site = config.site
    prefix = site.table_prefix
    store.execute(
        f"CREATE TABLE IF NOT EXISTS {prefix}posts ("
        "ID INTEGER PRIMARY KEY, post_title TEXT, post_content TEXT, guid TEXT)"
    )
    store.execute(
        f"CREATE TABLE IF NOT EXISTS {prefix}users ("
        "ID INTEGER PRIMARY KEY, user_login TEXT, user_email TEXT)"
    )
    store.bulk_insert(f"{prefix}posts", [
        {
            "ID": 1,
            "post_title": title,
            "post_content": f'<a href="{site.site_url}/about/">About</a>',
            "guid": f"{site.site_url}/?p=1",
        },
        {"ID": 2, "post_title": "Second", "post_content": "Plain text", "guid": f"{site.site_url}/?p=2"},
    ])
    store.bulk_insert(f"{prefix}users", [{"ID": 1, "user_login": "admin", "user_email": "admin@example.com"}])

    options = SqliteOptionsStore(store, prefix)
    options.set("siteurl", site.site_url)
    options.set("home", site.home_url)
    options.set("blogname", f"{title} site")
    options.set("admin_email", "owner@example.com")

    uploads = Path(site.uploads_path) / "2024" / "01"
    uploads.mkdir(parents=True, exist_ok=True)
    (uploads / "photo.jpg").write_bytes(b"\xff\xd8\xff" + b"jpeg-bytes" * 20)
    themes = Path(site.themes_path) / "theme-one"
    themes.mkdir(parents=True, exist_ok=True)
    (themes / "style.css").write_text("body { color: black; }")
    mu_plugins = Path(site.mu_plugins_path)
    mu_plugins.mkdir(parents=True, exist_ok=True)
    (mu_plugins / "loader.php").write_text("<?php // loader")


class InMemoryContentProvider(ContentProvider):
    """Posts, meta and taxonomy terms kept in dicts."""

    def __init__(self):
        self.posts: Dict[int, Dict[str, Any]] = {}
        self.meta: Dict[int, Dict[str, Any]] = {}
        self.terms: Dict[int, Dict[str, List[str]]] = {}
        self.next_id = 1000

    def add_post(self, post_id: int, post_type: str = "page", **fields) -> Dict[str, Any]:
        post = {
            "id": post_id,
            "post_type": post_type,
            "title": "",
            "content": "",
            "excerpt": "",
            "slug": "",
            "status": "publish",
            "author": 1,
            "date": "2024-01-01 10:00:00",
            "featured_media": 0,
        }
        post.update(fields)
        self.posts[post_id] = post
        return post

    def get_post_by_id(self, post_id: int) -> Optional[Dict[str, Any]]:
        post = self.posts.get(post_id)
        return dict(post) if post else None

    def find_post_by_slug(self, slug: str, post_type: str) -> Optional[Dict[str, Any]]:
        for post in self.posts.values():
            if post["slug"] == slug and post["post_type"] == post_type:
                return dict(post)
        return None

    def upsert_post(self, fields: Dict[str, Any]) -> int:
        post_id = fields.get("id")
        if post_id in self.posts:
            self.posts[post_id].update(fields)
            return post_id
        if post_id is None:
            self.next_id += 1
            post_id = self.next_id
        self.add_post(post_id, **{k: v for k, v in fields.items() if k != "id"})
        return post_id

    def get_meta(self, post_id: int) -> Dict[str, Any]:
        return dict(self.meta.get(post_id, {}))

    def set_meta(self, post_id: int, key: str, value: Any) -> None:
        meta = self.meta.setdefault(post_id, {})
        if value is None:
            meta.pop(key, None)
        else:
            meta[key] = value

    def get_taxonomy_terms(self, post_id: int) -> Dict[str, List[str]]:
        return {taxonomy: list(terms) for taxonomy, terms in self.terms.get(post_id, {}).items()}

    def set_taxonomy_terms(self, post_id: int, taxonomy: str, terms: List[str]) -> None:
        self.terms.setdefault(post_id, {})[taxonomy] = list(terms)


class InMemoryMediaProvider(MediaProvider):
    """Attachment library backed by a directory."""

    def __init__(self, directory: Path, base_url: str = "http://target.test/uploads"):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url
        self.attachments: Dict[int, Dict[str, Any]] = {}
        self.next_id = 500
        self.sideloaded: List[int] = []

    def add_attachment(self, attachment_id: int, filename: str, data: bytes, **fields) -> Dict[str, Any]:
        path = self.directory / filename
        path.write_bytes(data)
        attachment = {
            "id": attachment_id,
            "file_path": str(path),
            "url": f"{self.base_url}/{filename}",
            "mime_type": "image/jpeg",
            "title": filename,
        }
        attachment.update(fields)
        self.attachments[attachment_id] = attachment
        return attachment

    def get_attachment(self, attachment_id: int) -> Optional[Dict[str, Any]]:
        attachment = self.attachments.get(attachment_id)
        return dict(attachment) if attachment else None

    def find_by_checksum(self, checksum: str) -> Optional[int]:
        for attachment_id, attachment in self.attachments.items():
            if attachment.get("checksum") == checksum:
                return attachment_id
        return None

    def find_by_filename(self, filename: str) -> List[Dict[str, Any]]:
        return [
            dict(attachment) for attachment in self.attachments.values()
            if Path(attachment["file_path"]).name == filename
        ]

    def sideload_file(self, path: str, parent_id: int, fields: Dict[str, Any]) -> int:
        self.next_id += 1
        attachment_id = self.next_id
        target = self.directory / f"{attachment_id}-{fields['filename']}"
        shutil.copyfile(path, target)
        self.attachments[attachment_id] = {
            "id": attachment_id,
            "file_path": str(target),
            "url": f"{self.base_url}/{target.name}",
            "parent_id": parent_id,
            **{k: v for k, v in fields.items() if k != "filename"},
        }
        self.sideloaded.append(attachment_id)
        return attachment_id

    def set_checksum(self, attachment_id: int, checksum: str) -> None:
        self.attachments[attachment_id]["checksum"] = checksum


@pytest.fixture
def temp_dir():
    """Create temporary working directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def migrate_config(temp_dir):
    return make_config(temp_dir)


@pytest.fixture
def sqlite_store():
    """In-memory SQLite relational store."""
    store = SqliteRelationalStore(":memory:")
    yield store
    store.close()
