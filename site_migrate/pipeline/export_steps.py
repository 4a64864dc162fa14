"""Steps of the full-site export pipeline."""

import asyncio
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urlparse

from .._utils import logger, generate_token, load_json, remove_path, save_json
from ..archive import DATABASE_SQL_NAME, ArchiveAsset, ArchiveType
from ..database import DatabaseDump, FullDatabaseExporter, render_sql_dump
from ..errors import StepError
from .context import PipelineContext

PACKAGE_FILE = "package.json"
DATABASE_FILE = "database.json"
SQL_FILE = "database.sql"
SCRATCH_PREFIXES = ("export-", "import-")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9.-]+")

Params = Dict[str, Any]


def _list_file(component: str) -> str:
    return f"{component}.list.json"


def _save_assets(path: Path, assets: List[ArchiveAsset]) -> int:
    save_json([asset.model_dump() for asset in assets], path, indent=None)
    return len(assets)


def _load_assets(path: Path) -> List[ArchiveAsset]:
    if not path.exists():
        return []
    return [ArchiveAsset.model_validate(item) for item in load_json(path)]


def archive_name(site_url: str, extension: str, now: datetime) -> str:
    host = urlparse(site_url).hostname or "site"
    return f"{_UNSAFE_NAME_CHARS.sub('-', host)}-{now.strftime('%Y%m%d-%H%M%S')}{extension}"


async def compatibility(params: Params, ctx: PipelineContext) -> Params:
    storage = ctx.storage_dir
    try:
        storage.mkdir(parents=True, exist_ok=True)
        ctx.exports_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StepError("Storage is not writable", str(e)) from e
    for directory in (storage, ctx.exports_dir):
        if not os.access(directory, os.W_OK):
            raise StepError("Storage is not writable", f"Cannot write to {directory}")
    if not ctx.packer.backend.is_available():
        raise StepError("Archive backend unavailable", f"{ctx.packer.backend.name} cannot be used")
    await ctx.status(params).info("Compatibility check passed")
    return params


async def init(params: Params, ctx: PipelineContext) -> Params:
    now = datetime.now(timezone.utc)
    params["storage"] = f"export-{now.strftime('%Y%m%d%H%M%S')}-{generate_token(12).lower()}"
    params["archive"] = archive_name(ctx.config.site.site_url, ctx.config.archive.extension, now)
    ctx.scratch_dir(params).mkdir(parents=True, exist_ok=True)
    return params


async def config(params: Params, ctx: PipelineContext) -> Params:
    site = ctx.config.site
    includes = ["uploads", "content", "mu-plugins"]
    if params.get("include_plugins"):
        includes.append("plugins")
    if params.get("include_themes"):
        includes.append("themes")

    params["package"] = {
        "site_url": site.site_url,
        "home_url": site.home_url,
        "table_prefix": site.table_prefix,
        "paths": site.paths,
        "producer_version": ctx.packer.producer_version,
        "includes": includes,
        "created_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
    }
    return params


async def config_file(params: Params, ctx: PipelineContext) -> Params:
    save_json(params["package"], ctx.scratch_dir(params) / PACKAGE_FILE)
    return params


async def database(params: Params, ctx: PipelineContext) -> Params:
    exporter = FullDatabaseExporter.for_site(ctx.store, ctx.config.site)
    dump = await asyncio.to_thread(exporter.export)
    await asyncio.to_thread(save_json, dump.to_payload(), ctx.scratch_dir(params) / DATABASE_FILE, None)
    params["tables"] = list(dump.tables)
    await ctx.status(params).info(f"Exported {len(dump.tables)} table(s), {dump.row_count:,} row(s)")
    return params


async def database_file(params: Params, ctx: PipelineContext) -> Params:
    scratch = ctx.scratch_dir(params)

    def render() -> None:
        dump = DatabaseDump.model_validate(load_json(scratch / DATABASE_FILE))
        (scratch / SQL_FILE).write_text(render_sql_dump(dump), encoding="utf-8")

    await asyncio.to_thread(render)
    return params


def _enumerate(params: Params, ctx: PipelineContext, components: List[str], key: str) -> int:
    assets = ctx.full_site_exporter.collect_assets(components)
    count = _save_assets(ctx.scratch_dir(params) / _list_file(key), assets)
    params[f"{key}_files"] = count
    return count


async def media(params: Params, ctx: PipelineContext) -> Params:
    count = await asyncio.to_thread(_enumerate, params, ctx, ["uploads"], "media")
    await ctx.status(params).info(f"Found {count} media file(s)")
    return params


async def content(params: Params, ctx: PipelineContext) -> Params:
    count = await asyncio.to_thread(_enumerate, params, ctx, ["content", "mu-plugins"], "content")
    await ctx.status(params).info(f"Found {count} content file(s)")
    return params


async def plugins(params: Params, ctx: PipelineContext) -> Params:
    if params.get("include_plugins"):
        await asyncio.to_thread(_enumerate, params, ctx, ["plugins"], "plugins")
    return params


async def themes(params: Params, ctx: PipelineContext) -> Params:
    if params.get("include_themes"):
        await asyncio.to_thread(_enumerate, params, ctx, ["themes"], "themes")
    return params


async def archive(params: Params, ctx: PipelineContext) -> Params:
    scratch = ctx.scratch_dir(params)
    package = params["package"]
    target = ctx.exports_dir / params["archive"]

    def build() -> Path:
        payload = {
            "type": ArchiveType.FULL_SITE.value,
            "package": package,
            "database": load_json(scratch / DATABASE_FILE),
        }
        assets: List[ArchiveAsset] = []
        for key in ("media", "content", "plugins", "themes"):
            assets.extend(_load_assets(scratch / _list_file(key)))
        extra = {PACKAGE_FILE: (scratch / PACKAGE_FILE).read_bytes()}
        if (scratch / SQL_FILE).exists():
            extra[DATABASE_SQL_NAME] = (scratch / SQL_FILE).read_bytes()
        return ctx.packer.create_archive(
            payload,
            {"type": ArchiveType.FULL_SITE.value, "label": params["archive"], "includes": package["includes"]},
            assets=assets,
            target_path=target,
            extra_entries=extra,
        )

    path = await asyncio.to_thread(build)
    size = path.stat().st_size
    params["archive_path"] = str(path)
    params["result"] = {"archive": params["archive"], "archive_path": str(path), "size": size}
    ctx.history.update_context(params["history_id"], {"archive_path": str(path), "file": params["archive"]})
    await ctx.status(params).download(f"Archive ready: {params['archive']}", params["result"])
    return params


def remove_stale_scratch(storage_dir: Path, max_age: int) -> List[str]:
    """Delete ``export-*``/``import-*`` scratch dirs untouched for max_age seconds."""
    removed = []
    if not storage_dir.is_dir():
        return removed
    cutoff = time.time() - max_age
    for entry in storage_dir.iterdir():
        if not entry.is_dir() or not entry.name.startswith(SCRATCH_PREFIXES):
            continue
        if entry.stat().st_mtime < cutoff:
            remove_path(entry)
            removed.append(entry.name)
    if removed:
        logger.info(f"Removed {len(removed)} stale scratch folder(s)")
    return removed


async def clean(params: Params, ctx: PipelineContext) -> Params:
    remove_path(ctx.scratch_dir(params))
    remove_stale_scratch(ctx.storage_dir, ctx.config.pipeline.stale_scratch_age)
    params["completed"] = True
    return params
