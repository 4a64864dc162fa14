"""Steps of the import pipeline."""

import asyncio
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from .._utils import logger, generate_token, load_json, remove_path, save_json
from ..archive import DATABASE_SQL_NAME, FORMAT_VERSION, MANIFEST_NAME, ArchiveType
from ..content.selection import EXPORTABLE_POST_TYPES
from ..database import DatabaseDump, DomainReplacer, replay_sql
from ..errors import ConfirmationRequired, MigrationError, StepError
from .context import PipelineContext
from .export_steps import DATABASE_FILE, SQL_FILE, remove_stale_scratch

SITE_ARCHIVE_TYPES = (ArchiveType.FULL_SITE.value, ArchiveType.SNAPSHOT.value)
CONTENT_ARCHIVE_TYPES = EXPORTABLE_POST_TYPES + (ArchiveType.BUNDLE.value, ArchiveType.OPTIONS_PAGE.value)
PRESERVED_OPTIONS = ("siteurl", "home")

Params = Dict[str, Any]


def _is_site_archive(params: Params) -> bool:
    return params.get("archive_type") in SITE_ARCHIVE_TYPES


def _includes(params: Params, component: str) -> bool:
    return _is_site_archive(params) and component in (params.get("includes") or [])


async def upload(params: Params, ctx: PipelineContext) -> Params:
    """Move the uploaded container into a fresh ``import-*`` scratch dir."""
    now = datetime.now(timezone.utc)
    params["storage"] = f"import-{now.strftime('%Y%m%d%H%M%S')}-{generate_token(12).lower()}"
    scratch = ctx.scratch_dir(params)
    scratch.mkdir(parents=True, exist_ok=True)

    if params.get("chunk_job_id"):
        if ctx.chunks is None:
            raise StepError("Upload failed", "Chunked uploads are not available.")
        job_id = params["chunk_job_id"]
        try:
            source = ctx.chunks.assemble_path(job_id)
        except MigrationError as e:
            raise StepError("Upload failed", str(e)) from e
        target = scratch / Path(params.get("archive") or f"{job_id}{ctx.config.archive.extension}").name
        await asyncio.to_thread(shutil.move, str(source), str(target))
        ctx.chunks.release(job_id)
    elif params.get("upload_path"):
        source = Path(params.pop("upload_path"))
        if not source.is_file():
            raise StepError("Upload failed", "The uploaded file is missing.")
        target = scratch / Path(params.get("archive") or source.name).name
        await asyncio.to_thread(shutil.move, str(source), str(target))
    elif params.get("archive_path"):
        target = Path(params["archive_path"])
        if not target.is_file():
            raise StepError("Upload failed", f"Archive not found: {target.name}")
        params["keep_archive"] = True
    else:
        raise StepError("Upload failed", "No archive was supplied.")

    params["archive_path"] = str(target)
    params["archive"] = params.get("archive") or target.name
    return params


async def encryption(params: Params, ctx: PipelineContext) -> Params:
    params["is_encrypted"] = False
    return params


async def validate(params: Params, ctx: PipelineContext) -> Params:
    path = Path(params["archive_path"])
    if not path.is_file():
        raise StepError("Invalid archive", "The archive file does not exist.")
    if path.stat().st_size == 0:
        raise StepError("Invalid archive", "The archive file is empty.")
    if not os.access(path, os.R_OK):
        raise StepError("Invalid archive", "The archive file is not readable.")

    try:
        entries = await asyncio.to_thread(ctx.extractor.list_entries, path)
    except MigrationError as e:
        raise StepError("Invalid archive", str(e)) from e
    if MANIFEST_NAME not in entries:
        raise StepError("Invalid archive", "The archive has no manifest.")
    params["entries"] = len(entries)
    params["has_sql"] = DATABASE_SQL_NAME in entries
    return params


async def compatibility(params: Params, ctx: PipelineContext) -> Params:
    path = Path(params["archive_path"])
    try:
        manifest = await asyncio.to_thread(ctx.extractor.read_manifest, path)
    except MigrationError as e:
        raise StepError("Invalid archive", str(e)) from e
    if manifest.format_version > FORMAT_VERSION:
        raise StepError(
            "Incompatible archive",
            f"Archive format {manifest.format_version} is newer than supported format {FORMAT_VERSION}.",
        )

    required = int(path.stat().st_size * ctx.config.pipeline.disk_space_factor)
    free = shutil.disk_usage(ctx.storage_dir).free
    if free < required:
        raise StepError("Not enough disk space", f"{required:,} bytes needed, {free:,} available.")
    return params


async def enumerate_archive(params: Params, ctx: PipelineContext) -> Params:
    """Verify the payload checksum and stage the database for restore."""
    path = Path(params["archive_path"])
    try:
        extracted = await asyncio.to_thread(ctx.extractor.extract, path)
    except MigrationError as e:
        raise StepError("Invalid archive", str(e)) from e

    manifest = extracted.manifest
    payload = extracted.payload if isinstance(extracted.payload, dict) else {}
    params["archive_type"] = extracted.type
    params["label"] = manifest.label if manifest else ""
    params["includes"] = list(manifest.includes) if manifest else []
    params["package"] = payload.get("package") or {}
    params["media_entries"] = len(extracted.media)

    if extracted.type in CONTENT_ARCHIVE_TYPES:
        if ctx.content_importer is None:
            raise StepError("Unsupported archive", f"No content provider is configured for {extracted.type} archives.")
        return params
    if not _is_site_archive(params):
        raise StepError("Unsupported archive", f"Unknown archive type: {extracted.type}")

    scratch = ctx.scratch_dir(params)
    database = payload.get("database")
    if isinstance(database, dict):
        params["tables"] = sorted((database.get("tables") or {}).keys())
        await asyncio.to_thread(save_json, database, scratch / DATABASE_FILE, None)
    elif params.get("has_sql"):
        temp = await asyncio.to_thread(ctx.extractor.extract_media_file, DATABASE_SQL_NAME, path)
        await asyncio.to_thread(shutil.move, str(temp), str(scratch / SQL_FILE))
        params["tables"] = []
    else:
        raise StepError("Invalid archive", "The archive carries no database.")
    return params


async def confirm(params: Params, ctx: PipelineContext) -> Params:
    if params.get("confirmed"):
        return params
    raise ConfirmationRequired({
        "archive": params.get("archive"),
        "type": params.get("archive_type"),
        "label": params.get("label"),
        "includes": params.get("includes") or [],
        "tables": len(params.get("tables") or []),
        "source_url": (params.get("package") or {}).get("site_url"),
    })


async def snapshot(params: Params, ctx: PipelineContext) -> Params:
    if params.get("skip_snapshot") or ctx.snapshots is None:
        return params

    settings = ctx.config.snapshot
    try:
        created = await asyncio.to_thread(
            ctx.snapshots.create,
            f"pre-import {params.get('archive')}",
            settings.include_plugins,
            settings.include_themes,
            {"archive": params.get("archive"), "run_id": params["run_id"]},
        )
    except MigrationError as e:
        raise StepError("Snapshot failed", str(e)) from e

    params["snapshot_id"] = created.id
    params["snapshot_label"] = created.label
    ctx.history.update_context(params["history_id"], {"snapshot_id": created.id, "snapshot_label": created.label})
    await ctx.status(params).info(f"Snapshot {created.id} created")
    return params


async def database(params: Params, ctx: PipelineContext) -> Params:
    if not _is_site_archive(params):
        return params

    if ctx.options is not None:
        params["preserved_options"] = {key: ctx.options.get(key) for key in PRESERVED_OPTIONS}

    scratch = ctx.scratch_dir(params)
    site = ctx.config.site
    try:
        if (scratch / DATABASE_FILE).exists():
            importer = ctx.full_site_importer
            database_payload = {"database": await asyncio.to_thread(load_json, scratch / DATABASE_FILE)}
            summary = await asyncio.to_thread(importer.import_database, database_payload)
        else:
            package = params.get("package") or {}
            source = DatabaseDump(
                site_url=package.get("site_url", ""),
                home_url=package.get("home_url", ""),
                table_prefix=package.get("table_prefix", ""),
                paths=package.get("paths") or {},
            )
            sql = (scratch / SQL_FILE).read_text(encoding="utf-8")
            sql = DomainReplacer(site.site_url, site.paths).replace_text(sql, source)
            result = await asyncio.to_thread(replay_sql, sql, ctx.store)
            summary = {"executed": result.executed, "failed": result.failed, "skipped": len(result.skipped)}
    except MigrationError as e:
        raise StepError("Database restore failed", str(e)) from e

    params["database"] = summary
    await ctx.status(params).info("Database restored")
    return params


async def options(params: Params, ctx: PipelineContext) -> Params:
    preserved = params.get("preserved_options") or {}
    if ctx.options is None or not preserved:
        return params
    for key, value in preserved.items():
        if value is not None:
            ctx.options.set(key, value)
    return params


async def _restore_component(params: Params, ctx: PipelineContext, component: str, keep_existing: bool = False) -> Params:
    if not _includes(params, component):
        return params
    count = await asyncio.to_thread(
        ctx.full_site_importer.restore_component,
        params["archive_path"],
        component,
        keep_existing,
    )
    params.setdefault("files", {})[component] = count
    return params


async def media(params: Params, ctx: PipelineContext) -> Params:
    return await _restore_component(params, ctx, "uploads")


async def content(params: Params, ctx: PipelineContext) -> Params:
    if params.get("archive_type") in CONTENT_ARCHIVE_TYPES:
        summary = await asyncio.to_thread(ctx.content_importer.import_archive, params["archive_path"])
        params["content"] = summary
        return params
    return await _restore_component(params, ctx, "content")


async def mu_plugins(params: Params, ctx: PipelineContext) -> Params:
    return await _restore_component(params, ctx, "mu-plugins")


async def plugins(params: Params, ctx: PipelineContext) -> Params:
    return await _restore_component(params, ctx, "plugins", keep_existing=True)


async def themes(params: Params, ctx: PipelineContext) -> Params:
    return await _restore_component(params, ctx, "themes")


async def users(params: Params, ctx: PipelineContext) -> Params:
    if not _is_site_archive(params):
        return params
    table = f"{ctx.config.site.table_prefix}users"
    if ctx.store.table_exists(table):
        rows = ctx.store.query(f"SELECT COUNT(*) AS total FROM `{table}`")
        params["users"] = int(rows[0]["total"]) if rows else 0
        await ctx.status(params).info(f"{params['users']} user account(s) present after import")
    return params


async def permalinks(params: Params, ctx: PipelineContext) -> Params:
    ctx.hooks.flush_rewrite_rules()
    return params


async def done(params: Params, ctx: PipelineContext) -> Params:
    ctx.hooks.flush_cache()
    params["result"] = {
        "archive": params.get("archive"),
        "type": params.get("archive_type"),
        "database": params.get("database"),
        "files": params.get("files") or {},
        "content": params.get("content"),
        "users": params.get("users"),
        "snapshot_id": params.get("snapshot_id"),
    }
    logger.info(f"Import of {params.get('archive')} finished")
    return params


async def clean(params: Params, ctx: PipelineContext) -> Params:
    remove_path(ctx.scratch_dir(params))
    remove_stale_scratch(ctx.storage_dir, ctx.config.pipeline.stale_scratch_age)
    params["completed"] = True
    return params
