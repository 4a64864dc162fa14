"""Configuration management for site-migrate."""

import os
from dataclasses import dataclass, field
from typing import Optional


MIN_CHUNK_SIZE = 256 * 1024
MAX_CHUNK_SIZE = 5 * 1024 * 1024


@dataclass(frozen=True)
class ArchiveConfig:
    """Archive container configuration."""
    backend: str = "auto"  # auto, native, streaming
    extension: str = ".wpbkp"
    exports_dir: str = "./storage/exports"

    @classmethod
    def from_env(cls) -> 'ArchiveConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("ARCHIVE_BACKEND", "auto"),
            extension=os.getenv("ARCHIVE_EXTENSION", ".wpbkp"),
            exports_dir=os.getenv("EXPORTS_DIR", "./storage/exports"),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.backend not in ("auto", "native", "streaming"):
            raise ValueError(f"Unknown archive backend: {self.backend}")
        if not self.extension.startswith("."):
            raise ValueError(f"extension must start with '.', got {self.extension}")


@dataclass(frozen=True)
class ChunkConfig:
    """Chunk transfer configuration."""
    directory: str = "./storage/chunks"
    default_chunk_size: int = MAX_CHUNK_SIZE
    min_chunk_size: int = MIN_CHUNK_SIZE
    max_chunk_size: int = MAX_CHUNK_SIZE
    job_ttl: int = 86400  # 24 hours

    @classmethod
    def from_env(cls) -> 'ChunkConfig':
        """Create config from environment variables."""
        return cls(
            directory=os.getenv("CHUNK_DIR", "./storage/chunks"),
            default_chunk_size=int(os.getenv("CHUNK_SIZE", str(MAX_CHUNK_SIZE))),
            job_ttl=int(os.getenv("CHUNK_JOB_TTL", "86400")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.min_chunk_size <= self.default_chunk_size <= self.max_chunk_size:
            raise ValueError(
                f"default_chunk_size must be between {self.min_chunk_size} and "
                f"{self.max_chunk_size}, got {self.default_chunk_size}"
            )
        if self.job_ttl <= 0:
            raise ValueError(f"job_ttl must be positive, got {self.job_ttl}")


@dataclass(frozen=True)
class LockConfig:
    """Job lock configuration."""
    backend: str = "file"  # file, redis
    directory: str = "./storage"
    ttl: int = 900
    min_ttl: int = 60

    @classmethod
    def from_env(cls) -> 'LockConfig':
        """Create config from environment variables."""
        return cls(
            backend=os.getenv("LOCK_BACKEND", "file"),
            directory=os.getenv("LOCK_DIR", "./storage"),
            ttl=int(os.getenv("LOCK_TTL", "900")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.backend not in ("file", "redis"):
            raise ValueError(f"Unknown lock backend: {self.backend}")
        if self.min_ttl <= 0:
            raise ValueError(f"min_ttl must be positive, got {self.min_ttl}")


@dataclass(frozen=True)
class SnapshotConfig:
    """Pre-import snapshot configuration."""
    directory: str = "./storage/snapshots"
    retention: int = 3
    include_plugins: bool = False
    include_themes: bool = False

    @classmethod
    def from_env(cls) -> 'SnapshotConfig':
        """Create config from environment variables."""
        return cls(
            directory=os.getenv("SNAPSHOT_DIR", "./storage/snapshots"),
            retention=int(os.getenv("SNAPSHOT_RETENTION", "3")),
            include_plugins=os.getenv("SNAPSHOT_INCLUDE_PLUGINS", "false").lower() == "true",
            include_themes=os.getenv("SNAPSHOT_INCLUDE_THEMES", "false").lower() == "true",
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.retention < 1:
            raise ValueError(f"retention must be at least 1, got {self.retention}")


@dataclass(frozen=True)
class PipelineConfig:
    """Export/import pipeline configuration."""
    storage_dir: str = "./storage"
    state_backend: str = "file"  # file, redis
    state_dir: str = "./storage/state"
    params_ttl: int = 3600
    continuation: str = "task"  # task, http
    continuation_url: Optional[str] = None
    stale_scratch_age: int = 86400
    disk_space_factor: float = 2.0

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        """Create config from environment variables."""
        return cls(
            storage_dir=os.getenv("STORAGE_DIR", "./storage"),
            state_backend=os.getenv("PIPELINE_STATE_BACKEND", "file"),
            state_dir=os.getenv("PIPELINE_STATE_DIR", "./storage/state"),
            params_ttl=int(os.getenv("PIPELINE_PARAMS_TTL", "3600")),
            continuation=os.getenv("PIPELINE_CONTINUATION", "task"),
            continuation_url=os.getenv("PIPELINE_CONTINUATION_URL"),
            stale_scratch_age=int(os.getenv("PIPELINE_STALE_SCRATCH_AGE", "86400")),
            disk_space_factor=float(os.getenv("PIPELINE_DISK_SPACE_FACTOR", "2.0")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.state_backend not in ("file", "redis"):
            raise ValueError(f"Unknown state backend: {self.state_backend}")
        if self.continuation not in ("task", "http"):
            raise ValueError(f"Unknown continuation mode: {self.continuation}")
        if self.continuation == "http" and not self.continuation_url:
            raise ValueError("continuation_url is required for http continuation")
        if self.params_ttl <= 0:
            raise ValueError(f"params_ttl must be positive, got {self.params_ttl}")


@dataclass(frozen=True)
class SiteConfig:
    """Description of the local site the engine exports from and imports into."""
    site_url: str = "http://localhost"
    home_url: str = "http://localhost"
    table_prefix: str = "wp_"
    root_path: str = "./site"
    content_path: str = "./site/wp-content"
    uploads_path: str = "./site/wp-content/uploads"
    plugins_path: str = "./site/wp-content/plugins"
    themes_path: str = "./site/wp-content/themes"
    mu_plugins_path: str = "./site/wp-content/mu-plugins"
    database_path: str = "./site/database.sqlite"

    @classmethod
    def from_env(cls) -> 'SiteConfig':
        """Create config from environment variables."""
        root = os.getenv("SITE_ROOT", "./site")
        content = os.getenv("SITE_CONTENT_PATH", os.path.join(root, "wp-content"))
        site_url = os.getenv("SITE_URL", "http://localhost")
        return cls(
            site_url=site_url,
            home_url=os.getenv("SITE_HOME_URL", site_url),
            table_prefix=os.getenv("SITE_TABLE_PREFIX", "wp_"),
            root_path=root,
            content_path=content,
            uploads_path=os.getenv("SITE_UPLOADS_PATH", os.path.join(content, "uploads")),
            plugins_path=os.getenv("SITE_PLUGINS_PATH", os.path.join(content, "plugins")),
            themes_path=os.getenv("SITE_THEMES_PATH", os.path.join(content, "themes")),
            mu_plugins_path=os.getenv("SITE_MU_PLUGINS_PATH", os.path.join(content, "mu-plugins")),
            database_path=os.getenv("SITE_DATABASE_PATH", os.path.join(root, "database.sqlite")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.table_prefix.replace("_", "").isalnum():
            raise ValueError(f"table_prefix must match [A-Za-z0-9_]+, got {self.table_prefix}")

    @property
    def paths(self) -> dict:
        return {
            "root": self.root_path,
            "content": self.content_path,
            "uploads": self.uploads_path,
        }

    @property
    def component_paths(self) -> dict:
        """Archive component name to local directory."""
        return {
            "uploads": self.uploads_path,
            "plugins": self.plugins_path,
            "themes": self.themes_path,
            "mu-plugins": self.mu_plugins_path,
            "content": self.content_path,
        }


@dataclass(frozen=True)
class MigrateConfig:
    """Main site-migrate configuration."""
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    site: SiteConfig = field(default_factory=SiteConfig)

    @classmethod
    def from_env(cls) -> 'MigrateConfig':
        """Create complete config from environment variables."""
        return cls(
            archive=ArchiveConfig.from_env(),
            chunk=ChunkConfig.from_env(),
            lock=LockConfig.from_env(),
            snapshot=SnapshotConfig.from_env(),
            pipeline=PipelineConfig.from_env(),
            site=SiteConfig.from_env(),
        )
