import hashlib
import json
import logging
import os
import secrets
import shutil
import string
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger("site-migrate")

PathLike = Union[str, Path]

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def compute_checksum(file_path: PathLike) -> str:
    """Compute SHA-256 checksum of a file as a hex string."""
    sha256 = hashlib.sha256()

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)

    return sha256.hexdigest()


def compute_bytes_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def generate_token(length: int = 20) -> str:
    """Random alphanumeric token used for job ids and scratch directories."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp without microseconds."""
    return utc_now().replace(microsecond=0).isoformat()


def save_json(data: Any, output_path: PathLike, indent: Optional[int] = 2) -> None:
    """Write JSON to a file through a temporary sibling, then rename."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_name(f".{output_path.name}.{generate_token(8)}")

    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, default=str)

    os.replace(tmp_path, output_path)
    logger.debug(f"JSON saved: {output_path}")


def load_json(input_path: PathLike) -> Any:
    with open(input_path, "r", encoding="utf-8") as f:
        return json.load(f)


def remove_path(path: PathLike) -> None:
    """Remove a file or directory tree if it exists."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    elif path.exists() or path.is_symlink():
        path.unlink()


def is_within_directory(directory: PathLike, target: PathLike) -> bool:
    directory = os.path.abspath(directory)
    target = os.path.abspath(target)
    return os.path.commonpath([directory, target]) == directory
