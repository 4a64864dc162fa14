"""Zip backends for the archive container.

Two interchangeable implementations share entry naming and the
compression-exemption rules:

- ``NativeZipBackend`` wraps the standard ``zipfile`` module.
- ``StreamingZipBackend`` is a pure-Python reader/writer. Its reader scans
  local file headers front to back, so it can still recover entries from a
  container whose central directory is missing or truncated.
"""

import io
import os
import struct
import time
import zipfile
import zlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Type

from .._utils import logger, PathLike
from ..errors import FormatError, JobCancelledError

STORED_EXTENSIONS = frozenset({
    "jpg", "jpeg", "png", "gif", "webp", "svg",
    "zip", "gz", "rar", "7z",
    "mp4", "mov", "mp3", "ogg",
    "pdf", "wpbkp",
})

IGNORED_PATTERNS = (".git/", ".svn/", ".hg/", ".DS_Store")

COPY_BLOCK_SIZE = 64 * 1024

CancelCheck = Optional[Callable[[], bool]]


def normalize_entry_name(name: str) -> str:
    """Normalize an entry name to forward slashes and reject traversal."""
    normalized = name.replace("\\", "/").lstrip("/")
    parts = normalized.split("/")
    if not normalized or any(part == ".." for part in parts):
        raise ValueError(f"Invalid archive entry name: {name!r}")
    return normalized


def is_ignored(path: str) -> bool:
    path = path.replace("\\", "/")
    if os.path.isdir(path) and not path.endswith("/"):
        path += "/"
    return any(pattern in path for pattern in IGNORED_PATTERNS)


def is_compression_exempt(name: str) -> bool:
    """Already-compressed media is stored, everything else deflated."""
    _, _, extension = name.rpartition(".")
    return "." in name and extension.lower() in STORED_EXTENSIONS


def compression_for(name: str) -> int:
    if is_compression_exempt(name):
        return zipfile.ZIP_STORED
    return zipfile.ZIP_DEFLATED


def _raise_if_cancelled(cancel_check: CancelCheck) -> None:
    if cancel_check is not None and cancel_check():
        raise JobCancelledError("Archive write cancelled")


def copy_stream(
    source: BinaryIO,
    target: BinaryIO,
    cancel_check: CancelCheck = None,
    block_size: int = COPY_BLOCK_SIZE,
) -> int:
    """Copy source to target block by block, polling cancel_check per block."""
    copied = 0
    for block in iter(lambda: source.read(block_size), b""):
        _raise_if_cancelled(cancel_check)
        target.write(block)
        copied += len(block)
    return copied


class ArchiveWriter(ABC):
    """Write side of a container."""

    @abstractmethod
    def add_bytes(self, name: str, data: bytes, cancel_check: CancelCheck = None) -> None:
        pass

    @abstractmethod
    def add_file(self, name: str, source_path: PathLike, cancel_check: CancelCheck = None) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ArchiveReader(ABC):
    """Read side of a container."""

    @abstractmethod
    def names(self) -> List[str]:
        pass

    @abstractmethod
    def open(self, name: str) -> BinaryIO:
        """Open an entry as a binary stream. Raises KeyError if missing."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def has(self, name: str) -> bool:
        return name in self.names()

    def read(self, name: str) -> bytes:
        with self.open(name) as stream:
            return stream.read()

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ArchiveBackend(ABC):
    name: str = ""

    @classmethod
    @abstractmethod
    def is_available(cls) -> bool:
        pass

    @abstractmethod
    def open_writer(self, path: PathLike) -> ArchiveWriter:
        pass

    @abstractmethod
    def open_reader(self, path: PathLike) -> ArchiveReader:
        """Open a container. Raises FormatError if it cannot be read."""
        pass


# Native backend


class NativeZipWriter(ArchiveWriter):
    def __init__(self, path: PathLike):
        self._zip = zipfile.ZipFile(path, "w", allowZip64=True)

    def _info(self, name: str) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(name, date_time=time.localtime(time.time())[:6])
        info.compress_type = compression_for(name)
        info.external_attr = 0o644 << 16
        return info

    def add_bytes(self, name: str, data: bytes, cancel_check: CancelCheck = None) -> None:
        name = normalize_entry_name(name)
        info = self._info(name)
        if cancel_check is None:
            self._zip.writestr(info, data)
            return

        info.file_size = len(data)
        with self._zip.open(info, "w") as target:
            copy_stream(io.BytesIO(data), target, cancel_check)

    def add_file(self, name: str, source_path: PathLike, cancel_check: CancelCheck = None) -> None:
        name = normalize_entry_name(name)
        if cancel_check is None:
            self._zip.write(source_path, name, compress_type=compression_for(name))
            return

        info = self._info(name)
        info.file_size = os.path.getsize(source_path)
        with open(source_path, "rb") as source:
            with self._zip.open(info, "w") as target:
                copy_stream(source, target, cancel_check)

    def close(self) -> None:
        self._zip.close()


class NativeZipReader(ArchiveReader):
    def __init__(self, path: PathLike):
        try:
            self._zip = zipfile.ZipFile(path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise FormatError(f"Unable to open archive {path}: {e}") from e
        self._names = [info.filename for info in self._zip.infolist() if not info.is_dir()]

    def names(self) -> List[str]:
        return list(self._names)

    def has(self, name: str) -> bool:
        return name in self._names

    def open(self, name: str) -> BinaryIO:
        return self._zip.open(name, "r")

    def close(self) -> None:
        self._zip.close()


class NativeZipBackend(ArchiveBackend):
    """Backend built on the standard zipfile module."""

    name = "native"
    _probe_result: Optional[bool] = None

    @classmethod
    def is_available(cls) -> bool:
        if cls._probe_result is None:
            cls._probe_result = cls._probe()
        return cls._probe_result

    @staticmethod
    def _probe() -> bool:
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.writestr("probe.txt", b"probe")
            with zipfile.ZipFile(io.BytesIO(buffer.getvalue())) as zf:
                return zf.read("probe.txt") == b"probe"
        except (RuntimeError, zipfile.BadZipFile, OSError) as e:
            logger.warning(f"Native zip backend unavailable: {e}")
            return False

    def open_writer(self, path: PathLike) -> ArchiveWriter:
        return NativeZipWriter(path)

    def open_reader(self, path: PathLike) -> ArchiveReader:
        return NativeZipReader(path)


# Streaming backend

_LOCAL_HEADER = struct.Struct("<4sHHHHHLLLHH")
_CENTRAL_HEADER = struct.Struct("<4sHHHHHHLLLHHHHHLL")
_END_RECORD = struct.Struct("<4sHHHHLLH")
_ZIP64_END_RECORD = struct.Struct("<4sQHHLLQQQQ")
_ZIP64_LOCATOR = struct.Struct("<4sLQL")
_EXTRA_HEADER = struct.Struct("<HH")

_LOCAL_SIGNATURE = b"PK\x03\x04"
_CENTRAL_SIGNATURE = b"PK\x01\x02"
_END_SIGNATURE = b"PK\x05\x06"
_ZIP64_END_SIGNATURE = b"PK\x06\x06"
_ZIP64_LOCATOR_SIGNATURE = b"PK\x06\x07"

_ZIP64_EXTRA_ID = 0x0001
_UTF8_FLAG = 0x800
_DESCRIPTOR_FLAG = 0x08
_ENCRYPTED_FLAG = 0x01
_ZIP64_VERSION = 45
_MAX_32 = 0xFFFFFFFF
_MAX_16 = 0xFFFF


def _dos_datetime(timestamp: float) -> tuple:
    t = time.localtime(timestamp)
    year = max(t.tm_year, 1980)
    dos_time = (t.tm_hour << 11) | (t.tm_min << 5) | (t.tm_sec // 2)
    dos_date = ((year - 1980) << 9) | (t.tm_mon << 5) | t.tm_mday
    return dos_time, dos_date


class _WrittenEntry:
    __slots__ = ("name", "method", "dos_time", "dos_date", "crc", "compressed_size", "size", "offset")

    def __init__(self, name: str, method: int, dos_time: int, dos_date: int, offset: int):
        self.name = name
        self.method = method
        self.dos_time = dos_time
        self.dos_date = dos_date
        self.crc = 0
        self.compressed_size = 0
        self.size = 0
        self.offset = offset


class StreamingZipWriter(ArchiveWriter):
    """Pure-Python zip writer.

    Every local header carries a zip64 extra field that is patched in place
    once the entry's sizes are known.
    """

    def __init__(self, path: PathLike):
        self._file = open(path, "wb")
        self._entries: List[_WrittenEntry] = []
        self._closed = False

    def add_bytes(self, name: str, data: bytes, cancel_check: CancelCheck = None) -> None:
        self._write_entry(name, io.BytesIO(data), time.time(), cancel_check)

    def add_file(self, name: str, source_path: PathLike, cancel_check: CancelCheck = None) -> None:
        mtime = os.path.getmtime(source_path)
        with open(source_path, "rb") as source:
            self._write_entry(name, source, mtime, cancel_check)

    def _write_entry(self, name: str, source: BinaryIO, mtime: float, cancel_check: CancelCheck) -> None:
        name = normalize_entry_name(name)
        encoded_name = name.encode("utf-8")
        method = compression_for(name)
        dos_time, dos_date = _dos_datetime(mtime)
        entry = _WrittenEntry(name, method, dos_time, dos_date, self._file.tell())

        extra = _EXTRA_HEADER.pack(_ZIP64_EXTRA_ID, 16) + struct.pack("<QQ", 0, 0)
        self._file.write(_LOCAL_HEADER.pack(
            _LOCAL_SIGNATURE, _ZIP64_VERSION, _UTF8_FLAG, method, dos_time, dos_date,
            0, _MAX_32, _MAX_32, len(encoded_name), len(extra),
        ))
        self._file.write(encoded_name)
        self._file.write(extra)

        compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15) \
            if method == zipfile.ZIP_DEFLATED else None
        crc = 0
        for block in iter(lambda: source.read(COPY_BLOCK_SIZE), b""):
            _raise_if_cancelled(cancel_check)
            crc = zlib.crc32(block, crc)
            entry.size += len(block)
            output = compressor.compress(block) if compressor else block
            entry.compressed_size += len(output)
            self._file.write(output)
        if compressor:
            tail = compressor.flush()
            entry.compressed_size += len(tail)
            self._file.write(tail)
        entry.crc = crc & _MAX_32

        end = self._file.tell()
        self._file.seek(entry.offset + 14)
        self._file.write(struct.pack("<L", entry.crc))
        self._file.seek(entry.offset + _LOCAL_HEADER.size + len(encoded_name) + _EXTRA_HEADER.size)
        self._file.write(struct.pack("<QQ", entry.size, entry.compressed_size))
        self._file.seek(end)
        self._entries.append(entry)

    def _write_central_directory(self) -> None:
        start = self._file.tell()
        for entry in self._entries:
            encoded_name = entry.name.encode("utf-8")
            zip64_fields = []
            size, compressed_size, offset = entry.size, entry.compressed_size, entry.offset
            if size >= _MAX_32:
                zip64_fields.append(size)
                size = _MAX_32
            if compressed_size >= _MAX_32:
                zip64_fields.append(compressed_size)
                compressed_size = _MAX_32
            if offset >= _MAX_32:
                zip64_fields.append(offset)
                offset = _MAX_32
            extra = b""
            if zip64_fields:
                extra = _EXTRA_HEADER.pack(_ZIP64_EXTRA_ID, 8 * len(zip64_fields)) + \
                    struct.pack(f"<{len(zip64_fields)}Q", *zip64_fields)
            self._file.write(_CENTRAL_HEADER.pack(
                _CENTRAL_SIGNATURE, (3 << 8) | _ZIP64_VERSION, _ZIP64_VERSION, _UTF8_FLAG,
                entry.method, entry.dos_time, entry.dos_date, entry.crc,
                compressed_size, size, len(encoded_name), len(extra), 0, 0, 0,
                0o644 << 16, offset,
            ))
            self._file.write(encoded_name)
            self._file.write(extra)

        end = self._file.tell()
        directory_size = end - start
        count = len(self._entries)
        if count >= _MAX_16 or directory_size >= _MAX_32 or start >= _MAX_32:
            self._file.write(_ZIP64_END_RECORD.pack(
                _ZIP64_END_SIGNATURE, _ZIP64_END_RECORD.size - 12, _ZIP64_VERSION, _ZIP64_VERSION,
                0, 0, count, count, directory_size, start,
            ))
            self._file.write(_ZIP64_LOCATOR.pack(_ZIP64_LOCATOR_SIGNATURE, 0, end, 1))
            self._file.write(_END_RECORD.pack(
                _END_SIGNATURE, 0, 0, min(count, _MAX_16), min(count, _MAX_16),
                min(directory_size, _MAX_32), min(start, _MAX_32), 0,
            ))
        else:
            self._file.write(_END_RECORD.pack(
                _END_SIGNATURE, 0, 0, count, count, directory_size, start, 0,
            ))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._write_central_directory()
        finally:
            self._file.close()


class _ScannedEntry:
    __slots__ = ("name", "method", "crc", "compressed_size", "size", "data_offset")

    def __init__(self, name, method, crc, compressed_size, size, data_offset):
        self.name = name
        self.method = method
        self.crc = crc
        self.compressed_size = compressed_size
        self.size = size
        self.data_offset = data_offset


class _EntryStream(io.RawIOBase):
    """Decompressing, CRC-checking view of one scanned entry."""

    def __init__(self, path: PathLike, entry: _ScannedEntry):
        self._file = open(path, "rb")
        self._file.seek(entry.data_offset)
        self._entry = entry
        self._remaining = entry.compressed_size
        self._decompressor = zlib.decompressobj(-15) if entry.method == zipfile.ZIP_DEFLATED else None
        self._buffer = b""
        self._crc = 0
        self._eof = False

    def readable(self) -> bool:
        return True

    def _fill(self) -> None:
        while not self._buffer and not self._eof:
            if self._remaining <= 0:
                if self._decompressor:
                    self._buffer = self._decompressor.flush()
                self._eof = True
                break
            block = self._file.read(min(COPY_BLOCK_SIZE, self._remaining))
            if not block:
                raise FormatError(f"Truncated archive entry: {self._entry.name}")
            self._remaining -= len(block)
            self._buffer = self._decompressor.decompress(block) if self._decompressor else block
        if self._buffer:
            self._crc = zlib.crc32(self._buffer, self._crc)
        elif self._eof and (self._crc & _MAX_32) != self._entry.crc:
            raise FormatError(f"CRC mismatch for archive entry: {self._entry.name}")

    def readinto(self, b) -> int:
        if not self._buffer:
            self._fill()
        if not self._buffer:
            return 0
        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def close(self) -> None:
        if not self.closed:
            self._file.close()
        super().close()


class StreamingZipReader(ArchiveReader):
    """Forward-scanning reader over local file headers."""

    def __init__(self, path: PathLike):
        self._path = Path(path)
        self._entries: Dict[str, _ScannedEntry] = {}
        try:
            self._scan()
        except (OSError, struct.error) as e:
            raise FormatError(f"Unable to scan archive {path}: {e}") from e
        if not self._entries:
            raise FormatError(f"No readable entries in archive {path}")

    def _scan(self) -> None:
        total_size = self._path.stat().st_size
        with open(self._path, "rb") as f:
            while True:
                header = f.read(_LOCAL_HEADER.size)
                if len(header) < _LOCAL_HEADER.size or header[:4] != _LOCAL_SIGNATURE:
                    break
                (_, _, flags, method, _, _, crc, compressed_size, size,
                 name_length, extra_length) = _LOCAL_HEADER.unpack(header)
                raw_name = f.read(name_length)
                extra = f.read(extra_length)
                name = raw_name.decode("utf-8" if flags & _UTF8_FLAG else "cp437")

                if compressed_size == _MAX_32 or size == _MAX_32:
                    size, compressed_size = self._zip64_sizes(extra, size, compressed_size)
                if flags & _ENCRYPTED_FLAG:
                    raise FormatError(f"Encrypted archive entries are not supported: {name}")
                if flags & _DESCRIPTOR_FLAG and compressed_size == 0 and size == 0 and crc == 0:
                    raise FormatError(f"Archive entry without recorded sizes: {name}")
                if method not in (zipfile.ZIP_STORED, zipfile.ZIP_DEFLATED):
                    raise FormatError(f"Unsupported compression method {method} for {name}")

                data_offset = f.tell()
                if data_offset + compressed_size > total_size:
                    logger.warning(f"Archive entry truncated, stopping scan: {name}")
                    break
                if not name.endswith("/"):
                    self._entries[name] = _ScannedEntry(
                        name, method, crc, compressed_size, size, data_offset
                    )
                f.seek(compressed_size, os.SEEK_CUR)

    @staticmethod
    def _zip64_sizes(extra: bytes, size: int, compressed_size: int) -> tuple:
        position = 0
        while position + _EXTRA_HEADER.size <= len(extra):
            header_id, data_size = _EXTRA_HEADER.unpack_from(extra, position)
            position += _EXTRA_HEADER.size
            if header_id == _ZIP64_EXTRA_ID:
                data = extra[position:position + data_size]
                index = 0
                if size == _MAX_32:
                    size = struct.unpack_from("<Q", data, index)[0]
                    index += 8
                if compressed_size == _MAX_32:
                    compressed_size = struct.unpack_from("<Q", data, index)[0]
                return size, compressed_size
            position += data_size
        raise FormatError("Missing zip64 size fields")

    def names(self) -> List[str]:
        return list(self._entries)

    def has(self, name: str) -> bool:
        return name in self._entries

    def open(self, name: str) -> BinaryIO:
        if name not in self._entries:
            raise KeyError(name)
        return io.BufferedReader(_EntryStream(self._path, self._entries[name]), COPY_BLOCK_SIZE)

    def close(self) -> None:
        self._entries = {}


class StreamingZipBackend(ArchiveBackend):
    """Pure-Python fallback backend."""

    name = "streaming"

    @classmethod
    def is_available(cls) -> bool:
        return True

    def open_writer(self, path: PathLike) -> ArchiveWriter:
        return StreamingZipWriter(path)

    def open_reader(self, path: PathLike) -> ArchiveReader:
        return StreamingZipReader(path)


BACKENDS: Dict[str, Type[ArchiveBackend]] = {
    NativeZipBackend.name: NativeZipBackend,
    StreamingZipBackend.name: StreamingZipBackend,
}


def select_backend(preference: str = "auto") -> ArchiveBackend:
    """Pick a backend by name, or by capability probing for ``auto``."""
    if preference == "auto":
        backend_cls = NativeZipBackend if NativeZipBackend.is_available() else StreamingZipBackend
    elif preference in BACKENDS:
        backend_cls = BACKENDS[preference]
    else:
        raise ValueError(f"Unknown archive backend: {preference}")

    logger.debug(f"Using {backend_cls.name} archive backend")
    return backend_cls()


def alternate_backend(backend: ArchiveBackend) -> Optional[ArchiveBackend]:
    """The other backend, used when the first cannot read a container."""
    for name, backend_cls in BACKENDS.items():
        if name != backend.name and backend_cls.is_available():
            return backend_cls()
    return None
