"""Tests for archive creation and verified extraction."""

import json
import struct
import zipfile

import pytest

from site_migrate._utils import compute_bytes_checksum
from site_migrate.archive import (
    MANIFEST_NAME,
    PAYLOAD_NAME,
    ArchiveType,
    Extractor,
    NativeZipBackend,
    Packer,
    StreamingZipBackend,
    collect_directory_assets,
    encode_payload,
    select_backend,
)
from site_migrate.errors import EncodingError, FormatError, IntegrityError, JobCancelledError


@pytest.fixture(params=["native", "streaming"])
def backend(request):
    return select_backend(request.param)


@pytest.fixture
def packer(backend, temp_dir):
    return Packer(backend, output_dir=temp_dir / "exports", producer_version="1.2.3")


def rewrite_entry(path, name, data):
    """Copy a container, replacing one entry's bytes."""
    with zipfile.ZipFile(path) as source:
        entries = {info.filename: source.read(info.filename) for info in source.infolist()}
    entries[name] = data
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as target:
        for entry_name, entry_data in entries.items():
            target.writestr(entry_name, entry_data)


def test_select_backend():
    assert select_backend("native").name == "native"
    assert select_backend("streaming").name == "streaming"
    assert select_backend("auto").name in ("native", "streaming")
    with pytest.raises(ValueError):
        select_backend("rar")


def test_round_trip_with_media(packer, backend, temp_dir):
    image = temp_dir / "photo.jpg"
    image.write_bytes(b"\xff\xd8\xff" + b"pixels" * 50)
    payload = {"type": "page", "title": "Hello", "slug": "hello", "content": "Grüße"}
    media = [{
        "original_id": 7,
        "parent": 42,
        "filename": "photo.jpg",
        "checksum": "a" * 64,
        "archive_path": "media/7-photo.jpg",
    }]

    path = packer.create_archive(
        payload,
        {"type": "page", "label": "page-42", "media": media},
        assets=[{"source": str(image), "target": "media/7-photo.jpg"}],
    )

    assert path.suffix == ".wpbkp"
    assert path.parent == temp_dir / "exports"

    extractor = Extractor(backend)
    extracted = extractor.extract(path)
    assert extracted.type == "page"
    assert extracted.payload == payload
    assert extracted.manifest.producer_version == "1.2.3"
    assert extracted.manifest.label == "page-42"
    assert extracted.media[0].parent_id == 42
    assert extracted.media[0].archive_path == "media/7-photo.jpg"

    temp_file = extractor.extract_media_file("media/7-photo.jpg", path)
    try:
        assert temp_file.read_bytes() == image.read_bytes()
        assert temp_file.suffix == ".jpg"
    finally:
        temp_file.unlink()


def test_manifest_wire_format(packer):
    path = packer.create_archive({"type": "post"}, {"type": "post"})

    with zipfile.ZipFile(path) as zf:
        manifest = json.loads(zf.read(MANIFEST_NAME))
        payload_bytes = zf.read(PAYLOAD_NAME)

    assert manifest["format_version"] == 1
    assert manifest["plugin_version"] == "1.2.3"
    assert manifest["type"] == "post"
    assert "created_at_gmt" in manifest
    assert manifest["media"] == []
    assert payload_bytes == encode_payload({"type": "post"})


def test_checksum_mismatch(packer, backend):
    path = packer.create_archive({"type": "page", "title": "Original"}, {"type": "page"})
    rewrite_entry(path, PAYLOAD_NAME, encode_payload({"type": "page", "title": "Tampered"}))

    with pytest.raises(IntegrityError):
        Extractor(backend).extract(path)


def flip_entry_byte(path, name):
    """Corrupt one byte in the middle of an entry's stored data."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, "r+b") as f:
        f.seek(info.header_offset + 26)
        name_length, extra_length = struct.unpack("<HH", f.read(4))
        position = info.header_offset + 30 + name_length + extra_length + info.compress_size // 2
        f.seek(position)
        original = f.read(1)
        f.seek(position)
        f.write(bytes([original[0] ^ 0xFF]))


def test_corrupted_payload_bytes(packer, backend):
    payload = {"type": "page", "title": "Original", "content": "Lorem ipsum dolor sit amet. " * 40}
    path = packer.create_archive(payload, {"type": "page"})
    flip_entry_byte(path, PAYLOAD_NAME)

    with pytest.raises(IntegrityError):
        Extractor(backend).extract(path)


def test_missing_manifest(packer, backend, temp_dir):
    path = temp_dir / "broken.wpbkp"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr(PAYLOAD_NAME, b"{}")

    with pytest.raises(FormatError):
        Extractor(backend).extract(path)


def test_invalid_payload_json(packer, backend):
    path = packer.create_archive({"type": "page"}, {"type": "page"})
    bad_payload = b"{not json"
    with zipfile.ZipFile(path) as zf:
        manifest = json.loads(zf.read(MANIFEST_NAME))
    manifest["checksum"] = compute_bytes_checksum(bad_payload)
    rewrite_entry(path, MANIFEST_NAME, json.dumps(manifest).encode("utf-8"))
    rewrite_entry(path, PAYLOAD_NAME, bad_payload)

    with pytest.raises(FormatError):
        Extractor(backend).extract(path)


def test_missing_archive(backend, temp_dir):
    with pytest.raises(FormatError):
        Extractor(backend).extract(temp_dir / "missing.wpbkp")


def test_unencodable_payload(packer):
    with pytest.raises(EncodingError):
        packer.create_archive({"value": float("nan")}, {"type": "page"})


def test_missing_assets_are_skipped(packer, backend, temp_dir):
    path = packer.create_archive(
        {"type": "bundle"},
        {"type": "bundle"},
        assets=[{"source_path": str(temp_dir / "gone.jpg"), "target_path": "media/1-gone.jpg"}],
    )

    assert "media/1-gone.jpg" not in Extractor(backend).list_entries(path)


def test_cancel_removes_partial_archive(packer, temp_dir):
    big = temp_dir / "big.bin"
    big.write_bytes(b"0" * (512 * 1024))
    target = temp_dir / "cancelled.wpbkp"

    with pytest.raises(JobCancelledError):
        packer.create_archive(
            {"type": "full-site"},
            {"type": "full-site"},
            assets=[{"source": str(big), "target": "files/uploads/big.bin"}],
            target_path=target,
            cancel_check=lambda: True,
        )
    assert not target.exists()


def test_cancel_while_writing_payload(packer, temp_dir):
    target = temp_dir / "cancelled.wpbkp"
    payload = {"type": "full-site", "tables": {"wp_posts": ["row"] * 20000}}

    with pytest.raises(JobCancelledError):
        packer.create_archive(payload, {"type": "full-site"}, target_path=target, cancel_check=lambda: True)
    assert not target.exists()


def test_extract_tree(packer, backend, temp_dir):
    uploads = temp_dir / "uploads"
    (uploads / "2024").mkdir(parents=True)
    (uploads / "2024" / "a.txt").write_text("a")
    (uploads / ".git").mkdir()
    (uploads / ".git" / "HEAD").write_text("ref")
    (uploads / ".DS_Store").write_text("junk")

    assets = collect_directory_assets(uploads, "files/uploads")
    assert [asset.target_path for asset in assets] == ["files/uploads/2024/a.txt"]

    path = packer.create_archive({"type": "full-site"}, {"type": "full-site"}, assets=assets)
    destination = temp_dir / "restored"
    (destination / "2024").mkdir(parents=True)
    (destination / "2024" / "a.txt").write_text("local")

    extractor = Extractor(backend)
    assert extractor.extract_tree(path, "files/uploads", destination, overwrite=False) == 0
    assert (destination / "2024" / "a.txt").read_text() == "local"
    assert extractor.extract_tree(path, "files/uploads", destination) == 1
    assert (destination / "2024" / "a.txt").read_text() == "a"


def test_truncated_container_falls_back_to_streaming_reader(temp_dir):
    packer = Packer(StreamingZipBackend(), output_dir=temp_dir)
    path = packer.create_archive({"type": ArchiveType.PAGE.value, "title": "Hello"}, {"type": "page"})
    data = path.read_bytes()
    path.write_bytes(data[: data.rfind(b"PK\x01\x02")])

    extracted = Extractor(NativeZipBackend()).extract(path)

    assert extracted.payload["title"] == "Hello"
