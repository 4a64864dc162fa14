"""Tests for the site-migrate REST API."""

import asyncio
import base64
import hashlib
import math

import pytest
from fastapi.testclient import TestClient

from site_migrate.api.app import create_app
from site_migrate.api.config import settings
from site_migrate.database import SqliteRelationalStore
from site_migrate.recovery import create_job_lock
from tests.base.fixtures import make_config, seed_site

PREFIX = "/api/v1"


@pytest.fixture
def config(temp_dir, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", None)
    monkeypatch.setattr(settings, "redis_url", None)
    monkeypatch.setattr(settings, "working_dir", str(temp_dir / "incoming"))

    config = make_config(temp_dir / "site-root")
    store = SqliteRelationalStore(config.site.database_path)
    seed_site(config, store)
    store.close()
    return config


@pytest.fixture
def app(config):
    return create_app(config=config)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        # Steps are driven explicitly through the continue endpoint
        app.state.export_pipeline.continuation = None
        app.state.import_pipeline.continuation = None
        yield client


def drive(client, kind, run_id, rounds=40):
    """Post continue requests until the run halts or finishes."""
    for _ in range(rounds):
        status = client.get(f"{PREFIX}/migrations/{run_id}/status").json()["status"]
        if status["type"] in ("done", "error") or (status["type"] == "info" and status["data"]):
            return status
        response = client.post(f"{PREFIX}/migrations/{kind}/continue", json={"run_id": run_id})
        assert response.status_code == 202
    return client.get(f"{PREFIX}/migrations/{run_id}/status").json()["status"]


def export_archive(client):
    response = client.post(f"{PREFIX}/migrations/export", json={})
    assert response.status_code == 200
    run_id = response.json()["run_id"]

    status = drive(client, "export", run_id)
    assert status["type"] == "done"

    download = client.get(f"{PREFIX}/migrations/{run_id}/download")
    assert download.status_code == 200
    return download.content


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == settings.api_title


def test_health(client):
    response = client.get(f"{PREFIX}/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["storage"] is True
    assert data["redis"] is None

    assert client.get(f"{PREFIX}/health/ready").json() == {"status": "ready"}
    assert client.get(f"{PREFIX}/health/live").json() == {"status": "alive"}


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "secret")

    assert client.get(f"{PREFIX}/lock").status_code == 401
    assert client.get(f"{PREFIX}/lock", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.get(f"{PREFIX}/lock", headers={"X-API-Key": "secret"}).status_code == 200
    # Health probes stay open
    assert client.get(f"{PREFIX}/health/live").status_code == 200


def test_export_and_download(client):
    archive = export_archive(client)

    assert archive[:2] == b"PK"
    history = client.get(f"{PREFIX}/history").json()
    assert history[0]["type"] == "export"
    assert history[0]["status"] == "success"
    assert client.get(f"{PREFIX}/lock").json()["locked"] is False


def test_unknown_run(client):
    assert client.get(f"{PREFIX}/migrations/missing/status").status_code == 404
    assert client.get(f"{PREFIX}/migrations/missing/download").status_code == 404
    assert client.post(f"{PREFIX}/migrations/missing/confirm", json={}).status_code == 404


def test_unknown_pipeline_kind(client):
    response = client.post(f"{PREFIX}/migrations/backup/continue", json={"run_id": "abc"})
    assert response.status_code == 404


def test_export_conflicts_with_held_lock(client, config):
    job_lock = create_job_lock(config.lock)
    asyncio.run(job_lock.acquire("import"))

    response = client.post(f"{PREFIX}/migrations/export", json={})

    assert response.status_code == 409
    lock = client.get(f"{PREFIX}/lock").json()
    assert lock["locked"] is True
    assert lock["lock"]["context"] == "import"

    assert client.delete(f"{PREFIX}/lock").json() == {"locked": False, "lock": None}
    assert client.post(f"{PREFIX}/migrations/export", json={}).status_code == 200


def test_import_upload_waits_for_confirmation(client):
    archive = export_archive(client)

    response = client.post(
        f"{PREFIX}/migrations/import/upload",
        files={"file": ("site.wpbkp", archive, "application/octet-stream")},
        data={"confirmed": "false"},
    )
    assert response.status_code == 200
    run_id = response.json()["run_id"]

    status = drive(client, "import", run_id)
    assert status["type"] == "info"
    assert status["data"]["archive"] == "site.wpbkp"
    assert status["data"]["type"] == "full-site"

    response = client.post(f"{PREFIX}/migrations/{run_id}/confirm", json={"confirmed": True})
    assert response.status_code == 200
    assert response.json()["requires_confirmation"] is False

    status = drive(client, "import", run_id)
    assert status["type"] == "done"
    assert status["data"]["users"] == 1

    snapshots = client.get(f"{PREFIX}/snapshots").json()
    assert len(snapshots) == 1
    snapshot_id = snapshots[0]["id"]
    assert client.get(f"{PREFIX}/snapshots/{snapshot_id}").json()["id"] == snapshot_id

    types = [entry["type"] for entry in client.get(f"{PREFIX}/history", params={"limit": 5}).json()]
    assert types[:2] == ["import", "export"]


def test_declined_import_is_cancelled(client):
    archive = export_archive(client)
    response = client.post(
        f"{PREFIX}/migrations/import/upload",
        files={"file": ("site.wpbkp", archive, "application/octet-stream")},
    )
    run_id = response.json()["run_id"]
    drive(client, "import", run_id)

    client.post(f"{PREFIX}/migrations/{run_id}/confirm", json={"confirmed": False})

    history = client.get(f"{PREFIX}/history").json()
    assert history[0]["status"] == "cancelled"
    assert client.get(f"{PREFIX}/lock").json()["locked"] is False


def test_import_requires_chunk_job(client):
    assert client.post(f"{PREFIX}/migrations/import", json={}).status_code == 400


def test_chunked_upload_then_import(client):
    archive = export_archive(client)
    checksum = hashlib.sha256(archive).hexdigest()
    total = math.ceil(len(archive) / 1024)

    response = client.post(
        f"{PREFIX}/chunks/upload",
        json={"total_chunks": total, "checksum": checksum, "chunk_size": 1024},
    )
    assert response.status_code == 200
    job_id = response.json()["job_id"]
    assert response.json()["chunk_size"] == 1024

    for index in range(total):
        chunk = base64.b64encode(archive[index * 1024:(index + 1) * 1024]).decode("ascii")
        result = client.post(f"{PREFIX}/chunks/upload/{job_id}", json={"index": index, "chunk": chunk}).json()
    assert result["completed"] is True
    assert client.get(f"{PREFIX}/chunks/{job_id}").json()["status"] == "ready"

    response = client.post(
        f"{PREFIX}/migrations/import",
        json={"chunk_job_id": job_id, "archive": "site.wpbkp", "confirmed": True, "skip_snapshot": True},
    )
    assert response.status_code == 200

    status = drive(client, "import", response.json()["run_id"])
    assert status["type"] == "done"
    assert client.get(f"{PREFIX}/chunks/{job_id}").status_code == 404
    assert client.get(f"{PREFIX}/snapshots").json() == []


def test_chunk_upload_rejects_bad_checksum_format(client):
    response = client.post(f"{PREFIX}/chunks/upload", json={"total_chunks": 1, "checksum": "xyz"})
    assert response.status_code == 422


def test_chunked_download(client):
    response = client.post(f"{PREFIX}/chunks/download")
    assert response.status_code == 200
    job_id = response.json()["job_id"]

    first = client.get(f"{PREFIX}/chunks/download/{job_id}/0").json()
    total = first["total_chunks"]
    data = base64.b64decode(first["chunk"])
    for index in range(1, total):
        data += base64.b64decode(client.get(f"{PREFIX}/chunks/download/{job_id}/{index}").json()["chunk"])

    assert len(data) == first["size"]
    assert data[:2] == b"PK"
    # The job is removed after its final chunk
    assert client.get(f"{PREFIX}/chunks/download/{job_id}/0").status_code == 410


def test_cancelled_download_is_gone(client):
    job_id = client.post(f"{PREFIX}/chunks/download").json()["job_id"]

    assert client.delete(f"{PREFIX}/chunks/{job_id}").json() == {"deleted": True}
    assert client.get(f"{PREFIX}/chunks/download/{job_id}/0").status_code == 410


def test_snapshot_endpoints(client):
    response = client.post(f"{PREFIX}/snapshots", json={"label": "before upgrade"})
    assert response.status_code == 200
    snapshot_id = response.json()["id"]
    assert response.json()["label"] == "before upgrade"

    assert [s["id"] for s in client.get(f"{PREFIX}/snapshots").json()] == [snapshot_id]

    assert client.delete(f"{PREFIX}/snapshots/{snapshot_id}").status_code == 200
    assert client.get(f"{PREFIX}/snapshots/{snapshot_id}").status_code == 404
    assert client.delete(f"{PREFIX}/snapshots/{snapshot_id}").status_code == 404
