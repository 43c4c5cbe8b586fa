from backend.app.config import Settings
from backend.app.modules.metadata.service import ArchiveMetadataStore
from backend.app.modules.security import auth as auth_module
from backend.app.schemas.tables import S3Location, TableRef, TableSnapshot


ARCHIVE_BODY = {
    "db": {"schema_name": "s", "table_name": "t"},
    "s3": {"bucket": "bucket", "prefix": "archive/t/", "access_key_id": "AKIAUSER", "secret_access_key": "top-secret"},
    "unload": {"gzip": True},
    "email": "owner@example.com",
}


def test_health(client) -> None:
    assert client.get("/health/live").json() == {"status": "ok"}
    assert client.get("/health/ready").json() == {"status": "ready"}


def test_enqueue_archive_and_inspect_job(client) -> None:
    response = client.post("/api/v1/archives", json=ARCHIVE_BODY, headers={"x-requested-by": "alice"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["data"]["job_type"] == "table_archive"
    assert body["data"]["status"] == "pending"

    job_response = client.get(f"/api/v1/jobs/{body['data']['job_id']}")
    assert job_response.status_code == 200
    job = job_response.json()["data"]
    assert job["table"] == "s.t"
    assert job["requested_by"] == "alice"
    assert "top-secret" not in job_response.text
    assert "AKIAUSER" not in job_response.text


def test_enqueue_restore_uses_copy_options(client) -> None:
    body = dict(ARCHIVE_BODY, copy={"removequotes": True, "null_as": "NULL"})
    body.pop("unload")

    response = client.post("/api/v1/restores", json=body)

    assert response.status_code == 200
    assert response.json()["data"]["job_type"] == "table_restore"


def test_enqueue_rejects_empty_inputs(client) -> None:
    body = dict(ARCHIVE_BODY, s3=dict(ARCHIVE_BODY["s3"], bucket=""))

    response = client.post("/api/v1/archives", json=body)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["message"] == "Empty bucket name!"


def test_unknown_job_is_not_found(client) -> None:
    response = client.get("/api/v1/jobs/999")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_list_and_get_archives(client, db) -> None:
    store = ArchiveMetadataStore(db)
    store.upsert(TableRef("s", "t"), S3Location("bucket", "archive/t/"), TableSnapshot(size_in_mb=7, sort_keys=["id"]))
    store.upsert(TableRef("other", "u"), S3Location("bucket", "archive/u/"), TableSnapshot())

    listed = client.get("/api/v1/archives", params={"schema_name": "s"}).json()["data"]["items"]
    assert [(item["schema_name"], item["table_name"]) for item in listed] == [("s", "t")]

    record = client.get("/api/v1/archives/s/t").json()["data"]
    assert record["archive_prefix"] == "archive/t/"
    assert record["size_in_mb"] == 7
    assert record["sort_keys"] == ["id"]

    missing = client.get("/api/v1/archives/s/missing")
    assert missing.status_code == 404


def test_auth_token_required_when_enabled(client, monkeypatch) -> None:
    monkeypatch.setattr(auth_module, "settings", Settings(auth_enabled=True, auth_token="token-1"))

    assert client.get("/api/v1/archives").status_code == 401
    assert client.get("/api/v1/archives", headers={"authorization": "Bearer wrong"}).status_code == 403
    ok = client.get("/api/v1/archives", headers={"authorization": "Bearer token-1"})
    assert ok.status_code == 200
    assert ok.json()["error"] is None
