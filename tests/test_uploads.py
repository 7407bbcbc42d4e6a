import io
from pathlib import Path


def test_request_with_attachment_round_trip(client, make_request, login, app):
    req = make_request(files=(io.BytesIO(b"%PDF-1.4 policy"), "policy.pdf"))
    detail = client.get(f"/api/customer/requests/detail?requestId={req['id']}").json["request"]
    [att] = detail["attachments"]
    assert att["fileName"] == "policy.pdf"
    assert att["fileSize"] == len(b"%PDF-1.4 policy")
    assert (Path(app.config["STORAGE_LOCAL_ROOT"]) / att["filePath"]).exists()

    r = client.get(f"/api/uploads/download?requestId={req['id']}&fileName=policy.pdf")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 policy"
    assert "attachment" in r.headers["Content-Disposition"]
    assert "policy.pdf" in r.headers["Content-Disposition"]


def test_download_errors(client, make_request, login):
    req = make_request(files=(io.BytesIO(b"abc"), "notes.txt"))
    assert client.get("/api/uploads/download?requestId=1").status_code == 400
    r = client.get(f"/api/uploads/download?requestId={req['id']}&fileName=missing.txt")
    assert r.status_code == 404
    assert r.json["error"] == "File not found"

    login("other_customer")
    r = client.get(f"/api/uploads/download?requestId={req['id']}&fileName=notes.txt")
    assert r.status_code == 404


def test_missing_blob_is_not_accessible(client, make_request, app):
    req = make_request(files=(io.BytesIO(b"abc"), "notes.txt"))
    detail = client.get(f"/api/customer/requests/detail?requestId={req['id']}").json["request"]
    (Path(app.config["STORAGE_LOCAL_ROOT"]) / detail["attachments"][0]["filePath"]).unlink()

    r = client.get(f"/api/uploads/download?requestId={req['id']}&fileName=notes.txt")
    assert r.status_code == 404
    assert r.json["error"] == "File not accessible"


def test_delete_attachment(client, make_request, login, app):
    req = make_request(files=(io.BytesIO(b"abc"), "notes.txt"))
    att = client.get(f"/api/customer/requests/detail?requestId={req['id']}").json["request"]["attachments"][0]

    assert client.delete("/api/uploads/delete").status_code == 400

    login("other_customer")
    assert client.delete(f"/api/uploads/delete?attachmentId={att['id']}").status_code == 404

    login("agent")
    r = client.delete(f"/api/uploads/delete?attachmentId={att['id']}")
    assert r.status_code == 200
    assert r.json == {"success": True}
    assert not (Path(app.config["STORAGE_LOCAL_ROOT"]) / att["filePath"]).exists()
    detail = client.get(f"/api/agent/requests/detail?requestId={req['id']}").json["request"]
    assert detail["attachments"] == []


def test_upload_endpoint_requires_files(client, make_request):
    req = make_request()
    r = client.post(f"/api/customer/requests/{req['id']}/upload", data={})
    assert r.status_code == 400
    assert r.json["error"] == "No files provided"

    r = client.post(
        f"/api/customer/requests/{req['id']}/upload",
        data={"files": [(io.BytesIO(b"one"), "a.txt"), (io.BytesIO(b"two"), "b.txt")]},
    )
    assert r.status_code == 201
    assert sorted(a["fileName"] for a in r.json["attachments"]) == ["a.txt", "b.txt"]

    activities = client.get(f"/api/customer/requests/{req['id']}/activity").json["activities"]
    assert sum(1 for a in activities if a["type"] == "attachment_uploaded") == 2


def test_oversized_upload_is_rejected(client, make_request, app):
    req = make_request()
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024
    r = client.post(
        f"/api/customer/requests/{req['id']}/upload",
        data={"files": (io.BytesIO(b"x" * (2 * 1024 * 1024)), "big.bin")},
    )
    assert r.status_code == 413
    assert r.json["error"] == "File too large. Maximum size is 1MB."


def _upload_two(client, req_id):
    return client.post(
        f"/api/customer/requests/{req_id}/upload",
        data={"files": [(io.BytesIO(b"one"), "a.pdf"), (io.BytesIO(b"two"), "b.pdf")]},
    )


def test_failed_file_is_skipped_and_batch_continues(client, make_request, monkeypatch):
    from app.servicequeue.storage import LocalStorage, StorageError

    req = make_request()
    original = LocalStorage.put_bytes

    def flaky(self, key, data, *, content_type=None):
        if key.endswith("_a.pdf"):
            raise StorageError("disk unavailable")
        return original(self, key, data, content_type=content_type)

    monkeypatch.setattr(LocalStorage, "put_bytes", flaky)
    r = _upload_two(client, req["id"])
    assert r.status_code == 201
    assert [a["fileName"] for a in r.json["attachments"]] == ["b.pdf"]

    detail = client.get(f"/api/customer/requests/detail?requestId={req['id']}").json["request"]
    assert [a["fileName"] for a in detail["attachments"]] == ["b.pdf"]


def test_timed_out_file_is_skipped(client, make_request, monkeypatch, app):
    import time

    from app.servicequeue.storage import LocalStorage

    req = make_request()
    app.config["UPLOAD_TIMEOUT_SECONDS"] = 0.2
    original = LocalStorage.put_bytes

    def slow(self, key, data, *, content_type=None):
        if key.endswith("_a.pdf"):
            time.sleep(1)
            return None
        return original(self, key, data, content_type=content_type)

    monkeypatch.setattr(LocalStorage, "put_bytes", slow)
    r = _upload_two(client, req["id"])
    assert r.status_code == 201
    assert [a["fileName"] for a in r.json["attachments"]] == ["b.pdf"]
