def test_health_endpoints_need_no_auth(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json == {"ok": True}

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_returns_json_error(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert "error" in r.json
