import pytest

from shortlink import main
from shortlink.config import Settings
from shortlink.errors import StoreUnavailableError
from shortlink.main import app
from shortlink.security import require_admin


def create(client, path, target="https://example.com", **extra):
    return client.post("/api/mappings", json={"path": path, "target": target, **extra})


def test_health(client):
    res = client.get("/health")

    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_create_and_redirect(client):
    res = create(client, "gh", "https://github.com", name="GitHub")

    assert res.status_code == 200
    body = res.json()
    assert body["path"] == "gh"
    assert body["isWechat"] is False
    assert "createdAt" in body

    redirect = client.get("/gh", follow_redirects=False)
    assert redirect.status_code == 302
    assert redirect.headers["location"] == "https://github.com"


def test_create_errors_map_to_client_statuses(client):
    create(client, "dup")

    assert create(client, "dup").status_code == 409
    assert create(client, "login").status_code == 400
    assert create(client, "wx", isWechat=True).status_code == 400
    assert create(client, "when", expiry="not a date").status_code == 400
    assert create(client, "x" * 256).status_code == 400


def test_list_is_paginated_with_camel_case_keys(client):
    for path in ("one", "two", "three"):
        create(client, path)

    body = client.get("/api/mappings", params={"page": 1, "pageSize": 2}).json()

    assert body["total"] == 3
    assert body["pageSize"] == 2
    assert body["totalPages"] == 2
    assert [r["path"] for r in body["records"]] == ["three", "two"]


def test_rename_via_put(client):
    create(client, "old", imageUrl="https://cdn.example/a.png")

    res = client.put(
        "/api/mappings",
        json={"originalPath": "old", "newPath": "new", "target": "https://example.com/new"},
    )

    assert res.status_code == 200
    assert res.json()["imageUrl"] == "https://cdn.example/a.png"
    assert client.get("/old", follow_redirects=False).status_code == 404
    assert client.get("/new", follow_redirects=False).headers["location"] == "https://example.com/new"


def test_put_unknown_original_is_404(client):
    res = client.put("/api/mappings", json={"originalPath": "ghost", "newPath": "ghost", "target": "https://x.y"})

    assert res.status_code == 404


def test_delete_with_body(client):
    create(client, "bye")

    assert client.request("DELETE", "/api/mappings", json={"path": "bye"}).status_code == 200
    assert client.request("DELETE", "/api/mappings", json={"path": "bye"}).status_code == 200
    assert client.request("DELETE", "/api/mappings", json={"path": "admin"}).status_code == 400
    assert client.get("/bye", follow_redirects=False).status_code == 404


def test_expired_link_is_gone(client):
    create(client, "promo", expiry="2000-01-01T00:00:00Z")

    assert client.get("/promo", follow_redirects=False).status_code == 410


def test_wechat_mapping_renders_qr_page(client):
    create(client, "wx", "https://wx.example", isWechat=True, qrCodeData="weixin://qr/<abc>", imageAlt="group")

    res = client.get("/wx", follow_redirects=False)

    assert res.status_code == 200
    assert "text/html" in res.headers["content-type"]
    assert "weixin://qr/&lt;abc&gt;" in res.text


def test_store_outage_on_redirect_degrades_to_404(client, monkeypatch):
    def unavailable(db, path, now=None):
        raise StoreUnavailableError("down")

    monkeypatch.setattr("shortlink.main.resolve", unavailable)

    assert client.get("/anything", follow_redirects=False).status_code == 404


def test_expiring_and_cleanup(client):
    create(client, "stale", expiry="2000-01-01T00:00:00Z")
    create(client, "fresh")

    report = client.get("/api/expiring").json()
    assert [m["path"] for m in report["expired"]] == ["stale"]
    assert report["expiring"] == []

    assert client.post("/api/cleanup").json() == {"deleted": 1}
    assert client.post("/api/cleanup").json() == {"deleted": 0}


def test_migrate_endpoint(client, legacy_source):
    legacy_source.entries = {
        "a": {"target": "https://a.example"},
        "broken": {"target": "https://b.example", "isWechat": True},
    }

    res = client.post("/api/migrate")

    assert res.json() == {"imported": 1, "skipped": 1, "interrupted": False}
    assert client.get("/a", follow_redirects=False).status_code == 302


def test_upload_image(client):
    res = client.post("/api/upload-image", files={"image": ("logo.png", b"hello", "image/png")})

    assert res.status_code == 200
    assert res.json() == {
        "base64": "aGVsbG8=",
        "dataUrl": "data:image/png;base64,aGVsbG8=",
        "fileName": "logo.png",
        "mimeType": "image/png",
    }


def test_upload_without_image(client):
    assert client.post("/api/upload-image").status_code == 400


class TestAdminGate:
    @pytest.fixture
    def gated(self, client, monkeypatch):
        app.dependency_overrides.pop(require_admin)
        monkeypatch.setattr("shortlink.security.settings", Settings(admin_password="s3cret"))
        return client

    def test_requires_cookie(self, gated):
        assert gated.get("/api/mappings").status_code == 401

    def test_wrong_password(self, gated):
        assert gated.post("/api/login", json={"password": "nope"}).status_code == 401

    def test_login_then_logout(self, gated):
        res = gated.post("/api/login", json={"password": "s3cret"})
        assert res.status_code == 200
        assert "httponly" in res.headers["set-cookie"].lower()

        assert gated.get("/api/mappings").status_code == 200

        res = gated.post("/api/logout")
        assert "samesite=lax" in res.headers["set-cookie"].lower()
        assert gated.get("/api/mappings").status_code == 401

    def test_closed_without_configured_password(self, client, monkeypatch):
        app.dependency_overrides.pop(require_admin)
        monkeypatch.setattr("shortlink.security.settings", Settings(admin_password=""))

        assert client.post("/api/login", json={"password": ""}).status_code == 401
        assert client.get("/api/mappings").status_code == 401


def test_run_serves_app_with_configured_address(monkeypatch):
    calls = []
    monkeypatch.setattr("shortlink.main.settings", Settings(host="127.0.0.1", port=9001, log_level="WARNING"))
    monkeypatch.setattr("shortlink.main.uvicorn.run", lambda *args, **kwargs: calls.append((args, kwargs)))

    main.run()

    assert calls == [(("shortlink.main:app",), {"host": "127.0.0.1", "port": 9001, "log_level": "warning"})]
