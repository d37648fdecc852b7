from fastapi.testclient import TestClient

from creditledger.main import app


def test_health():
    with TestClient(app) as c:
        r = c.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}


def test_request_id_is_echoed():
    with TestClient(app) as c:
        r = c.get("/health", headers={"X-Request-ID": "req-123"})
        assert r.headers["X-Request-ID"] == "req-123"
