import pytest

from app import create_app


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json()["status"] == "ok"
    assert client.get("/healthz").status_code == 200


@pytest.mark.db
def test_readyz(client):
    assert client.get("/readyz").get_json() == {"status": "ok"}


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert "error" in r.get_json()


def test_production_requires_secrets(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("FLASK_SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError):
        create_app()
    monkeypatch.setenv("FLASK_SECRET_KEY", "x" * 32)
    monkeypatch.delenv("PAYMENT_WEBHOOK_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        create_app()


def test_metrics_endpoint_when_enabled(monkeypatch):
    monkeypatch.setenv("METRICS_ENABLED", "1")
    app = create_app({"TESTING": True})
    try:
        r = app.test_client().get("/metrics")
        assert r.status_code == 200
        assert b"payments_webhook_events_total" in r.data
    finally:
        app.extensions["notifier"].shutdown()
