import pytest


@pytest.mark.django_db
def test_health_reports_db_and_cache(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}, "cache": {"ok": True}}}


@pytest.mark.django_db
def test_health_degraded_when_cache_fails(client, monkeypatch):
    monkeypatch.setattr("apps.monitoring.api._check_cache", lambda: False)
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["components"]["cache"]["ok"] is False
