from __future__ import annotations

from fastapi.testclient import TestClient

import formpilot.app as app_module
from formpilot.app import app
from formpilot.models.application_run import ApplicationRun, RunStatus
from formpilot.models.run_log import RunLog


def test_create_run_detects_platform_and_fetches_meta(isolated_db, monkeypatch):
    monkeypatch.setattr(
        app_module, "_posting_meta", lambda link: ("Data Engineer", "Acme")
    )
    with TestClient(app) as client:
        resp = client.post(
            "/api/runs", json={"link": "https://acme.wd5.myworkdayjobs.com/en-US/jobs/123"}
        )
    body = resp.json()
    assert body["ok"] is True
    assert body["run"]["platform"] == "workday"
    assert body["run"]["title"] == "Data Engineer"
    assert body["run"]["company"] == "Acme"
    assert body["run"]["status"] == "pending"


def test_create_run_keeps_given_title_and_company(isolated_db, monkeypatch):
    def fail_fetch(link):
        raise AssertionError("should not fetch")

    monkeypatch.setattr(app_module, "_posting_meta", fail_fetch)
    with TestClient(app) as client:
        body = client.post(
            "/api/runs",
            json={"link": "https://jobs.example.com/1", "title": "SRE", "company": "Initech"},
        ).json()
    assert body["run"]["platform"] == "generic"
    assert body["run"]["title"] == "SRE"


def test_create_run_requires_link(isolated_db):
    with TestClient(app) as client:
        body = client.post("/api/runs", json={"link": "  "}).json()
    assert body == {"ok": False, "error": "link is required"}


def test_list_runs_filters_by_status(isolated_db):
    with isolated_db() as session:
        session.add_all(
            [
                ApplicationRun(link="https://example.com/1", status=RunStatus.PENDING),
                ApplicationRun(link="https://example.com/2", status=RunStatus.FAILED),
                ApplicationRun(link="https://example.com/3", status=RunStatus.AWAITING_REVIEW),
            ]
        )
        session.commit()

    with TestClient(app) as client:
        all_rows = client.get("/api/runs").json()
        failed = client.get("/api/runs", params={"status": "failed"}).json()
    assert len(all_rows) == 3
    assert [r["link"] for r in failed] == ["https://example.com/2"]


def test_get_run_and_logs(isolated_db):
    with isolated_db() as session:
        run = ApplicationRun(link="https://example.com/1", status=RunStatus.AWAITING_REVIEW)
        session.add(run)
        session.commit()
        session.refresh(run)
        run_id = run.id
        session.add_all(
            [
                RunLog(run_id=run_id, level="info", message="第 1 页: personal_info"),
                RunLog(run_id=run_id, level="warn", message="⚠ 校验错误"),
            ]
        )
        session.commit()

    with TestClient(app) as client:
        detail = client.get(f"/api/runs/{run_id}").json()
        logs = client.get(f"/api/runs/{run_id}/logs").json()
        missing = client.get("/api/runs/999").json()

    assert detail["ok"] is True
    assert detail["run"]["status"] == "awaiting_review"
    assert detail["run"]["browser_open"] is False
    assert [log["level"] for log in logs] == ["info", "warn"]
    assert missing == {"ok": False, "error": "Run 999 not found"}


def test_delete_run_removes_logs(isolated_db):
    with isolated_db() as session:
        run = ApplicationRun(link="https://example.com/1", status=RunStatus.FAILED)
        session.add(run)
        session.commit()
        session.refresh(run)
        run_id = run.id
        session.add(RunLog(run_id=run_id, level="error", message="❌ 页面加载超时"))
        session.commit()

    with TestClient(app) as client:
        assert client.delete(f"/api/runs/{run_id}").json()["ok"] is True
        assert client.delete(f"/api/runs/{run_id}").json()["ok"] is False

    with isolated_db() as session:
        assert session.query(RunLog).count() == 0
        assert session.query(ApplicationRun).count() == 0


def test_delete_refuses_run_in_progress(isolated_db, monkeypatch):
    with isolated_db() as session:
        run = ApplicationRun(link="https://example.com/1", status=RunStatus.IN_PROGRESS)
        session.add(run)
        session.commit()
        session.refresh(run)
        run_id = run.id

    monkeypatch.setattr(app_module.scheduler, "current_run_id", run_id)
    with TestClient(app) as client:
        body = client.delete(f"/api/runs/{run_id}").json()
    assert body["ok"] is False
    assert "in progress" in body["error"]


def test_close_browser_for_unknown_run(isolated_db):
    with TestClient(app) as client:
        body = client.post("/api/runs/42/browser/close").json()
    assert body == {"ok": False, "error": "Run 42 has no open browser"}


def test_control_status_counts_pending(isolated_db):
    with isolated_db() as session:
        session.add_all(
            [
                ApplicationRun(link="https://example.com/1", status=RunStatus.PENDING),
                ApplicationRun(link="https://example.com/2", status=RunStatus.PENDING),
                ApplicationRun(link="https://example.com/3", status=RunStatus.FAILED),
            ]
        )
        session.commit()

    with TestClient(app) as client:
        body = client.get("/api/control/status").json()
    assert body["ok"] is True
    assert body["pending"] == 2
    assert body["current_run_id"] is None


def test_list_platforms(isolated_db):
    with TestClient(app) as client:
        body = client.get("/api/platforms").json()
    ids = {p["platform_id"] for p in body["platforms"]}
    assert {"generic", "workday", "amazon"} <= ids


def test_meta_value():
    html = '<head><meta property="og:title" content="Senior  Engineer &amp; Lead"></head>'
    assert app_module._meta_value(html, "og:title") == "Senior Engineer & Lead"
    assert app_module._meta_value(html, "og:site_name") is None
