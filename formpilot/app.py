"""
formpilot 控制面（FastAPI）

- 登记申请链接、查看运行记录与日志
- 启停后台调度器
- 释放为人工审核保留的浏览器
"""

from contextlib import asynccontextmanager
from html import unescape
import re

import httpx

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db.database import init_db, get_session
from .models.application_run import ApplicationRun, RunStatus
from .models.run_log import RunLog
from .core.applier import has_open_session, request_browser_close
from .core.scheduler import scheduler
from .platforms import detect_platform_from_url, list_platforms


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    scheduler.stop()


app = FastAPI(title="formpilot", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_TITLE_TAG_RE = re.compile(r"<title[^>]*>(?P<text>.*?)</title>", re.IGNORECASE | re.DOTALL)
_META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r'([a-zA-Z:-]+)\s*=\s*["\'](.*?)["\']', re.DOTALL)


def _squash(raw: str | None) -> str | None:
    text = " ".join(unescape(raw or "").split())
    return text or None


def _meta_value(html: str, *keys: str) -> str | None:
    """按 keys 顺序返回第一个 <meta property|name=key content=...> 的内容。"""
    metas = {}
    for tag in _META_TAG_RE.findall(html):
        attrs = {k.lower(): v for k, v in _ATTR_RE.findall(tag)}
        name = (attrs.get("property") or attrs.get("name") or "").lower()
        if name and "content" in attrs:
            metas.setdefault(name, attrs["content"])
    for key in keys:
        value = _squash(metas.get(key.lower()))
        if value:
            return value
    return None


def _posting_meta(link: str) -> tuple[str | None, str | None]:
    """尽力从职位页读取 (title, company)；任何网络错误都返回 (None, None)。"""
    try:
        resp = httpx.get(link, timeout=8.0, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError:
        return None, None

    html = resp.text or ""
    title = _meta_value(html, "og:title", "twitter:title")
    if not title:
        m = _TITLE_TAG_RE.search(html)
        title = _squash(m.group("text")) if m else None
    return title, _meta_value(html, "og:site_name", "application-name")


@app.get("/api/runs")
def list_runs(status: RunStatus | None = None):
    with get_session() as session:
        query = session.query(ApplicationRun)
        if status is not None:
            query = query.filter(ApplicationRun.status == status)
        runs = query.order_by(ApplicationRun.create_time.desc()).all()
        return [run.to_dict() for run in runs]


@app.post("/api/runs")
def add_run(payload: dict):
    """
    登记一条待执行的申请链接（link 必填，title/company 缺省时尝试从页面抓取）。
    """
    link = (payload.get("link") or "").strip()
    if not link:
        return {"ok": False, "error": "link is required"}

    title = (payload.get("title") or "").strip()
    company = (payload.get("company") or "").strip()
    if not title or not company:
        fetched_title, fetched_company = _posting_meta(link)
        title = title or fetched_title or ""
        company = company or fetched_company or ""

    run = ApplicationRun(
        link=link,
        title=title or None,
        company=company or None,
        platform=detect_platform_from_url(link).platform_id,
        status=RunStatus.PENDING,
    )
    with get_session() as session:
        session.add(run)
        session.flush()
        session.refresh(run)
        return {"ok": True, "run": run.to_dict()}


@app.get("/api/runs/{run_id}")
def get_run(run_id: int):
    with get_session() as session:
        run = session.get(ApplicationRun, run_id)
        if not run:
            return {"ok": False, "error": f"Run {run_id} not found"}
        data = run.to_dict()
    data["browser_open"] = has_open_session(run_id)
    return {"ok": True, "run": data}


@app.get("/api/runs/{run_id}/logs")
def get_run_logs(run_id: int):
    with get_session() as session:
        logs = (
            session.query(RunLog)
            .filter(RunLog.run_id == run_id)
            .order_by(RunLog.create_time.asc(), RunLog.id.asc())
            .all()
        )
        return [log.to_dict() for log in logs]


@app.delete("/api/runs/{run_id}")
def delete_run(run_id: int):
    """
    删除单条运行记录及其日志；正在执行的运行不能删除。
    """
    if scheduler.current_run_id == run_id:
        return {"ok": False, "error": f"Run {run_id} is in progress"}
    with get_session() as session:
        session.query(RunLog).filter(RunLog.run_id == run_id).delete()
        deleted = session.query(ApplicationRun).filter(ApplicationRun.id == run_id).delete()
    if deleted:
        return {"ok": True, "message": f"Run {run_id} deleted"}
    return {"ok": False, "error": f"Run {run_id} not found"}


@app.post("/api/runs/{run_id}/browser/close")
def close_run_browser(run_id: int):
    """释放为审核 / 人工接管保留的浏览器（由调度线程实际关闭）。"""
    if not request_browser_close(run_id):
        return {"ok": False, "error": f"Run {run_id} has no open browser"}
    return {"ok": True, "message": "close requested"}


@app.post("/api/control/start")
def start_runs():
    scheduler.start()
    return {"ok": True, "message": "scheduler started"}


@app.post("/api/control/pause")
def pause_runs():
    scheduler.stop()
    return {"ok": True, "message": "paused"}


@app.get("/api/control/status")
def scheduler_status():
    with get_session() as session:
        pending = (
            session.query(ApplicationRun)
            .filter(ApplicationRun.status == RunStatus.PENDING)
            .count()
        )
    return {
        "ok": True,
        "running": scheduler.is_running,
        "current_run_id": scheduler.current_run_id,
        "pending": pending,
    }


@app.get("/api/platforms")
def get_platforms():
    return {"ok": True, "platforms": list_platforms()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("formpilot.app:app", host="127.0.0.1", port=8000, reload=True)
