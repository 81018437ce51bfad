"""
SQLite 持久化

- DATABASE_URL 默认落在包目录下的 formpilot.db，可用 FORMPILOT_DATABASE_URL 覆盖
- get_session()：正常退出 commit，异常 rollback 后上抛
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

DATABASE_URL = os.getenv(
    "FORMPILOT_DATABASE_URL",
    f"sqlite:///{Path(__file__).resolve().parent.parent / 'formpilot.db'}",
)


class Base(DeclarativeBase):
    pass


engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})

# 运行记录在调度线程与 API 之间传递，离开 Session 后仍需读取属性
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    from ..models import application_run, run_log  # noqa: F401  注册表结构

    Base.metadata.create_all(bind=engine)


@contextmanager
def get_session():
    with SessionLocal() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
