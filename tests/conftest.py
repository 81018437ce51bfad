from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


@pytest.fixture()
def isolated_db(monkeypatch, tmp_path):
    """
    Point every module that talks to SQLite at a throwaway database file.

    Returns the session factory so tests can seed and inspect rows.
    """
    from formpilot import app as app_module
    from formpilot.core import applier as applier_module
    from formpilot.core import scheduler as scheduler_module
    from formpilot.db import database as db_module

    engine = create_engine(
        f"sqlite:///{tmp_path / 'runs.db'}", connect_args={"check_same_thread": False}
    )
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @contextmanager
    def scoped_session():
        with factory() as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    monkeypatch.setattr(db_module, "engine", engine)
    monkeypatch.setattr(db_module, "SessionLocal", factory)
    # modules that bound the names at import time
    for module in (db_module, app_module, scheduler_module):
        monkeypatch.setattr(module, "get_session", scoped_session)
    monkeypatch.setattr(applier_module, "SessionLocal", factory)

    db_module.init_db()
    return factory
