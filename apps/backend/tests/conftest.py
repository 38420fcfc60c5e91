from __future__ import annotations

import os
import tempfile
from typing import Generator, Any

# 테스트 중에는 백그라운드 워커를 띄우지 않음 (app import 전에 설정)
os.environ.setdefault("EXPENSE_RECURRING_WORKER_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from expense_api.core.database import Base, get_db
from expense_api.main import app
from expense_api import models


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # 사용자 환경을 건드리지 않도록 임시 파일 SQLite 사용
    fd, path = tempfile.mkstemp(prefix="expense_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    # 간단 시드: demo user(1) + 프로필 + 기본 카테고리
    user = models.User(email="demo@example.com", is_active=True)
    session.add(user)
    session.flush()
    session.add(
        models.UserProfile(
            user_id=user.id,
            display_name="Demo",
            base_currency="VND",
            timezone="Asia/Ho_Chi_Minh",
        )
    )
    session.add_all(
        [
            models.Category(user_id=None, name="Housing", type=models.TxnType.EXPENSE),
            models.Category(user_id=None, name="Transport", type=models.TxnType.EXPENSE),
            models.Category(user_id=None, name="Salary", type=models.TxnType.INCOME),
        ]
    )
    session.commit()

    try:
        yield session
    finally:
        session.close()
        # 테이블 데이터 정리 (SQLAlchemy 2.x 스타일)
        with engine.begin() as conn:
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            if engine.dialect.name == "sqlite":
                conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def user(db_session) -> models.User:
    return db_session.query(models.User).order_by(models.User.id).first()


@pytest.fixture()
def category(db_session):
    """Return a lookup ``category("Housing") -> Category``."""

    def _get(name: str) -> models.Category:
        return db_session.query(models.Category).filter(models.Category.name == name).one()

    return _get


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    # FastAPI DI override
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
