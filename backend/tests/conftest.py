import os
import sys
from typing import Generator

import pytest

# 将 backend 目录添加到 sys.path 中，便于按项目方式导入
backend_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# 在导入项目模块前设置测试环境，避免创建数据库文件或连接 Redis
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_REDIS_CHANGE_FEED"] = "false"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from microlearning.core.change_feed import ChangeFeed
from microlearning.db.base_class import Base
from microlearning.db.database import enable_sqlite_foreign_keys, get_db
from microlearning.main import app
from microlearning.services.training_service import TrainingService
from microlearning.services.training_store import SqlTrainingItemStore
import microlearning.models  # noqa: F401


def _memory_engine(foreign_keys: bool = True):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    if foreign_keys:
        enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def engine():
    """内存数据库（打开外键约束，支持级联删除）"""
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def engine_without_cascade():
    """内存数据库（不打开外键约束，删除子树需要在应用层完成）"""
    engine = _memory_engine(foreign_keys=False)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def change_feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture(scope="function")
def store(db, change_feed) -> SqlTrainingItemStore:
    return SqlTrainingItemStore(db, change_feed=change_feed)


@pytest.fixture(scope="function")
def service(store) -> TrainingService:
    return TrainingService(store)


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    """创建测试客户端，数据库依赖指向内存数据库"""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
