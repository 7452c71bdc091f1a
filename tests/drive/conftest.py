"""服务层测试夹具：独立的 SQLite 会话与临时本地 Blob 存储。"""

from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.packages.drive.models.base import Base
from app.packages.drive.models.user import User
from app.packages.drive.services.blob_store import LocalBlobStore
from app.packages.drive.services.namespace_service import NamespaceService
from app.packages.drive.services.trash_service import TrashService


@pytest.fixture()
def svc_db(tmp_path) -> Generator[Session, None, None]:
    engine = create_engine(f"sqlite:///{tmp_path / 'drive.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture()
def trash(blob_store) -> TrashService:
    return TrashService(blob_store=blob_store)


@pytest.fixture()
def namespace(blob_store, trash) -> NamespaceService:
    return NamespaceService(blob_store=blob_store, lifecycle=trash)


@pytest.fixture()
def owner(svc_db) -> User:
    """配额 1000 字节的用户，便于覆盖配额边界。"""
    user = User(
        username="alice",
        email="alice@example.com",
        hashed_password="not-used",
        quota=1000,
        used_space=0,
    )
    svc_db.add(user)
    svc_db.commit()
    svc_db.refresh(user)
    return user
