"""
Pytest configuration and shared fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from navmenu.database import Base, get_db
from navmenu.models import menu, content, user  # noqa: F401
from navmenu.models.menu import MenuNode
from navmenu.models.user import AdminUser
from navmenu.security.auth import get_password_hash, create_access_token
from navmenu.security.rate_limit import public_rate_limiter
from navmenu.services.resource_resolver import (
    DEFAULT_RESOURCE_CONFIG, ResourceRegistry, get_resource_registry,
)
from navmenu.services.tree_store import TreeStore
from navmenu.main import app


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database engine"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def registry():
    return ResourceRegistry.from_config(DEFAULT_RESOURCE_CONFIG)


@pytest.fixture(scope="function")
def client(db_session, registry):
    """Test client bound to the in-memory session"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_resource_registry] = lambda: registry
    public_rate_limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    public_rate_limiter.reset()


# ============== Auth fixtures ==============

@pytest.fixture
def admin_user(db_session):
    admin = AdminUser(
        username="admin",
        password_hash=get_password_hash("secret123"),
        name="Administrator",
        is_active=True
    )
    db_session.add(admin)
    db_session.commit()
    db_session.refresh(admin)
    return admin


@pytest.fixture
def admin_token(admin_user):
    return create_access_token(admin_user.id)


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


# ============== Tree fixtures ==============

@pytest.fixture
def store(db_session):
    return TreeStore(db_session)


@pytest.fixture
def make_menu(store):
    """Factory: commit a new menu root"""
    def _make(slug: str = "main", max_depth: int = 2, name: str = None) -> MenuNode:
        root = store.create_root(MenuNode(name=name or slug.title(), slug=slug, max_depth=max_depth))
        store.db.commit()
        return root
    return _make


@pytest.fixture
def make_item(store):
    """Factory: commit a new item under ``parent``"""
    def _make(parent: MenuNode, name: str, position: int = None, **fields) -> MenuNode:
        fields.setdefault("is_active", True)
        node = store.insert(MenuNode(name=name, **fields), parent.id, position)
        store.db.commit()
        return node
    return _make


@pytest.fixture
def snapshot(db_session):
    """(id, parent_id, position, lft, rgt) of every node, for before/after comparisons"""
    def _snapshot():
        db_session.expire_all()
        return sorted(
            (n.id, n.parent_id, n.position, n.lft, n.rgt) for n in db_session.query(MenuNode).all()
        )
    return _snapshot
