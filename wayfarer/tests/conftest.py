import sys
from pathlib import Path

import os

import pytest
import sqlalchemy as sa
from flask_jwt_extended import create_access_token
from sqlalchemy.orm import scoped_session, sessionmaker
from alembic import command
from alembic.config import Config as AlembicConfig

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wayfarer import create_app
from wayfarer.extensions import db
from wayfarer.core.auth import models as auth_models
from wayfarer.core.users import models as user_models
from wayfarer.core.events import event_models
from wayfarer.domains.rewards import guards as reward_guards
from wayfarer.domains.rewards import models as reward_models
from wayfarer.wayfarer_platform.outbox import models as outbox_models
from wayfarer.core.auth.models import Role
from wayfarer.core.users.models import User


# ==================== Pytest Markers ====================
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")
    config.addinivalue_line("markers", "slow: Slow running tests")


def _alembic_config() -> AlembicConfig:
    cfg = AlembicConfig(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "wayfarer" / "migrations"))
    cfg.set_main_option("wayfarer_env", "testing")
    db_url = os.environ.get("TEST_DATABASE_URL") or os.environ.get("DATABASE_URL")
    if not db_url:
        db_url = "sqlite:///instance/test.db"
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


@pytest.fixture(scope="session", autouse=True)
def migrated_db():
    """Apply migrations once per session to mirror production schema."""
    cfg = _alembic_config()
    command.upgrade(cfg, "head")
    yield
    try:
        command.downgrade(cfg, "base")
    except Exception:
        # Downgrade is optional for local/CI runs; ignore failures to avoid hiding test results.
        pass


@pytest.fixture()
def app(migrated_db):
    """
    Create a per-test app with an isolated database transaction.

    Each test runs in its own transaction + savepoint so committed data rolls
    back afterwards. Code paths that call ``session.rollback()`` (claim
    conflicts, guard violations) use ``isolated_engine`` instead, since a
    rollback here would end the outer transaction.
    """
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()

    if db.engine.dialect.name == "sqlite":
        # pysqlite defers BEGIN, so SAVEPOINT/RELEASE would commit for real;
        # let SQLAlchemy emit BEGIN itself (documented pysqlite recipe).
        @sa.event.listens_for(db.engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @sa.event.listens_for(db.engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

        db.engine.dispose()

    connection = db.engine.connect()
    transaction = connection.begin()

    session_factory = scoped_session(sessionmaker(bind=connection))
    db.session = session_factory
    session = session_factory()
    session.begin_nested()

    @sa.event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess, trans):
        if trans.nested and not trans._parent.nested:
            sess.begin_nested()

    try:
        # Seed a default user for FK-dependent tests
        if not session.query(User).filter_by(email="test@example.com").first():
            session.add(User(email="test@example.com", password_hash="test"))
            session.commit()
        # Seed a default admin role so require_roles can find it
        if not session.query(Role).filter_by(name="admin").first():
            session.add(Role(name="admin", description="admin role for tests"))
            session.commit()

        yield app
    finally:
        sa.event.remove(session, "after_transaction_end", restart_savepoint)
        session_factory.remove()
        transaction.rollback()
        connection.close()
        ctx.pop()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    """Factory for persisted accounts; ledger fields keep their defaults."""
    counter = {"n": 0}

    def _make(email: str | None = None, **fields) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"traveller{counter['n']}@example.com",
            password_hash=fields.pop("password_hash", "test"),
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers(app):
    """Bearer headers for a user; roles end up in the access token claims."""

    def _headers(user: User, roles: list[str] | None = None) -> dict[str, str]:
        token = create_access_token(identity=str(user.id), additional_claims={"roles": roles or []})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def isolated_engine(tmp_path):
    """Private file-backed SQLite database for tests that need real rollbacks or threads."""
    engine = sa.create_engine(
        f"sqlite:///{tmp_path / 'wayfarer-isolated.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    db.metadata.create_all(engine)
    yield engine
    engine.dispose()
