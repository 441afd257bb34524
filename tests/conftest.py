import os
import uuid
from datetime import UTC, datetime

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

load_dotenv(os.path.join(os.getcwd(), ".env"))
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from fieldops.db import Base  # noqa: E402
from fieldops.models import (  # noqa: E402
    AssignmentRole,
    AssignmentState,
    ServiceOrder,
    ServiceOrderAssignment,
    ServiceOrderResolution,
    ServiceOrderStatus,
    User,
    UserRole,
)
from fieldops.services.service_orders import lifecycle  # noqa: E402
from fieldops.services.service_orders.context import ActorContext  # noqa: E402

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def frozen_now(monkeypatch):
    monkeypatch.setattr(lifecycle, "_now", lambda: NOW)
    return NOW


@pytest.fixture()
def tenant_id():
    return uuid.uuid4()


def _make_user(db_session, tenant_id, name: str, role: UserRole, is_active: bool = True) -> User:
    user = User(
        tenant_id=tenant_id,
        name=name,
        email=f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com",
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def admin_user(db_session, tenant_id):
    return _make_user(db_session, tenant_id, "Ada", UserRole.admin)


@pytest.fixture()
def supervisor_user(db_session, tenant_id):
    return _make_user(db_session, tenant_id, "Sam", UserRole.supervisor)


@pytest.fixture()
def tech_user(db_session, tenant_id):
    return _make_user(db_session, tenant_id, "Tomas", UserRole.tech)


@pytest.fixture()
def other_tech_user(db_session, tenant_id):
    return _make_user(db_session, tenant_id, "Uma", UserRole.tech)


@pytest.fixture()
def viewer_user(db_session, tenant_id):
    return _make_user(db_session, tenant_id, "Vic", UserRole.viewer)


def _ctx(user: User) -> ActorContext:
    return ActorContext(tenant_id=user.tenant_id, user_id=user.id, role=user.role)


@pytest.fixture()
def admin_ctx(admin_user):
    return _ctx(admin_user)


@pytest.fixture()
def supervisor_ctx(supervisor_user):
    return _ctx(supervisor_user)


@pytest.fixture()
def tech_ctx(tech_user):
    return _ctx(tech_user)


@pytest.fixture()
def other_tech_ctx(other_tech_user):
    return _ctx(other_tech_user)


@pytest.fixture()
def viewer_ctx(viewer_user):
    return _ctx(viewer_user)


@pytest.fixture()
def make_order(db_session, tenant_id):
    """Insert a service order directly, optionally with an active technician."""

    def _make(
        title: str = "Replace compressor",
        status: ServiceOrderStatus = ServiceOrderStatus.open,
        technician: User | None = None,
        **fields,
    ) -> ServiceOrder:
        order = ServiceOrder(tenant_id=tenant_id, title=title, status=status, **fields)
        db_session.add(order)
        db_session.flush()
        if technician is not None:
            db_session.add(
                ServiceOrderAssignment(
                    tenant_id=tenant_id,
                    service_order_id=order.id,
                    user_id=technician.id,
                    role=AssignmentRole.technician,
                    state=AssignmentState.active,
                    assigned_at=NOW,
                )
            )
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture()
def resolve_order(db_session):
    """Attach a resolution with both cause and remedy."""

    def _resolve(order: ServiceOrder) -> ServiceOrderResolution:
        resolution = ServiceOrderResolution(
            tenant_id=order.tenant_id,
            service_order_id=order.id,
            cause_code="worn_bearing",
            remedy_code="replaced_part",
        )
        db_session.add(resolution)
        db_session.commit()
        return resolution

    return _resolve
