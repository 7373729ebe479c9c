"""Pytest configuration and fixtures."""

import pytest
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockcount.core.rbac import UserRole
from stockcount.core.security import create_access_token
from stockcount.db.base import Base
from stockcount.db.session import configure_sqlite, get_db
from stockcount.main import app
# Import all models to ensure they're registered with Base.metadata
from stockcount.models import *
from stockcount.models.container import ContainerInstance, ContainerType
from stockcount.models.inventory_item import CountingWorkflow, InventoryItem
from stockcount.models.location import Location

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

TENANT_ID = 1
OTHER_TENANT_ID = 2
USER_ID = 7


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from stockcount.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    yield TestClient(app, raise_server_exceptions=False)
    global_limiter.enabled = True
    app.dependency_overrides.clear()


def make_token(user_id: int = USER_ID, tenant_id: int = TENANT_ID, role: UserRole = UserRole.MANAGER) -> str:
    return create_access_token(
        data={
            "sub": str(user_id),
            "tenant_id": tenant_id,
            "email": f"user{user_id}@example.com",
            "role": role.value,
        }
    )


@pytest.fixture
def auth_headers() -> dict:
    """Manager of the primary tenant."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def staff_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(user_id=8, role=UserRole.STAFF)}"}


@pytest.fixture
def other_tenant_headers() -> dict:
    return {"Authorization": f"Bearer {make_token(user_id=9, tenant_id=OTHER_TENANT_ID)}"}


@pytest.fixture
def test_location(db_session: Session) -> Location:
    """Create a test location."""
    location = Location(tenant_id=TENANT_ID, name="Main Bar", description="Main bar location")
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def other_tenant_location(db_session: Session) -> Location:
    location = Location(tenant_id=OTHER_TENANT_ID, name="Main Bar")
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def test_items(db_session: Session) -> dict:
    """One active item per counting workflow, plus an inactive one."""
    items = {
        "beer": InventoryItem(
            tenant_id=TENANT_ID, name="Test Beer", barcode="1234567890123",
            unit="pcs", pack_size=24, counting_workflow=CountingWorkflow.UNIT_COUNT,
        ),
        "flour": InventoryItem(
            tenant_id=TENANT_ID, name="Flour", barcode="2000000000017", unit="kg",
            counting_workflow=CountingWorkflow.CONTAINER_WEIGHT, requires_container=True,
            supports_partial_units=True,
        ),
        "wine": InventoryItem(
            tenant_id=TENANT_ID, name="House Red", barcode="3000000000014", unit="bottles",
            counting_workflow=CountingWorkflow.BOTTLE_HYBRID, supports_partial_units=True,
            bottle_volume_ml=750, full_bottle_weight_grams=1500.0, empty_bottle_weight_grams=500.0,
        ),
        "keg": InventoryItem(
            tenant_id=TENANT_ID, name="Lager Keg", barcode="4000000000011", unit="L",
            counting_workflow=CountingWorkflow.KEG_WEIGHT, keg_volume_liters=50.0,
            empty_keg_weight_grams=13300.0, keg_freshness_days=14,
        ),
        "soup": InventoryItem(
            tenant_id=TENANT_ID, name="Tomato Soup", barcode="5000000000018", unit="kg",
            counting_workflow=CountingWorkflow.BATCH_WEIGHT, is_batch_tracked=True,
            batch_use_by_days=3,
        ),
        "retired": InventoryItem(
            tenant_id=TENANT_ID, name="Retired Cider", barcode="6000000000015",
            unit="pcs", is_active=False,
        ),
    }
    db_session.add_all(items.values())
    db_session.commit()
    for item in items.values():
        db_session.refresh(item)
    return items


@pytest.fixture
def other_tenant_item(db_session: Session) -> InventoryItem:
    item = InventoryItem(tenant_id=OTHER_TENANT_ID, name="Foreign Beer", barcode="1234567890123", unit="pcs")
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def test_container(db_session: Session) -> ContainerInstance:
    """4L container with a registered tare of 250 g."""
    container_type = ContainerType(
        tenant_id=TENANT_ID, name="4L Cambro", tare_weight_grams=240.0, max_capacity_ml=4000.0,
    )
    db_session.add(container_type)
    db_session.flush()
    container = ContainerInstance(
        tenant_id=TENANT_ID, container_barcode="CTR-0001",
        container_type_id=container_type.id, tare_weight_grams=250.0,
    )
    db_session.add(container)
    db_session.commit()
    db_session.refresh(container)
    return container
