"""Shared fixtures for the tenantguard test suite."""

from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tenantguard.multitenancy import clear_current_tenant, set_tenant_fallback

from tenancy_models import Account, Base


@pytest.fixture(autouse=True)
def reset_tenant():
    """Start and end every test without a tenant or fallback."""
    clear_current_tenant()
    yield
    clear_current_tenant()
    set_tenant_fallback(None)


@pytest.fixture
def engine():
    """In-memory SQLite engine with every test table created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def accounts(session):
    """Three tenants: A, B and C."""
    a, b, c = Account(name="A"), Account(name="B"), Account(name="C")
    session.add_all([a, b, c])
    session.commit()
    return a, b, c
