import os
from io import BytesIO

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pandas as pd
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from audit_core.app.db import Base, create_db_and_tables
from audit_core.app.deps import get_db
from audit_core.app.main import app
from audit_core.app import models

HEADERS = [
    "Item", "Description", "Pref. Vendor", "On Hand", "Physical Count",
    "Count Variance", "Bin Numbers", "Serial/Lot Numbers", "Asset ID", "Notes",
    "Current On Hand Value", "Current Value Variance",
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def audit(db):
    audit = models.Audit(name="Main warehouse")
    db.add(audit)
    db.commit()
    db.refresh(audit)
    return audit


def make_item(db, audit_id, **values):
    from audit_core.app.services import build_item

    item = build_item(audit_id, values)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def sheet_bytes(rows, headers=None):
    """Build an .xlsx upload from a list of header->value dicts."""
    headers = headers or HEADERS
    df = pd.DataFrame(rows, columns=headers)
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Sheet1")
    return output.getvalue()
