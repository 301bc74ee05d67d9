from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from billtrack import models
from billtrack.config import settings
from billtrack.database import get_db
from billtrack.main import app


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "export_dir", tmp_path)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def billing_setup(client: TestClient) -> Dict[str, Any]:
    """Customer with one contract-backed project (two tasks) and one unbilled project."""
    customer = client.post(
        "/customers",
        json={"name": "Acme GmbH", "address": "Hauptstr. 1", "daily_rate": 640, "currency": "EUR"},
    ).json()
    contract = client.post(
        f"/customers/{customer['id']}/contracts",
        json={
            "name": "Framework 2024",
            "start_date": "2024-01-01",
            "end_date": "2024-12-31",
            "daily_rate": 800,
            "currency": "EUR",
        },
    ).json()
    billed = client.post(
        "/projects",
        json={"customer_id": customer["id"], "contract_id": contract["id"], "name": "Portal"},
    ).json()
    unbilled = client.post("/projects", json={"customer_id": customer["id"], "name": "Support"}).json()
    task_one = client.post("/tasks", json={"project_id": billed["id"], "name": "Login"}).json()
    task_two = client.post("/tasks", json={"project_id": billed["id"], "name": "Search"}).json()
    task_three = client.post("/tasks", json={"project_id": unbilled["id"], "name": "Hotline"}).json()
    return {
        "customer": customer,
        "contract": contract,
        "billed_project": billed,
        "unbilled_project": unbilled,
        "tasks": [task_one, task_two, task_three],
    }
