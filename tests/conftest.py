"""
Shared test fixtures for the batch engine.

Provides:
- db_session: In-memory SQLite session with all tables created
- encryption: EncryptionService with a freshly generated Fernet key
- manager / outsider: caller identities with and without a manager role
- token_validator: token issuer/checker with a test secret
- artifact_store: LocalArtifactStore rooted in a pytest tmp dir
- make_submissions: factory inserting submission rows
- client: FastAPI TestClient with DB and export dependencies overridden
"""

import os

# Force sqlite and test secrets before any src import reads settings.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["API_KEY"] = ""
os.environ["ENCRYPTION_KEY"] = ""

import json
from datetime import datetime, timedelta

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.encryption import EncryptionService
from src.core.security import Identity, SecurityTokenValidator
from src.entities.base import Base
from src.entities.submission import Submission
from src.services.artifact_store import LocalArtifactStore

# Import ALL entity modules so Base.metadata.create_all() registers them.
import src.entities.appointment  # noqa: F401
import src.entities.export_job  # noqa: F401
import src.entities.submission  # noqa: F401


@pytest.fixture
def db_session():
    """In-memory SQLite for unit tests. Never hits production DB."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def encryption():
    return EncryptionService(Fernet.generate_key().decode(), hash_salt="test-salt")


@pytest.fixture
def manager():
    return Identity(user_id=1, roles=frozenset({"administrator"}))


@pytest.fixture
def other_manager():
    return Identity(user_id=2, roles=frozenset({"administrator"}))


@pytest.fixture
def outsider():
    return Identity(user_id=3, roles=frozenset({"subscriber"}))


@pytest.fixture
def token_validator():
    return SecurityTokenValidator(secret_key="test-secret-key")


@pytest.fixture
def artifact_store(tmp_path):
    return LocalArtifactStore(tmp_path / "exports")


@pytest.fixture
def make_submissions(db_session: Session):
    """Insert ``count`` submissions and return them in insertion (id) order."""

    def _make(count: int, form_id: int = 1, status: str = "publish", data: dict | None = None, **columns):
        base_date = datetime(2026, 1, 1, 12, 0, 0)
        rows = []
        for i in range(count):
            payload = data if data is not None else {"full_name": f"Person {i}", "course": "Python"}
            rows.append(
                Submission(
                    form_id=form_id,
                    status=status,
                    submission_date=base_date + timedelta(minutes=i),
                    data=json.dumps(payload),
                    **columns,
                )
            )
        db_session.add_all(rows)
        db_session.commit()
        return rows

    return _make


@pytest.fixture
def client(db_session: Session, token_validator, artifact_store):
    """FastAPI TestClient with DB dependency overridden to use in-memory SQLite."""
    from fastapi.testclient import TestClient
    from src.core.database import get_db
    from src.main import app
    from src.core.security import get_token_validator
    from src.routers.exports import get_export_service
    from src.services.csv_export_service import CsvExportService

    def _override_get_db():
        yield db_session

    def _override_export_service():
        return CsvExportService(
            db_session,
            artifact_store=artifact_store,
            token_validator=token_validator,
        )

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_token_validator] = lambda: token_validator
    app.dependency_overrides[get_export_service] = _override_export_service
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()
