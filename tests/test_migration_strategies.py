"""
Tests for the split and encryption migration strategies.
"""

import json
from datetime import datetime

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.encryption import EncryptionService
from src.core.errors import PreconditionFailedError
from src.entities.appointment import Appointment
from src.entities.submission import Submission
from src.repositories.legacy_identifier_repo import LegacyIdentifierRepository
from src.services.migrations.registry import MigrationDefinition
from src.services.migrations.strategies.cpf_rf_split import CpfRfSplitStrategy, classify_identifier
from src.services.migrations.strategies.encryption import EncryptionStrategy

SPLIT = MigrationDefinition(key="split_cpf_rf", name="Split", description="", batch_size=3)
ENCRYPT = MigrationDefinition(key="encrypt_sensitive_data", name="Encrypt", description="", batch_size=3)


def _legacy_submission(encryption, identifier, form_id=1):
    return Submission(
        form_id=form_id,
        submission_date=datetime(2026, 1, 1),
        cpf_rf_encrypted=encryption.encrypt(identifier),
        cpf_rf_hash=encryption.hash(identifier),
    )


def _legacy_appointment(encryption, identifier):
    return Appointment(
        calendar_id=1,
        appointment_date=datetime(2026, 1, 1),
        cpf_rf_encrypted=encryption.encrypt(identifier),
        cpf_rf_hash=encryption.hash(identifier),
    )


def _run_until_done(strategy, definition, limit=50):
    """Poll ``execute`` like a client would; return every result."""
    results = []
    for batch_number in range(limit):
        result = strategy.execute(definition.key, definition, batch_number)
        results.append(result)
        if not result.has_more:
            return results
    pytest.fail("migration did not finish")


class TestClassifyIdentifier:
    @pytest.mark.parametrize(
        "digits,target",
        [("12345678901", "cpf"), ("1234567", "rf"), ("123", "cpf"), ("", "cpf")],
    )
    def test_classify(self, digits, target):
        assert classify_identifier(digits) == target


class TestCpfRfSplitStrategy:
    @pytest.fixture
    def strategy(self, db_session, encryption):
        return CpfRfSplitStrategy(db_session, encryption=encryption)

    def test_status_counts_both_tables(self, strategy, db_session, encryption):
        db_session.add_all(
            [
                _legacy_submission(encryption, "12345678901"),
                Submission(form_id=1, submission_date=datetime(2026, 1, 1)),
                _legacy_appointment(encryption, "1234567"),
            ]
        )
        db_session.commit()

        status = strategy.calculate_status(SPLIT.key, SPLIT)

        assert status.total == 3
        assert status.pending == 2
        assert status.migrated == 1
        assert status.percent == pytest.approx(33.33)
        assert status.is_complete is False

    def test_empty_dataset_is_complete(self, strategy):
        status = strategy.calculate_status(SPLIT.key, SPLIT)

        assert status.total == 0
        assert status.percent == 100.0
        assert status.is_complete is True

    def test_moves_values_into_split_columns(self, strategy, db_session, encryption):
        cpf_row = _legacy_submission(encryption, "12345678901")
        rf_row = _legacy_appointment(encryption, "1234567")
        db_session.add_all([cpf_row, rf_row])
        db_session.commit()
        cpf_encrypted = cpf_row.cpf_rf_encrypted
        rf_hash = rf_row.cpf_rf_hash

        result = strategy.execute(SPLIT.key, SPLIT)

        db_session.refresh(cpf_row)
        db_session.refresh(rf_row)
        assert result.success is True
        assert result.processed == 2
        assert result.has_more is False
        assert cpf_row.cpf_encrypted == cpf_encrypted
        assert cpf_row.rf_hash is None
        assert cpf_row.cpf_rf is None and cpf_row.cpf_rf_hash is None and cpf_row.cpf_rf_encrypted is None
        assert rf_row.rf_hash == rf_hash
        assert rf_row.cpf_hash is None

    def test_plain_legacy_value_is_classified(self, strategy, db_session, encryption):
        row = Submission(
            form_id=1,
            submission_date=datetime(2026, 1, 1),
            cpf_rf="123.4567",
            cpf_rf_encrypted=encryption.encrypt("1234567"),
            cpf_rf_hash=encryption.hash("1234567"),
        )
        db_session.add(row)
        db_session.commit()

        strategy.execute(SPLIT.key, SPLIT)

        db_session.refresh(row)
        assert row.rf_hash == encryption.hash("1234567")

    def test_pending_decreases_monotonically_to_zero(self, strategy, db_session, encryption):
        db_session.add_all([_legacy_submission(encryption, "12345678901") for _ in range(7)])
        db_session.add_all([_legacy_appointment(encryption, "1234567") for _ in range(4)])
        db_session.commit()

        pendings = [strategy.calculate_status(SPLIT.key, SPLIT).pending]
        for batch_number in range(10):
            result = strategy.execute(SPLIT.key, SPLIT, batch_number)
            assert result.processed <= SPLIT.batch_size
            pendings.append(strategy.calculate_status(SPLIT.key, SPLIT).pending)
            if not result.has_more:
                break

        assert pendings == [11, 8, 5, 2, 0]

    def test_failing_row_is_reported_and_loop_terminates(self, strategy, db_session, encryption, monkeypatch):
        rows = [_legacy_submission(encryption, "12345678901") for _ in range(4)]
        db_session.add_all(rows)
        db_session.commit()
        bad_id = rows[1].id
        original = LegacyIdentifierRepository.apply_split

        def apply_split(self, row, target):
            if row.id == bad_id:
                raise ValueError("corrupt identifier")
            return original(self, row, target)

        monkeypatch.setattr(LegacyIdentifierRepository, "apply_split", apply_split)
        definition = MigrationDefinition(key="split_cpf_rf", name="Split", description="", batch_size=10)

        first = strategy.execute(definition.key, definition)
        second = strategy.execute(definition.key, definition)

        assert first.processed == 3
        assert first.success is False
        assert len(first.errors) == 1
        assert f"ID {bad_id} in submissions" in first.errors[0]
        assert second.processed == 0
        assert second.success is False
        assert second.has_more is False

    def test_unreadable_identifier_is_reported_and_left_pending(self, strategy, db_session):
        other_key = EncryptionService(Fernet.generate_key().decode())
        unreadable = Submission(
            form_id=1,
            submission_date=datetime(2026, 1, 1),
            cpf_rf_encrypted=other_key.encrypt("1234567"),
            cpf_rf_hash="h",
        )
        db_session.add(unreadable)
        db_session.commit()

        result = strategy.execute(SPLIT.key, SPLIT)

        db_session.refresh(unreadable)
        assert result.success is False
        assert result.processed == 0
        assert result.has_more is False
        assert f"ID {unreadable.id} in submissions" in result.errors[0]
        assert unreadable.cpf_rf_hash == "h"
        assert unreadable.cpf_hash is None and unreadable.rf_hash is None
        assert strategy.calculate_status(SPLIT.key, SPLIT).pending == 1

    def test_can_run_requires_encryption(self, db_session, monkeypatch):
        monkeypatch.setattr(
            "src.services.migrations.strategies.cpf_rf_split.get_encryption_service", lambda: None
        )
        strategy = CpfRfSplitStrategy(db_session)

        result = strategy.can_run(SPLIT.key, SPLIT)

        assert not result.ok
        assert isinstance(result.error, PreconditionFailedError)
        assert result.error.reason == "encryption_not_configured"

    def test_can_run_ok(self, strategy):
        result = strategy.can_run(SPLIT.key, SPLIT)
        assert result.ok
        assert result.value is True


class TestCpfRfSplitOnLegacySchema:
    """Databases that predate the split columns or the appointments table."""

    @pytest.fixture
    def legacy_session(self):
        engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE submissions (id INTEGER PRIMARY KEY, cpf_rf_hash VARCHAR(64))"))
            conn.execute(text("INSERT INTO submissions (cpf_rf_hash) VALUES ('a'), ('b'), ('')"))
        session = sessionmaker(bind=engine)()
        yield session
        session.close()
        engine.dispose()

    def test_missing_split_columns_block_run(self, legacy_session, encryption):
        strategy = CpfRfSplitStrategy(legacy_session, encryption=encryption)

        result = strategy.can_run(SPLIT.key, SPLIT)

        assert result.error.reason == "split_columns_missing"
        assert "cpf_hash" in result.error.message

    def test_missing_table_counts_as_empty(self, legacy_session, encryption):
        strategy = CpfRfSplitStrategy(legacy_session, encryption=encryption)

        status = strategy.calculate_status(SPLIT.key, SPLIT)

        assert status.total == 3
        assert status.pending == 2


class TestEncryptionStrategy:
    @pytest.fixture
    def strategy(self, db_session, encryption):
        return EncryptionStrategy(db_session, encryption=encryption)

    def _plain(self, email="ana@example.com", cpf_rf=None, data=None):
        return Submission(
            form_id=1,
            submission_date=datetime(2026, 1, 1),
            email=email,
            user_ip="10.0.0.1",
            cpf_rf=cpf_rf,
            data=json.dumps(data or {"full_name": "Ana"}),
        )

    def test_encrypts_and_clears_plaintext(self, strategy, db_session, encryption):
        row = self._plain(cpf_rf="123.456.789-01")
        db_session.add(row)
        db_session.commit()

        result = strategy.execute(ENCRYPT.key, ENCRYPT)

        db_session.refresh(row)
        assert result.success is True
        assert result.processed == 1
        assert result.has_more is False
        assert row.email is None and row.user_ip is None and row.data is None and row.cpf_rf is None
        assert encryption.decrypt(row.email_encrypted) == "ana@example.com"
        assert row.email_hash == encryption.hash("ana@example.com")
        assert encryption.decrypt(row.user_ip_encrypted) == "10.0.0.1"
        assert json.loads(encryption.decrypt(row.data_encrypted)) == {"full_name": "Ana"}
        assert encryption.decrypt(row.cpf_encrypted) == "12345678901"
        assert row.cpf_hash == encryption.hash("12345678901")
        assert row.rf_hash is None
        assert row.cpf_rf_hash is None

    def test_rf_identifier_goes_to_rf_columns(self, strategy, db_session, encryption):
        row = self._plain(cpf_rf="1234567")
        db_session.add(row)
        db_session.commit()

        strategy.execute(ENCRYPT.key, ENCRYPT)

        db_session.refresh(row)
        assert row.rf_hash == encryption.hash("1234567")
        assert row.cpf_hash is None

    def test_status_and_completion(self, strategy, db_session):
        db_session.add_all([self._plain(email=f"user{i}@example.com") for i in range(7)])
        db_session.add(Submission(form_id=1, submission_date=datetime(2026, 1, 1), email=None))
        db_session.commit()

        assert strategy.calculate_status(ENCRYPT.key, ENCRYPT).pending == 7

        results = _run_until_done(strategy, ENCRYPT)

        assert [r.processed for r in results] == [3, 3, 1]
        assert [r.has_more for r in results] == [True, True, False]
        status = strategy.calculate_status(ENCRYPT.key, ENCRYPT)
        assert status.total == 8
        assert status.is_complete is True

    def test_can_run_without_key(self, db_session, monkeypatch):
        monkeypatch.setattr(
            "src.services.migrations.strategies.encryption.get_encryption_service", lambda: None
        )
        strategy = EncryptionStrategy(db_session)

        result = strategy.can_run(ENCRYPT.key, ENCRYPT)

        assert result.error.reason == "encryption_not_configured"
