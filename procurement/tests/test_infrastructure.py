"""
Tests for settings, structured logging, the DB preflight and schema setup.
"""
import json
import logging
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError as SettingsError
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import OperationalError

from procurement.core.config import Settings
from procurement.core.errors import ConflictError, ProcurementError, ValidationError
from procurement.core.logging import StructuredFormatter, audit_logger
from procurement.db.preflight import describe_url, run_db_preflight
from procurement.db.session import Base, engine, ensure_schema, reset_schema_state

STRONG_KEY = "k" * 40


class TestSettings:

    def test_database_url_assembled_from_parts(self):
        s = Settings(
            _env_file=None, DEBUG=True, SECRET_KEY=STRONG_KEY, DATABASE_URL=None,
            POSTGRES_USER="buyer", POSTGRES_PASSWORD="pw", POSTGRES_HOST="db",
            POSTGRES_PORT="6543", POSTGRES_DB="sourcing",
        )
        assert s.DATABASE_URL == "postgresql://buyer:pw@db:6543/sourcing"

    def test_weak_secret_rejected_outside_debug(self):
        with pytest.raises(SettingsError):
            Settings(_env_file=None, DEBUG=False, SECRET_KEY="short", DATABASE_URL="sqlite://")

    def test_weak_secret_warns_in_debug(self):
        with pytest.warns(UserWarning):
            Settings(_env_file=None, DEBUG=True, SECRET_KEY="short", DATABASE_URL="sqlite://")

    def test_default_db_password_rejected_outside_debug(self):
        with pytest.raises(SettingsError):
            Settings(
                _env_file=None, DEBUG=False, SECRET_KEY=STRONG_KEY,
                DATABASE_URL=None, POSTGRES_PASSWORD="postgres",
            )

    @pytest.mark.parametrize("field,value", [
        ("PO_NUMBER_MAX_ATTEMPTS", 0),
        ("DEFAULT_CURRENCY", "dollars"),
        ("LOG_LEVEL", "chatty"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(SettingsError):
            Settings(_env_file=None, DEBUG=True, SECRET_KEY=STRONG_KEY,
                     DATABASE_URL="sqlite://", **{field: value})

    def test_currency_normalized(self):
        s = Settings(_env_file=None, DEBUG=True, SECRET_KEY=STRONG_KEY,
                     DATABASE_URL="sqlite://", DEFAULT_CURRENCY="eur")
        assert s.DEFAULT_CURRENCY == "EUR"


class TestErrorEnvelope:

    @pytest.mark.parametrize("error, status_code", [
        (ValidationError("Title is required"), 400),
        (ConflictError("Title is required"), 409),
        (ProcurementError("Title is required", status_code=422), 422),
    ])
    def test_to_dict(self, error, status_code):
        assert error.to_dict() == {"statusCode": status_code, "message": "Title is required"}


class TestStructuredLogging:

    def _record(self, message, **extra):
        record = logging.LogRecord("procurement.test", logging.INFO, __file__, 1, message, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_entry_with_context(self):
        entry = json.loads(StructuredFormatter().format(
            self._record("PO issued", po_number="PO-1", rfx_id=7)
        ))
        assert entry["message"] == "PO issued"
        assert entry["level"] == "INFO"
        assert entry["po_number"] == "PO-1"
        assert entry["rfx_id"] == 7

    def test_secrets_scrubbed_from_message(self):
        entry = json.loads(StructuredFormatter().format(
            self._record("login with token=abc123 failed")
        ))
        assert "abc123" not in entry["message"]
        assert "***REDACTED***" in entry["message"]

    def test_audit_record(self, caplog):
        caplog.set_level(logging.INFO, logger="procurement.audit")

        audit_logger.log(
            action="award_rfx_response",
            user_id=1,
            entity_type="rfx_event",
            entity_id=5,
            details={"po_number": "PO-9", "request_id": 100, "token": "abc"},
        )

        record = caplog.records[-1]
        assert record.getMessage() == "audit award_rfx_response rfx_event:5"
        assert record.po_number == "PO-9"
        assert record.request_id == 100
        assert record.details["token"] == "***REDACTED***"


class TestPreflight:

    def test_password_masked(self):
        described = describe_url("postgresql://buyer:hunter2@db:5432/sourcing")
        assert "hunter2" not in described
        assert "db:5432/sourcing" in described

    def test_passes_against_live_engine(self):
        assert run_db_preflight(retries=1, delay=0, bind=engine) is True

    def _failing_bind(self, reason):
        bind = MagicMock()
        bind.url = "postgresql://buyer:pw@db/sourcing"
        bind.connect.side_effect = OperationalError("SELECT 1", {}, Exception(reason))
        return bind

    def test_auth_failure_exits_immediately(self):
        bind = self._failing_bind("password authentication failed for user buyer")

        with pytest.raises(SystemExit):
            run_db_preflight(retries=5, delay=0, bind=bind)
        assert bind.connect.call_count == 1

    def test_gives_up_after_retries(self):
        bind = self._failing_bind("could not connect to server")

        with patch("procurement.db.preflight.time.sleep") as sleep:
            with pytest.raises(SystemExit):
                run_db_preflight(retries=3, delay=1, bind=bind)

        assert bind.connect.call_count == 3
        assert sleep.call_count == 2


class TestEnsureSchema:

    @pytest.fixture(autouse=True)
    def fresh_state(self):
        reset_schema_state()
        yield
        reset_schema_state()

    def test_creates_sourcing_tables(self):
        bind = create_engine("sqlite://")

        ensure_schema(bind)

        tables = set(inspect(bind).get_table_names())
        assert {"suppliers", "rfx_events", "rfx_responses", "purchase_orders", "requests"} <= tables

    def test_runs_once_per_process(self):
        bind = create_engine("sqlite://")
        ensure_schema(bind)

        with patch.object(Base.metadata, "create_all") as create_all:
            ensure_schema(bind)

        create_all.assert_not_called()
