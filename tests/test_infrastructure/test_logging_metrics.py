"""
Test infrastructure components: logging, metrics, retry.

Metric assertions read deltas from the default Prometheus registry since
counters are process-global and other tests increment them too.
"""

import sqlite3

import pytest
from prometheus_client import REGISTRY

from medequip.kernel.errors import AccessDenied, InvalidInput
from medequip.kernel.logging import (
    REDACTED,
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from medequip.kernel.retry import retry_on_sqlite_lock
from medequip.marketplace import Marketplace
from tests.helpers import World, accepted_request


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestLoggingFramework:
    """Structured logging setup and helpers."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        assert get_correlation_id()

        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"

    def test_redaction_hides_personal_and_financial_fields(self) -> None:
        context = {
            "email": "owner@choray.vn",
            "actor_id": "u-1",
            "amount": "1500000",
            "quote_id": "q-1",
        }

        redacted = redact_context(context)

        assert redacted == {
            "email": REDACTED,
            "actor_id": REDACTED,
            "amount": REDACTED,
            "quote_id": "q-1",
        }

    def test_log_operation_success(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        logger = get_logger(__name__)

        with LogOperation(logger, "test_operation", quote_id="q-1") as op:
            pass

        assert op.start_time > 0

    def test_log_operation_propagates_errors(self) -> None:
        logger = get_logger(__name__)

        with pytest.raises(AccessDenied):
            with LogOperation(logger, "rejected_operation", actor_id="u-1"):
                raise AccessDenied()

        with pytest.raises(ValueError):
            with LogOperation(logger, "failed_operation"):
                raise ValueError("boom")


class TestMetrics:
    """Prometheus counters driven by marketplace commands."""

    def test_command_outcomes_are_counted(self, marketplace: Marketplace) -> None:
        labels = {"command_type": "register_user", "status": "success"}
        before = _sample("medequip_commands_processed_total", labels)

        marketplace.register_user("metrics@medequip.vn")

        assert _sample("medequip_commands_processed_total", labels) == before + 1

    def test_failed_commands_are_counted(self, marketplace: Marketplace, world: World) -> None:
        labels = {"command_type": "create_organization", "status": "failure"}
        before = _sample("medequip_commands_processed_total", labels)

        with pytest.raises(InvalidInput):
            marketplace.create_organization(world.hospital_owner, "Phòng khám", "pharmacy")

        # Invalid input fails before the command runs
        assert _sample("medequip_commands_processed_total", labels) == before

    def test_events_appended_are_counted(self, marketplace: Marketplace) -> None:
        labels = {"stream_type": "User", "event_type": "UserRegistered"}
        before = _sample("medequip_events_appended_total", labels)

        marketplace.register_user("counted@medequip.vn")

        assert _sample("medequip_events_appended_total", labels) == before + 1

    def test_workflow_transitions_and_quote_outcomes(
        self, marketplace: Marketplace, world: World
    ) -> None:
        transition = {"from_status": "quoted", "to_status": "accepted"}
        transitions_before = _sample("medequip_service_request_transitions_total", transition)
        accepted_before = _sample("medequip_quote_outcomes_total", {"status": "accepted"})

        accepted_request(marketplace, world)

        assert (
            _sample("medequip_service_request_transitions_total", transition)
            == transitions_before + 1
        )
        assert _sample("medequip_quote_outcomes_total", {"status": "accepted"}) == (
            accepted_before + 1
        )

    def test_guard_denials_are_counted(self, marketplace: Marketplace, world: World) -> None:
        labels = {"kind": "FORBIDDEN"}
        before = _sample("medequip_authorization_denials_total", labels)

        with pytest.raises(AccessDenied):
            marketplace.list_members(world.other_hospital_owner, world.hospital_id)

        assert _sample("medequip_authorization_denials_total", labels) == before + 1

    def test_bottleneck_gauge_follows_health(self, marketplace: Marketplace) -> None:
        marketplace.health()

        assert _sample("medequip_bottleneck_requests") == 0


class TestRetryLogic:
    """Retry on SQLite lock contention."""

    def test_retry_succeeds_after_lock(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3

    def test_retry_gives_up_and_reraises(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=2, min_wait_ms=1, max_wait_ms=2)
        def always_locked() -> None:
            attempts.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            always_locked()
        assert len(attempts) == 2

    def test_other_errors_are_not_retried(self) -> None:
        attempts = []

        @retry_on_sqlite_lock(max_attempts=5, min_wait_ms=1, max_wait_ms=2)
        def broken() -> None:
            attempts.append(1)
            raise sqlite3.IntegrityError("UNIQUE constraint failed")

        with pytest.raises(sqlite3.IntegrityError):
            broken()
        assert len(attempts) == 1
