"""
Test infrastructure components: logging, metrics, retry.

These tests verify the production hardening infrastructure works correctly.
"""

import sqlite3
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from fund_control import FundControl
from fund_control.kernel.errors import FundsUnavailable, StreamVersionConflict
from fund_control.kernel.logging import (
    LogOperation,
    configure_logging,
    get_correlation_id,
    get_logger,
    redact_context,
    set_correlation_id,
)
from fund_control.kernel.metrics import (
    approval_actions_total,
    commands_processed_total,
    events_appended_total,
    expenditures_posted_total,
    funds_unavailable_total,
    obligations_created_total,
    stream_version_conflicts_total,
)
from fund_control.kernel.retry import retry_on_sqlite_lock
from tests.helpers import create_approved_budget


class TestLoggingFramework:
    """Test structured logging framework."""

    def test_configure_logging_console(self) -> None:
        configure_logging(json_output=False, log_level="INFO")
        assert get_logger(__name__) is not None

    def test_configure_logging_json(self) -> None:
        configure_logging(json_output=True, log_level="DEBUG")
        assert get_logger(__name__) is not None

    def test_correlation_id(self) -> None:
        """Test correlation ID context management."""
        cid = get_correlation_id()
        assert len(cid) > 0
        assert get_correlation_id() == cid

        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"

    def test_redact_context(self) -> None:
        redacted = redact_context(
            {"approver_id": "alice", "amount": "60000.00", "operation": "process_approval"}
        )
        assert redacted == {
            "approver_id": "***REDACTED***",
            "amount": "***REDACTED***",
            "operation": "process_approval",
        }

    def test_log_operation_success(self) -> None:
        with capture_logs() as logs:
            logger = get_logger("test.success")
            with LogOperation(logger, "create_obligation", budget_id="b-1", vendor="Acme"):
                pass

        assert [entry["event"] for entry in logs] == [
            "create_obligation started",
            "create_obligation completed",
        ]
        assert logs[-1]["budget_id"] == "b-1"
        assert logs[-1]["vendor"] == "***REDACTED***"
        assert "duration_ms" in logs[-1]

    def test_log_operation_domain_rejection_is_a_warning(self) -> None:
        """Insufficient funds is an expected outcome, not a fault"""
        with capture_logs() as logs:
            logger = get_logger("test.rejected")
            with pytest.raises(FundsUnavailable):
                with LogOperation(logger, "create_obligation", amount="50000.00"):
                    raise FundsUnavailable(
                        "approp-1", Decimal("50000.00"), Decimal("40000.00"), Decimal("10000.00")
                    )

        assert logs[-1]["event"] == "create_obligation rejected"
        assert logs[-1]["log_level"] == "warning"
        assert logs[-1]["error_type"] == "FundsUnavailable"
        assert logs[-1]["amount"] == "***REDACTED***"

    def test_log_operation_with_exception(self) -> None:
        with capture_logs() as logs:
            logger = get_logger("test.failure")
            with pytest.raises(ValueError):
                with LogOperation(logger, "failing_operation"):
                    raise ValueError("Test error")

        assert logs[-1]["event"] == "failing_operation failed"
        assert logs[-1]["log_level"] == "error"


class TestMetrics:
    """Test Prometheus metrics collection."""

    def test_events_appended_metric(self, fc: FundControl) -> None:
        before = events_appended_total.labels(
            stream_type="fiscal_year", event_type="FiscalYearOpened"
        )._value.get()

        fc.open_fiscal_year(2030)

        after = events_appended_total.labels(
            stream_type="fiscal_year", event_type="FiscalYearOpened"
        )._value.get()
        assert after == before + 1

    def test_posting_metrics(
        self, fc: FundControl, fiscal_year: dict, appropriation: dict
    ) -> None:
        budget = create_approved_budget(fc, fiscal_year["fiscal_year_id"])
        obligations_before = obligations_created_total.labels(color_of_money="OM")._value.get()
        expenditures_before = expenditures_posted_total._value.get()

        obligation = fc.create_obligation(
            budget["budget_id"], appropriation["appropriation_id"], "1000.00"
        )
        fc.create_expenditure(obligation["obligation_id"], "500.00")

        assert obligations_created_total.labels(color_of_money="OM")._value.get() == (
            obligations_before + 1
        )
        assert expenditures_posted_total._value.get() == expenditures_before + 1

    def test_rejections_are_counted(
        self, fc: FundControl, fiscal_year: dict, appropriation: dict
    ) -> None:
        budget = create_approved_budget(fc, fiscal_year["fiscal_year_id"], amount="500000.00")
        unavailable_before = funds_unavailable_total.labels(scope="appropriation")._value.get()
        rejected_before = commands_processed_total.labels(
            command_type="create_obligation", status="rejected"
        )._value.get()

        with pytest.raises(FundsUnavailable):
            fc.create_obligation(
                budget["budget_id"], appropriation["appropriation_id"], "100000.01"
            )

        assert funds_unavailable_total.labels(scope="appropriation")._value.get() == (
            unavailable_before + 1
        )
        assert commands_processed_total.labels(
            command_type="create_obligation", status="rejected"
        )._value.get() == rejected_before + 1

    def test_approval_actions_metric(self, fc: FundControl, fiscal_year: dict) -> None:
        human_before = approval_actions_total.labels(action="approved", auto="false")._value.get()

        create_approved_budget(fc, fiscal_year["fiscal_year_id"])

        assert approval_actions_total.labels(action="approved", auto="false")._value.get() == (
            human_before + 1
        )

    def test_version_conflict_metric(self, event_store) -> None:
        from tests.test_kernel.test_event_store import make_event

        before = stream_version_conflicts_total.labels(stream_type="test")._value.get()
        event_store.append("s-1", 0, [make_event("s-1", 1)])
        with pytest.raises(StreamVersionConflict):
            event_store.append("s-1", 0, [make_event("s-1", 2)])

        assert stream_version_conflicts_total.labels(stream_type="test")._value.get() == before + 1


class TestRetryLogic:
    """Test retry logic with exponential backoff."""

    def test_retry_decorator(self) -> None:
        call_count = 0

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise sqlite3.OperationalError("database is locked")
            return "success"

        assert flaky() == "success"
        assert call_count == 2  # Failed once, succeeded on retry

    def test_retry_gives_up_and_reraises(self) -> None:
        call_count = 0

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def always_locked() -> None:
            nonlocal call_count
            call_count += 1
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError):
            always_locked()
        assert call_count == 3

    def test_other_errors_are_not_retried(self) -> None:
        call_count = 0

        @retry_on_sqlite_lock(max_attempts=3, min_wait_ms=1, max_wait_ms=2)
        def broken() -> None:
            nonlocal call_count
            call_count += 1
            raise sqlite3.IntegrityError("UNIQUE constraint failed")

        with pytest.raises(sqlite3.IntegrityError):
            broken()
        assert call_count == 1
