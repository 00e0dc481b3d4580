"""
Tests for Last Wish models

Test strategy:
1. Unit tests for individual components (models, engine steps)
2. Integration tests for flows (in-memory store, recording mail transport)
3. No real Supabase or SMTP calls in tests
"""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from lastwish.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from lastwish.models.delivery import (
    DeliveryRecord,
    DeliveryStatus,
    DispatchReport,
    ExportPayload,
    RunReport,
    UserOutcome,
    UserOutcomeStatus,
)
from lastwish.models.settings import (
    CheckInSettings,
    DataCategory,
    IncludeData,
    ReadinessResult,
    Recipient,
    SettingsValidationError,
    ValidationIssue,
    parse_timestamp,
)


class TestSettingsModels:
    """Tests for check-in settings parsing."""

    def test_from_row_parses_store_types(self):
        """Test numeric strings and ISO timestamps from the store are parsed."""
        settings = CheckInSettings.from_row({
            "user_id": "u1",
            "is_enabled": True,
            "is_active": True,
            "check_in_frequency": "7",
            "last_check_in": "2025-01-01T00:00:00Z",
            "delivery_triggered": False,
            "recipients": [{"id": 1, "email": " Bob@Example.com ", "name": "Bob"}],
            "include_data": {"accounts": True, "lendBorrow": False},
            "message": None,
        })
        assert settings.check_in_frequency == 7.0
        assert settings.last_check_in == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert settings.recipients[0].id == "1"
        assert settings.recipients[0].email == "bob@example.com"
        assert settings.include_data.lend_borrow is False
        assert settings.message == ""

    def test_from_row_defaults_missing_collections(self):
        """Test null recipients and include_data fall back to defaults."""
        settings = CheckInSettings.from_row({
            "user_id": "u1",
            "recipients": None,
            "include_data": None,
        })
        assert settings.recipients == []
        assert settings.include_data.selected() == list(DataCategory)

    def test_from_row_rejects_unknown_category(self):
        """Test unknown include_data keys are a contract error."""
        with pytest.raises(SettingsValidationError) as exc_info:
            CheckInSettings.from_row({
                "user_id": "u1",
                "include_data": {"crypto": True},
            })
        assert exc_info.value.user_id == "u1"

    def test_from_row_rejects_bad_frequency(self):
        """Test non-numeric and non-finite frequencies are rejected."""
        with pytest.raises(SettingsValidationError):
            CheckInSettings.from_row({"user_id": "u1", "check_in_frequency": "weekly"})
        with pytest.raises(SettingsValidationError):
            CheckInSettings.from_row({"user_id": "u1", "check_in_frequency": "nan"})
        with pytest.raises(SettingsValidationError):
            CheckInSettings.from_row({"user_id": "u1", "check_in_frequency": True})

    def test_from_row_rejects_out_of_range_frequency(self):
        """Test a frequency that puts the deadline past the calendar is malformed."""
        with pytest.raises(SettingsValidationError) as exc_info:
            CheckInSettings.from_row({
                "user_id": "u1",
                "check_in_frequency": 5_000_000.0,
                "last_check_in": "2025-01-01T12:00:00Z",
            })
        assert exc_info.value.user_id == "u1"
        with pytest.raises(SettingsValidationError):
            CheckInSettings.from_row({"user_id": "u1", "check_in_frequency": -1e12})

    def test_from_row_without_user_id(self):
        """Test a row missing its key is reported with no user id."""
        with pytest.raises(SettingsValidationError) as exc_info:
            CheckInSettings.from_row({"is_enabled": True})
        assert exc_info.value.user_id is None

    def test_negative_and_fractional_frequency_accepted(self):
        """Test signed fractional frequencies are kept as-is."""
        assert CheckInSettings(user_id="u1", check_in_frequency=-1).check_in_frequency == -1.0
        assert CheckInSettings(user_id="u1", check_in_frequency=0.003472).check_in_frequency == 0.003472

    def test_to_row_round_trips_through_from_row(self):
        """Test to_row output is accepted by from_row."""
        original = CheckInSettings(
            user_id="u1",
            is_enabled=True,
            is_active=True,
            last_check_in=datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc),
            recipients=[Recipient(id="r1", email="a@example.com")],
            include_data=IncludeData(savings=False),
        )
        row = original.to_row()
        assert row["include_data"]["lendBorrow"] is True
        assert CheckInSettings.from_row(row) == original

    def test_include_data_selected_order(self):
        """Test selected categories follow declaration order."""
        include = IncludeData(accounts=False, purchases=False, analytics=False)
        assert include.selected() == [
            DataCategory.TRANSACTIONS,
            DataCategory.LEND_BORROW,
            DataCategory.SAVINGS,
        ]

    def test_parse_timestamp_naive_is_utc(self):
        """Test naive timestamps are taken as UTC."""
        parsed = parse_timestamp("2025-01-01T10:00:00")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)
        assert parse_timestamp("") is None


class TestReadinessResult:
    """Tests for ReadinessResult model."""

    def test_errors_and_warnings_split(self):
        """Test that warnings don't count as errors."""
        result = ReadinessResult(
            user_id="u1",
            is_ready=False,
            issues=[
                ValidationIssue(
                    field="recipients",
                    issue_type="missing",
                    message="No recipients configured",
                    severity="error",
                ),
                ValidationIssue(
                    field="include_data",
                    issue_type="empty",
                    message="Nothing selected",
                    severity="warning",
                ),
            ],
        )
        assert len(result.errors) == 1
        assert len(result.warnings) == 1
        assert result.error_summary() == "No recipients configured"

    def test_issue_severity_is_constrained(self):
        """Test severity must be error, warning or info."""
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


class TestDeliveryModels:
    """Tests for delivery records and reports."""

    def test_delivery_record_defaults(self):
        """Test a new record is pending with a UTC creation time."""
        record = DeliveryRecord(user_id="u1", recipient_email="a@example.com")
        assert record.delivery_status == DeliveryStatus.PENDING
        assert record.created_at.tzinfo is not None
        row = record.to_row()
        assert row["delivery_status"] == "pending"
        assert row["sent_at"] is None

    def test_dispatch_report_flags(self):
        """Test success and total-failure flags."""
        assert DispatchReport(user_id="u1", attempted=3, succeeded=1, failed=2).is_success
        total = DispatchReport(user_id="u1", attempted=2, succeeded=0, failed=2)
        assert total.is_total_failure
        assert not DispatchReport(user_id="u1").is_total_failure

    def test_user_outcome_claimed(self):
        """Test claimed means a dispatch happened."""
        assert not UserOutcome(user_id="u1", status=UserOutcomeStatus.CLAIM_LOST).claimed
        outcome = UserOutcome(
            user_id="u1",
            status=UserOutcomeStatus.DELIVERED,
            dispatch=DispatchReport(user_id="u1", attempted=1, succeeded=1),
        )
        assert outcome.claimed

    def test_export_payload_document(self):
        """Test the attachment document and filename."""
        payload = ExportPayload(
            user_id="u1",
            owner_email="owner@example.com",
            generated_at=datetime(2025, 2, 3, tzinfo=timezone.utc),
            sections={DataCategory.ACCOUNTS: [{"id": "a1"}]},
            omitted={DataCategory.SAVINGS: "source unavailable"},
        )
        document = json.loads(payload.to_json_document())
        assert document["data"]["accounts"] == [{"id": "a1"}]
        assert document["omitted"] == {"savings": "source unavailable"}
        assert payload.section_counts() == {"accounts": 1}
        assert payload.attachment_filename() == "financial-data-owner@example.com-2025-02-03.json"
        assert payload.attachment_filename(test_mode=True).startswith("test-")

    def test_owner_label_fallbacks(self):
        """Test the owner label prefers email, then name."""
        assert ExportPayload(user_id="u1", owner_name="Ann").owner_label == "Ann"
        assert ExportPayload(user_id="u1").owner_label == "the account owner"

    def test_run_report_log_dict(self):
        """Test the run report log summary."""
        report = RunReport(started_at=datetime(2025, 1, 1, tzinfo=timezone.utc), processed_count=2)
        log_dict = report.to_log_dict()
        assert log_dict["processed_count"] == 2
        assert log_dict["error_count"] == 0
        assert log_dict["finished_at"] is None


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SCAN_COMPLETED,
            description="Scan done",
        )
        assert event.event_type == AuditEventType.SCAN_COMPLETED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPORT_BUILT,
            description="Export built",
            details={"counts": {"accounts": 2}},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "export_built"
        assert log_dict["details"]["counts"]["accounts"] == 2

    def test_audit_event_row_round_trip(self):
        """Test conversion to and from an audit table row."""
        event = AuditEventBuilder.claim_released("u1", "settings changed", uuid4())
        row = event.to_row()
        assert json.loads(row["details_json"]) == {"reason": "settings changed"}
        restored = AuditEvent.from_row(row)
        assert restored.event_id == event.event_id
        assert restored.details == event.details
        assert restored.severity == AuditSeverity.WARNING

    def test_audit_event_builder_claim_won(self):
        """Test AuditEventBuilder.claim_won."""
        correlation_id = uuid4()
        event = AuditEventBuilder.claim_won("u1", 3, correlation_id, is_manual=True)
        assert event.event_type == AuditEventType.CLAIM_WON
        assert event.entity_id == "u1"
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True
        assert event.details == {"days_overdue": 3, "manual": True}

    def test_dispatch_completed_severity(self):
        """Test dispatch severity reflects the outcome."""
        cid = uuid4()
        assert AuditEventBuilder.dispatch_completed("u1", 2, 2, 0, cid).severity == AuditSeverity.INFO
        assert AuditEventBuilder.dispatch_completed("u1", 2, 1, 1, cid).severity == AuditSeverity.WARNING
        assert AuditEventBuilder.dispatch_completed("u1", 2, 0, 2, cid).severity == AuditSeverity.ERROR

    def test_run_completed_severity(self):
        """Test a run with errors is a warning."""
        cid = uuid4()
        assert AuditEventBuilder.run_completed({"error_count": 1}, cid).severity == AuditSeverity.WARNING
        assert AuditEventBuilder.run_completed({"error_count": 0}, cid).severity == AuditSeverity.INFO


class TestDataCategories:
    """Tests for data category enum."""

    def test_all_categories_exist(self):
        """Test that expected categories exist."""
        expected = ["accounts", "transactions", "purchases", "lend_borrow", "savings", "analytics"]
        for cat in expected:
            assert DataCategory(cat) is not None

    def test_category_values(self):
        """Test category string values."""
        assert DataCategory.LEND_BORROW.value == "lend_borrow"
        assert len(DataCategory) == 6


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
