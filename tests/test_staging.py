"""Tests for the local staging store."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import corrupt_status
from idsr_src.exceptions import (
    CaseValidationError,
    CorruptReportError,
    InvalidTransitionError,
    ReportNotFoundError,
    StagingError,
)
from idsr_src.models import CaseStatus, FailureKind, SyncStatus


class TestStage:
    """Test appending reports."""

    def test_staged_report_is_pending(self, staging, make_report):
        report = staging.stage(make_report())

        stored = staging.get_report(report.client_local_id)
        assert stored.sync_status == SyncStatus.PENDING
        assert stored.sync_attempts == 0
        assert stored.sync_error is None

    def test_fields_survive_storage(self, staging, make_report):
        created = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
        report = make_report(
            symptoms=["fever", "rash"],
            attachments=["photos/1.jpg"],
            notes="Travelled last week",
            created_at=created,
        )
        staging.stage(report)

        stored = staging.get_report(report.client_local_id)
        assert stored.symptoms == ["fever", "rash"]
        assert stored.attachments == ["photos/1.jpg"]
        assert stored.notes == "Travelled last week"
        assert stored.created_at == created
        assert stored.facility == "Kisumu County Hospital"

    def test_reused_client_local_id_rejected(self, staging, make_report):
        staging.stage(make_report(client_local_id="CASE-DUP"))

        with pytest.raises(StagingError):
            staging.stage(make_report(client_local_id="CASE-DUP"))

    def test_unknown_report_is_none(self, staging):
        assert staging.get_report("CASE-MISSING") is None


class TestListByState:
    """Test listing reports by sync state."""

    def test_oldest_first(self, staging, make_report):
        now = datetime.now(timezone.utc)
        newer = staging.stage(make_report(created_at=now))
        older = staging.stage(make_report(created_at=now - timedelta(hours=2)))

        pending = staging.list_by_state(SyncStatus.PENDING)
        assert [r.client_local_id for r in pending] == [
            older.client_local_id,
            newer.client_local_id,
        ]

    def test_filters_by_state(self, staging, make_report):
        a = staging.stage(make_report())
        staging.stage(make_report())
        staging.update_state(a.client_local_id, SyncStatus.SYNCING)

        assert len(staging.list_by_state(SyncStatus.PENDING)) == 1
        assert [r.client_local_id for r in staging.list_by_state(SyncStatus.SYNCING)] == [
            a.client_local_id
        ]
        assert staging.list_by_state(SyncStatus.SYNCED) == []

    def test_limit(self, staging, make_report):
        for _ in range(3):
            staging.stage(make_report())

        assert len(staging.list_by_state(SyncStatus.PENDING, limit=2)) == 2

    def test_unreadable_row_moved_to_failed(self, staging, make_report):
        bad = staging.stage(make_report())
        good = staging.stage(make_report())
        corrupt_status(staging, bad.client_local_id)

        pending = staging.list_by_state(SyncStatus.PENDING)

        assert [r.client_local_id for r in pending] == [good.client_local_id]
        assert staging.get_summary_stats()["failed_by_kind"] == {"validation": 1}
        with pytest.raises(CorruptReportError):
            staging.get_report(bad.client_local_id)


class TestUpdateState:
    """Test the sync state machine."""

    def test_claim_increments_attempts(self, staging, make_report):
        report = staging.stage(make_report())

        claimed = staging.update_state(report.client_local_id, SyncStatus.SYNCING)
        assert claimed.sync_status == SyncStatus.SYNCING
        assert claimed.sync_attempts == 1

    def test_pending_cannot_jump_to_synced(self, staging, make_report):
        report = staging.stage(make_report())

        with pytest.raises(InvalidTransitionError) as exc_info:
            staging.update_state(report.client_local_id, SyncStatus.SYNCED)

        assert exc_info.value.current == "pending"
        assert staging.get_report(report.client_local_id).sync_status == SyncStatus.PENDING

    def test_second_claim_loses(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)

        with pytest.raises(InvalidTransitionError):
            staging.update_state(report.client_local_id, SyncStatus.SYNCING)

    def test_synced_records_remote_id(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)

        synced = staging.update_state(report.client_local_id, SyncStatus.SYNCED, remote_id="r-42")
        assert synced.sync_status == SyncStatus.SYNCED
        assert synced.remote_id == "r-42"

    def test_synced_is_terminal(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)
        staging.update_state(report.client_local_id, SyncStatus.SYNCED)

        with pytest.raises(InvalidTransitionError):
            staging.update_state(report.client_local_id, SyncStatus.PENDING)

    def test_failed_keeps_reason(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)

        failed = staging.update_state(
            report.client_local_id,
            SyncStatus.FAILED,
            error="HTTP 400: invalid age_group",
            failure_kind=FailureKind.VALIDATION,
        )
        assert failed.sync_error == "HTTP 400: invalid age_group"
        assert failed.failure_kind == FailureKind.VALIDATION
        assert not failed.is_retryable

    def test_failed_defaults_to_transport(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)

        failed = staging.update_state(report.client_local_id, SyncStatus.FAILED, error="timeout")
        assert failed.failure_kind == FailureKind.TRANSPORT
        assert failed.is_retryable

    def test_requeue_clears_error(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)
        staging.update_state(report.client_local_id, SyncStatus.FAILED, error="timeout")

        requeued = staging.update_state(report.client_local_id, SyncStatus.PENDING)
        assert requeued.sync_status == SyncStatus.PENDING
        assert requeued.sync_error is None
        assert requeued.failure_kind is None

    def test_unknown_report(self, staging):
        with pytest.raises(ReportNotFoundError):
            staging.update_state("CASE-MISSING", SyncStatus.SYNCING)


class TestAmendReport:
    """Test correcting failed reports."""

    def _fail(self, staging, report):
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)
        staging.update_state(
            report.client_local_id,
            SyncStatus.FAILED,
            error="rejected",
            failure_kind=FailureKind.VALIDATION,
        )

    def test_amend_failed_report_requeues(self, staging, make_report):
        report = staging.stage(make_report())
        self._fail(staging, report)

        amended = staging.amend_report(
            report.client_local_id,
            {"age_group": "5-15", "symptoms": ["fever", "headache"]},
        )
        assert amended.sync_status == SyncStatus.PENDING
        assert amended.age_group == "5-15"
        assert amended.symptoms == ["fever", "headache"]
        assert amended.sync_error is None

    def test_amend_without_changes_requeues(self, staging, make_report):
        report = staging.stage(make_report())
        self._fail(staging, report)

        assert staging.amend_report(report.client_local_id, {}).sync_status == SyncStatus.PENDING

    def test_cannot_amend_pending_report(self, staging, make_report):
        report = staging.stage(make_report(age_group="15-49"))

        with pytest.raises(InvalidTransitionError):
            staging.amend_report(report.client_local_id, {"age_group": "50+"})
        assert staging.get_report(report.client_local_id).age_group == "15-49"

    def test_cannot_amend_sync_fields(self, staging, make_report):
        report = staging.stage(make_report())
        self._fail(staging, report)

        with pytest.raises(ValueError):
            staging.amend_report(report.client_local_id, {"sync_status": "synced"})

    def test_invalid_status_rejected(self, staging, make_report):
        report = staging.stage(make_report())
        self._fail(staging, report)

        with pytest.raises(CaseValidationError) as exc_info:
            staging.amend_report(report.client_local_id, {"status": "bogus"})

        assert "status" in exc_info.value.field_errors
        stored = staging.get_report(report.client_local_id)
        assert stored.sync_status == SyncStatus.FAILED
        assert stored.status == CaseStatus.SUSPECTED

    def test_intake_rules_apply_to_corrections(self, staging, make_report):
        report = staging.stage(make_report(age_group="15-49"))
        self._fail(staging, report)

        with pytest.raises(CaseValidationError) as exc_info:
            staging.amend_report(
                report.client_local_id, {"disease_code": "NOPE", "age_group": "xx"}
            )

        assert set(exc_info.value.field_errors) == {"disease_code", "age_group"}
        stored = staging.get_report(report.client_local_id)
        assert stored.sync_status == SyncStatus.FAILED
        assert stored.disease_code == "MAL"
        assert stored.age_group == "15-49"

    def test_correction_is_normalized(self, staging, make_report):
        report = staging.stage(make_report())
        self._fail(staging, report)

        amended = staging.amend_report(
            report.client_local_id, {"gender": "male", "disease_code": "chol"}
        )

        assert amended.gender == "M"
        assert amended.disease_code == "CHOL"

    def test_unknown_report(self, staging):
        with pytest.raises(ReportNotFoundError):
            staging.amend_report("CASE-MISSING", {"age_group": "50+"})

    def test_unreadable_report_can_be_corrected(self, staging, make_report):
        report = staging.stage(make_report())
        corrupt_status(staging, report.client_local_id)
        assert staging.list_by_state(SyncStatus.PENDING) == []

        amended = staging.amend_report(report.client_local_id, {"status": "suspected"})

        assert amended.sync_status == SyncStatus.PENDING
        assert amended.status == CaseStatus.SUSPECTED


class TestRecoverStale:
    """Test releasing abandoned claims."""

    def _age_claim(self, staging, client_local_id):
        with staging._get_connection() as conn:
            conn.execute(
                "UPDATE staged_case_reports SET updated_at = ? WHERE client_local_id = ?",
                ("2020-01-01T00:00:00+00:00", client_local_id),
            )
            conn.commit()

    def test_old_claim_released(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)
        self._age_claim(staging, report.client_local_id)

        assert staging.recover_stale() == 1
        assert staging.get_report(report.client_local_id).sync_status == SyncStatus.PENDING

    def test_fresh_claim_kept(self, staging, make_report):
        report = staging.stage(make_report())
        staging.update_state(report.client_local_id, SyncStatus.SYNCING)

        assert staging.recover_stale() == 0
        assert staging.get_report(report.client_local_id).sync_status == SyncStatus.SYNCING


class TestSummaryStats:
    """Test dashboard statistics."""

    def test_counts(self, staging, make_report):
        reports = [staging.stage(make_report()) for _ in range(3)]
        staging.update_state(reports[0].client_local_id, SyncStatus.SYNCING)
        staging.update_state(reports[0].client_local_id, SyncStatus.SYNCED)
        staging.update_state(reports[1].client_local_id, SyncStatus.SYNCING)
        staging.update_state(
            reports[1].client_local_id,
            SyncStatus.FAILED,
            error="rejected",
            failure_kind=FailureKind.VALIDATION,
        )

        stats = staging.get_summary_stats()
        assert stats["total"] == 3
        assert stats["by_state"] == {"pending": 1, "syncing": 0, "synced": 1, "failed": 1}
        assert stats["failed_by_kind"] == {"validation": 1}
        assert stats["awaiting_delivery"] == 2

    def test_empty(self, staging):
        stats = staging.get_summary_stats()
        assert stats["total"] == 0
        assert stats["awaiting_delivery"] == 0
