"""Sync coordinator.

Drains the local staging store into the remote store. Delivery is
at-least-once with at most one effective insert per client_local_id:
before every insert the remote store is checked for a row carrying the same
idempotency key, and a unique-constraint conflict on insert is treated as
"already delivered".

Each report is processed independently. A failure is recorded on that
report and never stops the rest of the batch.
"""

import logging
from datetime import timedelta
from typing import Optional

from .alerters import BaseAlerter
from .alerts import AlertRuleEngine
from .config import config
from .exceptions import (
    InvalidTransitionError,
    RemoteConflictError,
    RemoteStoreError,
    StagingError,
)
from .models import CaseReport, FailureKind, SyncStatus, parse_timestamp, utc_now
from .remote import RemoteStore
from .staging import StagingDatabase

logger = logging.getLogger(__name__)


def _row_id(row: Optional[dict]) -> Optional[str]:
    if not row or row.get("id") is None:
        return None
    return str(row["id"])


class SyncCoordinator:
    """Pushes staged case reports to the remote store."""

    def __init__(
        self,
        staging: StagingDatabase,
        remote: RemoteStore,
        rule_engine: AlertRuleEngine | None = None,
        alerters: list[BaseAlerter] | None = None,
        reporter_id: str | None = None,
    ):
        self.staging = staging
        self.remote = remote
        self.rule_engine = rule_engine
        self.alerters = alerters or []
        self.reporter_id = reporter_id
        self.table = config.CASE_REPORTS_TABLE

    def run_once(self) -> dict:
        """Run a single sync pass over all deliverable reports.

        Returns:
            Dict with processing results
        """
        result = {
            "reports_checked": 0,
            "synced": 0,
            "already_synced": 0,
            "failed": 0,
            "skipped": 0,
            "requeued": 0,
            "recovered": 0,
            "alerts": [],
            "errors": [],
            "started_at": utc_now().isoformat(),
            "completed_at": None,
        }

        try:
            result["recovered"] = self.staging.recover_stale()
            result["requeued"] = self._requeue_retryable()
            batch = self.staging.list_by_state(SyncStatus.PENDING)
        except StagingError as e:
            logger.error(f"Error loading staged reports: {e}")
            result["errors"].append({"stage": "load_batch", "error": str(e)})
            result["completed_at"] = utc_now().isoformat()
            return result

        result["reports_checked"] = len(batch)
        if batch:
            logger.info(f"Syncing {len(batch)} staged report(s)")

        for report in batch:
            try:
                outcome = self._sync_report(report, result)
            except StagingError as e:
                logger.error(f"Staging error for report {report.client_local_id}: {e}")
                result["errors"].append({
                    "client_local_id": report.client_local_id,
                    "error": str(e),
                    "kind": "staging",
                })
                continue

            if outcome == "already_synced":
                result["already_synced"] += 1
                result["synced"] += 1
            else:
                result[outcome] += 1

        result["completed_at"] = utc_now().isoformat()
        if batch:
            logger.info(f"Sync complete: {result['synced']} synced, {result['failed']} failed")
        return result

    def _requeue_retryable(self) -> int:
        """Move failed reports with transient errors back to pending."""
        requeued = 0
        for report in self.staging.list_by_state(SyncStatus.FAILED):
            if not report.is_retryable:
                continue
            try:
                self.staging.update_state(report.client_local_id, SyncStatus.PENDING)
                requeued += 1
            except InvalidTransitionError:
                continue
        return requeued

    def _sync_report(self, report: CaseReport, result: dict) -> str:
        """Deliver a single report.

        Returns:
            One of "synced", "already_synced", "failed", "skipped"
        """
        local_id = report.client_local_id

        try:
            self.staging.update_state(local_id, SyncStatus.SYNCING)
        except InvalidTransitionError:
            logger.debug(f"Report {local_id} claimed by another sync run")
            return "skipped"

        try:
            existing = self._find_existing(local_id)
            if existing is not None:
                self.staging.update_state(local_id, SyncStatus.SYNCED, remote_id=_row_id(existing))
                logger.info(f"Report {local_id} already in remote store; marked synced")
                return "already_synced"

            references = self._resolve_references(report)
            record = report.to_remote_record(**references)
            record["reporter_id"] = report.reporter_id or self.reporter_id

            inserted = self._deliver(record)
            if inserted is None:
                # Upsert kept an existing row
                existing = self._find_existing(local_id)
                self.staging.update_state(local_id, SyncStatus.SYNCED, remote_id=_row_id(existing))
                return "already_synced"

        except RemoteConflictError as e:
            existing = self._find_existing_quietly(local_id)
            if existing is not None:
                self.staging.update_state(local_id, SyncStatus.SYNCED, remote_id=_row_id(existing))
                logger.info(f"Report {local_id} inserted by a concurrent run; marked synced")
                return "already_synced"
            return self._mark_failed(report, e, FailureKind.VALIDATION, result)

        except RemoteStoreError as e:
            kind = FailureKind.TRANSPORT if e.retryable else FailureKind.VALIDATION
            return self._mark_failed(report, e, kind, result)

        except StagingError:
            raise

        except Exception as e:
            logger.exception(f"Unexpected error syncing report {local_id}")
            return self._mark_failed(report, e, FailureKind.VALIDATION, result)

        self.staging.update_state(local_id, SyncStatus.SYNCED, remote_id=_row_id(inserted))
        logger.info(f"Synced report {local_id} ({report.disease_code}) as {_row_id(inserted)}")

        self._evaluate_alerts(report, result)
        return "synced"

    def _mark_failed(
        self,
        report: CaseReport,
        error: Exception,
        kind: FailureKind,
        result: dict,
    ) -> str:
        message = str(error) or type(error).__name__
        logger.error(f"Failed to sync report {report.client_local_id} ({kind.value}): {message}")
        self.staging.update_state(
            report.client_local_id,
            SyncStatus.FAILED,
            error=message,
            failure_kind=kind,
        )
        result["errors"].append({
            "client_local_id": report.client_local_id,
            "error": message,
            "kind": kind.value,
        })
        return "failed"

    def _find_existing(self, client_local_id: str) -> Optional[dict]:
        """Look up a remote row carrying this idempotency key."""
        return self.remote.find_one(
            self.table,
            {"client_local_id": client_local_id},
            columns="id,client_local_id",
        )

    def _find_existing_quietly(self, client_local_id: str) -> Optional[dict]:
        try:
            return self._find_existing(client_local_id)
        except RemoteStoreError as e:
            logger.warning(f"Could not confirm existing row for {client_local_id}: {e}")
            return None

    def _resolve_references(self, report: CaseReport) -> dict:
        """Map facility/district names to remote ids.

        Best effort: a name that is missing, unknown, or cannot be looked up
        becomes a null reference instead of blocking the report.
        """
        lookups = (
            ("facility_id", config.FACILITIES_TABLE, report.facility),
            ("district_id", config.DISTRICTS_TABLE, report.district),
        )

        references: dict[str, Optional[str]] = {}
        for key, table, name in lookups:
            references[key] = None
            if not name:
                continue
            try:
                row = self.remote.find_one(table, {"name": name}, columns="id,name")
            except RemoteStoreError as e:
                logger.warning(f"Lookup of {table} {name!r} failed, storing null: {e}")
                continue
            if row is None:
                logger.warning(f"Unknown {table} {name!r} for report {report.client_local_id}, storing null")
                continue
            references[key] = _row_id(row)
        return references

    def _deliver(self, record: dict) -> Optional[dict]:
        """Insert a record, via upsert-on-conflict when the store supports it."""
        if self.remote.supports_upsert:
            return self.remote.upsert(self.table, record, on_conflict="client_local_id")
        return self.remote.insert(self.table, record)

    def _evaluate_alerts(self, report: CaseReport, result: dict) -> None:
        """Check the disease's running count after a new case lands."""
        if self.rule_engine is None:
            return

        window = self.rule_engine.window_hours(report.disease_code)
        if window is None:
            return

        now = utc_now()
        cutoff = now - timedelta(hours=window)
        try:
            rows = self.remote.query(
                self.table,
                {"disease_code": report.disease_code, "report_date": ("gte", cutoff)},
                columns="id,report_date",
            )
        except RemoteStoreError as e:
            logger.warning(f"Could not count recent {report.disease_code} cases: {e}")
            return

        dates = [d for d in (parse_timestamp(r.get("report_date")) for r in rows) if d]
        elapsed_hours = (now - min(dates)).total_seconds() / 3600 if dates else 0.0

        alert = self.rule_engine.evaluate(
            report.disease_code,
            case_count=len(rows),
            elapsed_hours=elapsed_hours,
            location=report.location or report.district,
            client_local_id=report.client_local_id,
        )
        if alert is None:
            return

        result["alerts"].append(alert.to_dict())
        for alerter in self.alerters:
            try:
                alerter.send_alert(alert)
            except Exception as e:
                logger.error(f"Alerter {type(alerter).__name__} failed: {e}")


def build_coordinator(
    staging: StagingDatabase | None = None,
    remote: RemoteStore | None = None,
    reporter_id: str | None = None,
) -> SyncCoordinator:
    """Wire a coordinator with the configured store and alerters."""
    from .alerters import LogAlerter, RemoteNotificationAlerter
    from .remote import SupabaseStore

    remote = remote or SupabaseStore()
    alerters: list[BaseAlerter] = [LogAlerter()]
    if config.NOTIFY_REMOTE:
        alerters.append(RemoteNotificationAlerter(remote))

    return SyncCoordinator(
        staging or StagingDatabase(),
        remote,
        rule_engine=AlertRuleEngine(),
        alerters=alerters,
        reporter_id=reporter_id,
    )


def sync_staged_reports(
    staging: StagingDatabase | None = None,
    remote: RemoteStore | None = None,
) -> dict:
    """Convenience function to run one sync pass with default components.

    Returns:
        Sync results dict
    """
    return build_coordinator(staging, remote).run_once()
