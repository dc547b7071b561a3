"""Local staging store for case reports not yet confirmed remotely.

Reports are appended once and afterwards only change sync state, through
``update_state``. Each state change is a single conditional UPDATE, so two
overlapping sync runs cannot both claim the same report.
"""

import json
import logging
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from .config import config
from .exceptions import (
    CorruptReportError,
    InvalidTransitionError,
    ReportNotFoundError,
    StagingError,
)
from .models import (
    CaseReport,
    CaseStatus,
    FailureKind,
    SYNC_TRANSITIONS,
    SyncStatus,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)


def _decode_list(value: str | None) -> list:
    """Decode a stored JSON list, treating unreadable values as empty."""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except ValueError:
        return []
    return decoded if isinstance(decoded, list) else []

# Fields a user may correct on a failed report before it is retried
AMENDABLE_FIELDS = frozenset({
    "disease_code", "age_group", "gender", "symptoms", "location",
    "facility", "district", "notes", "attachments", "status",
})


class StagingDatabase:
    """SQLite-backed staging queue for case reports."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path or config.STAGING_DB_PATH).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        with self._get_connection() as conn:
            conn.executescript(schema)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    # --- Staging ---

    def stage(self, report: CaseReport) -> CaseReport:
        """Append a new report in the pending state.

        Raises:
            StagingError: on any storage failure, including a reused
                client_local_id.
        """
        now = utc_now()
        report.sync_status = SyncStatus.PENDING
        report.sync_error = None
        report.failure_kind = None
        report.sync_attempts = 0
        report.updated_at = now

        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO staged_case_reports (
                        client_local_id, disease_code, age_group, gender,
                        symptoms, location, facility, district, notes,
                        attachments, reporter_id, status, created_at,
                        sync_status, sync_error, failure_kind, sync_attempts,
                        remote_id, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        report.client_local_id,
                        report.disease_code,
                        report.age_group,
                        report.gender,
                        json.dumps(report.symptoms),
                        report.location,
                        report.facility,
                        report.district,
                        report.notes,
                        json.dumps(report.attachments),
                        report.reporter_id,
                        report.status.value,
                        report.created_at.isoformat(),
                        report.sync_status.value,
                        None,
                        None,
                        0,
                        report.remote_id,
                        now.isoformat(),
                    ),
                )
                conn.commit()
        except sqlite3.IntegrityError as e:
            raise StagingError(
                f"Report {report.client_local_id} is already staged: {e}"
            ) from e
        except sqlite3.Error as e:
            raise StagingError(f"Could not stage report {report.client_local_id}: {e}") from e

        logger.debug(f"Staged report {report.client_local_id} ({report.disease_code})")
        return report

    # --- Queries ---

    def get_report(self, client_local_id: str) -> Optional[CaseReport]:
        """Get a staged report by its client_local_id."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM staged_case_reports WHERE client_local_id = ?",
                (client_local_id,),
            ).fetchone()
            return self._row_to_report(row) if row else None

    def list_by_state(self, state: SyncStatus, limit: int | None = None) -> list[CaseReport]:
        """Get all reports in a sync state, oldest first.

        Rows that cannot be decoded are left out. Queued ones are moved to
        failed (validation) so they wait for a correction instead of
        being picked up by every run.
        """
        query = """
            SELECT * FROM staged_case_reports
            WHERE sync_status = ?
            ORDER BY created_at ASC, rowid ASC
        """
        params: list[Any] = [state.value]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        reports = []
        for row in rows:
            try:
                reports.append(self._row_to_report(row))
            except CorruptReportError as e:
                logger.error(str(e))
                if state != SyncStatus.FAILED:
                    self._quarantine(e.client_local_id, e.reason)
        return reports

    def _quarantine(self, client_local_id: str, reason: str) -> None:
        """Park an undecodable queued row in failed until it is amended."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE staged_case_reports
                SET sync_status = ?, failure_kind = ?, sync_error = ?, updated_at = ?
                WHERE client_local_id = ? AND sync_status IN (?, ?)
                """,
                (
                    SyncStatus.FAILED.value,
                    FailureKind.VALIDATION.value,
                    f"Stored report is unreadable: {reason}",
                    utc_now().isoformat(),
                    client_local_id,
                    SyncStatus.PENDING.value,
                    SyncStatus.SYNCING.value,
                ),
            )
            conn.commit()

    # --- State transitions ---

    def update_state(
        self,
        client_local_id: str,
        new_state: SyncStatus,
        error: str | None = None,
        failure_kind: FailureKind | None = None,
        remote_id: str | None = None,
    ) -> CaseReport:
        """Move a report to a new sync state.

        This is the only path that changes sync state. The change is applied
        with a single conditional UPDATE, so it only succeeds if the report
        is still in a state that may move to ``new_state``.

        Raises:
            ReportNotFoundError: no report with that id.
            InvalidTransitionError: the report's current state does not
                allow the move (including a claim lost to another run).
        """
        allowed_from = [
            state.value for state, targets in SYNC_TRANSITIONS.items()
            if new_state in targets
        ]
        now = utc_now().isoformat()

        if new_state == SyncStatus.SYNCING:
            assignments = "sync_attempts = sync_attempts + 1"
            params: list[Any] = []
        elif new_state == SyncStatus.FAILED:
            kind = failure_kind or FailureKind.TRANSPORT
            assignments = "sync_error = ?, failure_kind = ?"
            params = [error or "Unknown error", kind.value]
        elif new_state == SyncStatus.SYNCED:
            assignments = "sync_error = NULL, failure_kind = NULL, remote_id = COALESCE(?, remote_id)"
            params = [remote_id]
        else:
            assignments = "sync_error = NULL, failure_kind = NULL"
            params = []

        placeholders = ", ".join("?" for _ in allowed_from) or "NULL"
        query = f"""
            UPDATE staged_case_reports
            SET sync_status = ?, updated_at = ?, {assignments}
            WHERE client_local_id = ? AND sync_status IN ({placeholders})
        """

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    query,
                    [new_state.value, now, *params, client_local_id, *allowed_from],
                )
                conn.commit()
                updated = cursor.rowcount
        except sqlite3.Error as e:
            raise StagingError(f"Could not update report {client_local_id}: {e}") from e

        report = self.get_report(client_local_id)
        if report is None:
            raise ReportNotFoundError(client_local_id)
        if not updated:
            raise InvalidTransitionError(
                client_local_id, report.sync_status.value, new_state.value
            )
        return report

    def amend_report(self, client_local_id: str, changes: dict[str, Any]) -> CaseReport:
        """Apply a user's correction to a failed report and queue it again.

        The corrected report goes through the same checks as a new
        submission. Nothing is written unless it passes.

        Raises:
            ValueError: a field that cannot be amended.
            CaseValidationError: the corrected report is invalid.
            ReportNotFoundError / InvalidTransitionError: as update_state.
        """
        from .intake import validate_case_report

        unknown = set(changes) - AMENDABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot amend fields: {', '.join(sorted(unknown))}")

        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM staged_case_reports WHERE client_local_id = ?",
                (client_local_id,),
            ).fetchone()
        if row is None:
            raise ReportNotFoundError(client_local_id)

        merged = {name: row[name] for name in AMENDABLE_FIELDS}
        merged["symptoms"] = _decode_list(row["symptoms"])
        merged["attachments"] = _decode_list(row["attachments"])
        merged.update(changes)
        cleaned = validate_case_report(merged)

        values = {name: cleaned[name] for name in AMENDABLE_FIELDS}
        values["symptoms"] = json.dumps(values["symptoms"])
        values["attachments"] = json.dumps(values["attachments"])
        values["status"] = values["status"].value

        if changes:
            assignments = ", ".join(f"{name} = ?" for name in values)
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    UPDATE staged_case_reports SET {assignments}
                    WHERE client_local_id = ? AND sync_status = ?
                    """,
                    [*values.values(), client_local_id, SyncStatus.FAILED.value],
                )
                conn.commit()

        report = self.update_state(client_local_id, SyncStatus.PENDING)
        logger.info(f"Report {client_local_id} amended and queued for retry")
        return report

    def recover_stale(self, older_than_minutes: int | None = None) -> int:
        """Release syncing claims left behind by an interrupted run.

        Returns:
            Number of reports moved back to pending.
        """
        minutes = older_than_minutes if older_than_minutes is not None else config.STALE_SYNC_MINUTES
        cutoff = (utc_now() - timedelta(minutes=minutes)).isoformat()

        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT client_local_id FROM staged_case_reports
                WHERE sync_status = ? AND updated_at < ?
                """,
                (SyncStatus.SYNCING.value, cutoff),
            ).fetchall()

        recovered = 0
        for row in rows:
            try:
                self.update_state(row["client_local_id"], SyncStatus.PENDING)
                recovered += 1
            except InvalidTransitionError:
                # Finished by its run in the meantime
                continue

        if recovered:
            logger.warning(f"Released {recovered} stale syncing claim(s)")
        return recovered

    # --- Statistics ---

    def get_summary_stats(self) -> dict[str, Any]:
        """Get counts per sync state for the dashboard."""
        with self._get_connection() as conn:
            by_state_rows = conn.execute(
                """
                SELECT sync_status, COUNT(*) as count
                FROM staged_case_reports
                GROUP BY sync_status
                """
            ).fetchall()
            by_state = {state.value: 0 for state in SyncStatus}
            by_state.update({row["sync_status"]: row["count"] for row in by_state_rows})

            by_kind_rows = conn.execute(
                """
                SELECT failure_kind, COUNT(*) as count
                FROM staged_case_reports
                WHERE sync_status = 'failed'
                GROUP BY failure_kind
                """
            ).fetchall()
            failed_by_kind = {row["failure_kind"]: row["count"] for row in by_kind_rows}

            return {
                "total": sum(by_state.values()),
                "by_state": by_state,
                "failed_by_kind": failed_by_kind,
                "awaiting_delivery": by_state["pending"] + by_state["syncing"] + by_state["failed"],
            }

    def _row_to_report(self, row: sqlite3.Row) -> CaseReport:
        """Convert database row to CaseReport.

        Raises:
            CorruptReportError: a stored value is not a valid enum,
                timestamp or JSON list.
        """
        try:
            return self._decode_row(row)
        except (ValueError, TypeError) as e:
            raise CorruptReportError(row["client_local_id"], str(e)) from e

    def _decode_row(self, row: sqlite3.Row) -> CaseReport:
        return CaseReport(
            client_local_id=row["client_local_id"],
            disease_code=row["disease_code"],
            age_group=row["age_group"],
            gender=row["gender"],
            symptoms=json.loads(row["symptoms"]) if row["symptoms"] else [],
            location=row["location"],
            facility=row["facility"],
            district=row["district"],
            notes=row["notes"],
            attachments=json.loads(row["attachments"]) if row["attachments"] else [],
            reporter_id=row["reporter_id"],
            status=CaseStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            sync_status=SyncStatus(row["sync_status"]),
            sync_error=row["sync_error"],
            failure_kind=FailureKind(row["failure_kind"]) if row["failure_kind"] else None,
            sync_attempts=row["sync_attempts"],
            remote_id=row["remote_id"],
            updated_at=parse_timestamp(row["updated_at"]),
        )
