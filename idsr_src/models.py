"""Data models for case sync, alerting and outbreak detection."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or date) from the remote store as aware UTC.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SyncStatus(Enum):
    """Delivery state of a staged case report."""
    PENDING = "pending"   # Waiting for the next sync run
    SYNCING = "syncing"   # Claimed by a sync run
    SYNCED = "synced"     # Confirmed in the remote store
    FAILED = "failed"     # Last attempt failed; see sync_error


# Allowed sync-state transitions. syncing -> pending is only used to
# release claims abandoned by an interrupted run.
SYNC_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCING: frozenset({SyncStatus.SYNCED, SyncStatus.FAILED, SyncStatus.PENDING}),
    SyncStatus.FAILED: frozenset({SyncStatus.PENDING}),
    SyncStatus.SYNCED: frozenset(),
}


class FailureKind(Enum):
    """Why a sync attempt failed."""
    TRANSPORT = "transport"    # Network/timeout/server error; retried automatically
    VALIDATION = "validation"  # Rejected by the remote store; needs correction


class CaseStatus(Enum):
    """Workflow stage of a case report."""
    SUSPECTED = "suspected"
    PROBABLE = "probable"
    CONFIRMED = "confirmed"
    PENDING_LAB = "pending_lab"
    RULED_OUT = "ruled_out"
    RECOVERED = "recovered"
    DECEASED = "deceased"
    CLOSED = "closed"


@dataclass
class CaseReport:
    """A case report as held in the local staging store."""
    client_local_id: str  # Idempotency key, generated once at creation
    disease_code: str
    age_group: str
    gender: str
    symptoms: list[str]
    location: Optional[str]  # Location descriptor, used for clustering

    facility: Optional[str] = None  # Facility name, resolved to an id on sync
    district: Optional[str] = None  # District name, resolved to an id on sync
    notes: Optional[str] = None
    attachments: list[str] = field(default_factory=list)
    reporter_id: Optional[str] = None
    status: CaseStatus = CaseStatus.SUSPECTED
    created_at: datetime = field(default_factory=utc_now)

    # Sync state (owned by the sync coordinator)
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    sync_attempts: int = 0
    remote_id: Optional[str] = None
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_retryable(self) -> bool:
        """Failed with an error that an unchanged retry could fix."""
        return (
            self.sync_status == SyncStatus.FAILED
            and self.failure_kind != FailureKind.VALIDATION
        )

    def to_remote_record(
        self,
        facility_id: str | None = None,
        district_id: str | None = None,
    ) -> dict:
        """Build the row inserted into the remote case_reports table."""
        return {
            "client_local_id": self.client_local_id,
            "reporter_id": self.reporter_id,
            "facility_id": facility_id,
            "district_id": district_id,
            "disease_code": self.disease_code,
            "age_group": self.age_group,
            "gender": self.gender,
            "symptoms": list(self.symptoms),
            "location_detail": self.location,
            "notes": self.notes,
            "attachments": list(self.attachments) or None,
            "status": self.status.value,
            "report_date": self.created_at.isoformat(),
            "sync_status": SyncStatus.SYNCED.value,
        }

    def to_dict(self) -> dict:
        return {
            "client_local_id": self.client_local_id,
            "disease_code": self.disease_code,
            "age_group": self.age_group,
            "gender": self.gender,
            "symptoms": list(self.symptoms),
            "location": self.location,
            "facility": self.facility,
            "district": self.district,
            "notes": self.notes,
            "attachments": list(self.attachments),
            "reporter_id": self.reporter_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sync_status": self.sync_status.value,
            "sync_error": self.sync_error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "sync_attempts": self.sync_attempts,
            "remote_id": self.remote_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class DiseaseAlert:
    """A threshold crossing that needs immediate escalation."""
    disease_code: str
    disease_name: str
    priority: str
    case_count: int
    reporting_threshold: int
    reporting_timeframe: str
    location: Optional[str] = None
    client_local_id: Optional[str] = None
    contact_tracing_required: bool = False
    created_at: datetime = field(default_factory=utc_now)

    @property
    def title(self) -> str:
        where = f" in {self.location}" if self.location else ""
        return f"{self.disease_name} alert{where}"

    @property
    def message(self) -> str:
        window = (
            "reportable immediately"
            if self.reporting_timeframe == "immediate"
            else f"within {self.reporting_timeframe}"
        )
        text = (
            f"{self.case_count} case(s) of {self.disease_name} ({self.disease_code}) "
            f"reached the threshold of {self.reporting_threshold} ({window})."
        )
        if self.contact_tracing_required:
            text += " Contact tracing required."
        return text

    def to_dict(self) -> dict:
        return {
            "disease_code": self.disease_code,
            "disease_name": self.disease_name,
            "priority": self.priority,
            "case_count": self.case_count,
            "reporting_threshold": self.reporting_threshold,
            "reporting_timeframe": self.reporting_timeframe,
            "location": self.location,
            "client_local_id": self.client_local_id,
            "contact_tracing_required": self.contact_tracing_required,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class OutbreakClusterCandidate:
    """Confirmed cases of one disease at one location, large enough to review.

    Derived on demand from confirmed cases; never persisted.
    """
    disease_code: str
    location: str
    case_count: int
    first_case_date: Optional[datetime] = None
    last_case_date: Optional[datetime] = None
    case_ids: tuple[str, ...] = ()
    window_days: int = 7

    @property
    def key(self) -> tuple[str, str]:
        return (self.disease_code, self.location)

    def to_dict(self) -> dict:
        return {
            "disease_code": self.disease_code,
            "location": self.location,
            "case_count": self.case_count,
            "first_case_date": self.first_case_date.isoformat() if self.first_case_date else None,
            "last_case_date": self.last_case_date.isoformat() if self.last_case_date else None,
            "case_ids": list(self.case_ids),
            "window_days": self.window_days,
        }


class OutbreakStatus(Enum):
    """Status of a declared outbreak."""
    ACTIVE = "active"
    CONTAINED = "contained"
    RESOLVED = "resolved"


OUTBREAK_TRANSITIONS: dict[OutbreakStatus, frozenset[OutbreakStatus]] = {
    OutbreakStatus.ACTIVE: frozenset({OutbreakStatus.CONTAINED, OutbreakStatus.RESOLVED}),
    OutbreakStatus.CONTAINED: frozenset({OutbreakStatus.RESOLVED}),
    OutbreakStatus.RESOLVED: frozenset(),
}


@dataclass
class Outbreak:
    """An outbreak formally declared by an authorized user."""
    disease_code: str
    location: str
    case_count: int
    declared_by: str
    start_date: datetime = field(default_factory=utc_now)
    affected_districts: list[str] = field(default_factory=list)
    status: OutbreakStatus = OutbreakStatus.ACTIVE
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def can_transition(self, new_status: OutbreakStatus) -> bool:
        return new_status in OUTBREAK_TRANSITIONS[self.status]

    def to_record(self) -> dict:
        """Row written to the remote outbreaks table."""
        return {
            "disease_code": self.disease_code,
            "location": self.location,
            "affected_districts": list(self.affected_districts),
            "case_count": self.case_count,
            "start_date": self.start_date.isoformat(),
            "status": self.status.value,
            "declared_by": self.declared_by,
        }

    @classmethod
    def from_record(cls, row: dict) -> "Outbreak":
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            disease_code=row["disease_code"],
            location=row.get("location") or "",
            case_count=int(row.get("case_count") or 0),
            declared_by=row.get("declared_by") or "",
            start_date=parse_timestamp(row.get("start_date")) or utc_now(),
            affected_districts=list(row.get("affected_districts") or []),
            status=OutbreakStatus(row.get("status") or OutbreakStatus.ACTIVE.value),
            created_at=parse_timestamp(row.get("created_at")),
        )
