"""Outbreak cluster detection.

Surfaces candidate outbreaks from confirmed case reports: cases of the same
disease at the same location within a trailing window are grouped, and
groups at or above the cluster size are returned for review.

Detection is a stateless read-time computation and can be re-run on every
poll. Declaring an outbreak is a separate, explicit action taken by an
authorized user; the detector never declares one itself.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import config
from .exceptions import OutbreakTransitionError
from .models import (
    CaseStatus,
    Outbreak,
    OutbreakClusterCandidate,
    OutbreakStatus,
    parse_timestamp,
    utc_now,
)
from .remote import RemoteStore

logger = logging.getLogger(__name__)


def _case_date(case: dict) -> Optional[datetime]:
    return parse_timestamp(case.get("report_date") or case.get("created_at"))


class OutbreakClusterDetector:
    """Groups recent confirmed cases by (disease, location)."""

    def __init__(
        self,
        window_days: int | None = None,
        min_cluster_size: int | None = None,
    ):
        self.window_days = window_days if window_days is not None else config.CLUSTER_WINDOW_DAYS
        self.min_cluster_size = (
            min_cluster_size if min_cluster_size is not None else config.MIN_CLUSTER_SIZE
        )

    def cutoff(self, now: datetime | None = None) -> datetime:
        return (now or utc_now()) - timedelta(days=self.window_days)

    def detect(
        self,
        cases: Iterable[dict],
        now: datetime | None = None,
    ) -> list[OutbreakClusterCandidate]:
        """Find cluster candidates in a set of case rows.

        Args:
            cases: Case rows with disease_code, location_detail, status and
                report_date (or created_at)
            now: Reference time (default: current UTC time)

        Returns:
            Candidates with at least ``min_cluster_size`` cases, largest first
        """
        now = parse_timestamp(now) if now else utc_now()
        cutoff = self.cutoff(now)

        groups: dict[tuple[str, str], list[tuple[datetime, Optional[str]]]] = {}
        for case in cases:
            if case.get("status") != CaseStatus.CONFIRMED.value:
                continue

            case_date = _case_date(case)
            if case_date is None or case_date < cutoff or case_date > now:
                continue

            disease_code = case.get("disease_code")
            location = case.get("location_detail")
            if not disease_code or not location:
                # Can't cluster without disease and location
                continue

            key = (disease_code, location)
            case_id = str(case["id"]) if case.get("id") is not None else None
            groups.setdefault(key, []).append((case_date, case_id))

        candidates = []
        for (disease_code, location), members in groups.items():
            if len(members) < self.min_cluster_size:
                continue
            dates = [d for d, _ in members]
            candidates.append(OutbreakClusterCandidate(
                disease_code=disease_code,
                location=location,
                case_count=len(members),
                first_case_date=min(dates),
                last_case_date=max(dates),
                case_ids=tuple(cid for _, cid in members if cid is not None),
                window_days=self.window_days,
            ))

        candidates.sort(key=lambda c: (-c.case_count, c.disease_code, c.location))
        return candidates

    def detect_from_store(
        self,
        remote: RemoteStore,
        now: datetime | None = None,
    ) -> list[OutbreakClusterCandidate]:
        """Query recent confirmed cases from the remote store and detect clusters."""
        now = parse_timestamp(now) if now else utc_now()
        cases = remote.query(
            config.CASE_REPORTS_TABLE,
            {
                "status": CaseStatus.CONFIRMED.value,
                "report_date": ("gte", self.cutoff(now)),
            },
            columns="id,disease_code,location_detail,status,report_date",
        )
        candidates = self.detect(cases, now=now)
        logger.info(
            f"Analyzed {len(cases)} confirmed cases from last {self.window_days} days: "
            f"{len(candidates)} cluster candidate(s)"
        )
        return candidates


def declare_outbreak(
    remote: RemoteStore,
    candidate: OutbreakClusterCandidate,
    declared_by: str,
    affected_districts: list[str] | None = None,
    start_date: datetime | None = None,
) -> Outbreak:
    """Formally declare an outbreak from a reviewed cluster candidate.

    Args:
        remote: Remote store holding the outbreaks table
        candidate: The cluster being declared
        declared_by: Id of the authorized user taking the decision
        affected_districts: Districts affected (default: none recorded)
        start_date: Outbreak start (default: first case in the cluster)

    Returns:
        The stored outbreak
    """
    if not declared_by:
        raise ValueError("An outbreak must be declared by an identified user")

    outbreak = Outbreak(
        disease_code=candidate.disease_code,
        location=candidate.location,
        case_count=candidate.case_count,
        declared_by=declared_by,
        start_date=start_date or candidate.first_case_date or utc_now(),
        affected_districts=list(affected_districts or []),
    )
    row = remote.insert(config.OUTBREAKS_TABLE, outbreak.to_record())
    stored = Outbreak.from_record({**outbreak.to_record(), **row})

    logger.info(
        f"Outbreak declared: {stored.disease_code} in {stored.location} "
        f"({stored.case_count} cases) by {declared_by}"
    )
    return stored


def update_outbreak_status(
    remote: RemoteStore,
    outbreak: Outbreak,
    new_status: OutbreakStatus,
) -> Outbreak:
    """Move a declared outbreak to contained or resolved.

    Raises:
        OutbreakTransitionError: the move is not allowed from the current status
    """
    if not outbreak.can_transition(new_status):
        raise OutbreakTransitionError(
            f"Outbreak {outbreak.id}: cannot move from "
            f"{outbreak.status.value!r} to {new_status.value!r}"
        )
    if outbreak.id is None:
        raise OutbreakTransitionError("Outbreak has not been stored yet")

    rows = remote.update(
        config.OUTBREAKS_TABLE,
        {"id": outbreak.id, "status": outbreak.status.value},
        {"status": new_status.value},
    )
    if not rows:
        raise OutbreakTransitionError(
            f"Outbreak {outbreak.id} is no longer {outbreak.status.value!r}"
        )
    logger.info(f"Outbreak {outbreak.id} {outbreak.status.value} -> {new_status.value}")
    outbreak.status = new_status
    return outbreak


def get_active_outbreaks(remote: RemoteStore) -> list[Outbreak]:
    """Get declared outbreaks that are still active, newest first."""
    rows = remote.query(
        config.OUTBREAKS_TABLE,
        {"status": OutbreakStatus.ACTIVE.value},
        order="start_date.desc",
    )
    return [Outbreak.from_record(row) for row in rows]
