"""Case report intake.

Validates a submitted report, gives it its idempotency key and stages it
for delivery. Business validation happens here, before staging; the staging
store itself never validates.
"""

import logging
import time
import uuid
from typing import Any, Optional

from .alerts import AlertRuleEngine, normalize_symptoms
from .config import config
from .diseases import AGE_GROUPS, GENDER_OPTIONS, DiseaseDefinition, get_disease_by_code
from .exceptions import CaseValidationError
from .models import CaseReport, CaseStatus, parse_timestamp, utc_now
from .staging import StagingDatabase

logger = logging.getLogger(__name__)

CLIENT_ID_PREFIX = "CASE"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

_GENDER_ALIASES = {
    "MALE": "M",
    "FEMALE": "F",
    "OTHER": "O",
    "UNKNOWN": "U",
}


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_client_local_id() -> str:
    """Generate a new idempotency key, e.g. ``CASE-LZ1K3M2A-7QXB``.

    Millisecond timestamp plus random suffix, both base36. Also serves as
    the receipt number shown to the reporter.
    """
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = _to_base36(uuid.uuid4().int)[-4:]
    return f"{CLIENT_ID_PREFIX}-{timestamp}-{suffix}"


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_case_report(data: dict) -> dict:
    """Validate and normalize a submitted case report.

    Returns:
        Cleaned field values

    Raises:
        CaseValidationError: with one message per invalid field
    """
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}

    disease_code = (_clean_text(data.get("disease_code")) or "").upper()
    if not disease_code:
        errors["disease_code"] = "Disease is required"
    elif get_disease_by_code(disease_code) is None:
        errors["disease_code"] = f"Unknown disease code {disease_code!r}"
    cleaned["disease_code"] = disease_code

    age_group = _clean_text(data.get("age_group"))
    if age_group not in AGE_GROUPS:
        errors["age_group"] = "Please select a valid age group"
    cleaned["age_group"] = age_group

    gender = (_clean_text(data.get("gender")) or "").upper()
    gender = _GENDER_ALIASES.get(gender, gender)
    if gender not in GENDER_OPTIONS:
        errors["gender"] = "Please select a valid gender"
    cleaned["gender"] = gender

    symptoms = normalize_symptoms(data.get("symptoms"))
    if not symptoms:
        errors["symptoms"] = "At least one symptom is required"
    cleaned["symptoms"] = symptoms

    location = _clean_text(data.get("location") or data.get("location_detail"))
    if not location:
        errors["location"] = "Location is required"
    cleaned["location"] = location

    status = data.get("status") or config.INITIAL_CASE_STATUS
    try:
        cleaned["status"] = status if isinstance(status, CaseStatus) else CaseStatus(status)
    except ValueError:
        errors["status"] = f"Invalid case status {status!r}"

    attachments = data.get("attachments") or []
    if isinstance(attachments, str):
        attachments = [attachments]
    if not all(isinstance(a, str) and a for a in attachments):
        errors["attachments"] = "Attachments must be non-empty references"
    cleaned["attachments"] = list(attachments)

    created_at = data.get("created_at")
    if created_at is not None:
        parsed = parse_timestamp(created_at)
        if parsed is None:
            errors["created_at"] = f"Invalid timestamp {created_at!r}"
        cleaned["created_at"] = parsed

    cleaned["facility"] = _clean_text(data.get("facility"))
    cleaned["district"] = _clean_text(data.get("district"))
    cleaned["notes"] = _clean_text(data.get("notes"))

    if errors:
        raise CaseValidationError(errors)
    return cleaned


def build_case_report(
    data: dict,
    reporter_id: str | None = None,
    client_local_id: str | None = None,
) -> CaseReport:
    """Validate submitted data and build a new CaseReport."""
    cleaned = validate_case_report(data)
    return CaseReport(
        client_local_id=client_local_id or data.get("client_local_id") or generate_client_local_id(),
        disease_code=cleaned["disease_code"],
        age_group=cleaned["age_group"],
        gender=cleaned["gender"],
        symptoms=cleaned["symptoms"],
        location=cleaned["location"],
        facility=cleaned["facility"],
        district=cleaned["district"],
        notes=cleaned["notes"],
        attachments=cleaned["attachments"],
        reporter_id=reporter_id or _clean_text(data.get("reporter_id")),
        status=cleaned["status"],
        created_at=cleaned.get("created_at") or utc_now(),
    )


class CaseReportIntake:
    """Entry point for the reporting workflow."""

    def __init__(
        self,
        staging: StagingDatabase,
        rule_engine: AlertRuleEngine | None = None,
    ):
        self.staging = staging
        self.rule_engine = rule_engine or AlertRuleEngine()

    def submit(self, data: dict, reporter_id: str | None = None) -> CaseReport:
        """Validate and stage a report. Delivery happens on the next sync.

        Returns:
            The staged report; its client_local_id is the receipt number
        """
        report = build_case_report(data, reporter_id=reporter_id)
        self.staging.stage(report)
        logger.info(
            f"Case {report.client_local_id} staged: {report.disease_code} at {report.location}"
        )
        return report

    def suggest_diseases(self, symptoms) -> list[DiseaseDefinition]:
        """Diagnosis suggestions to show while the report is being filled in."""
        return self.rule_engine.suggest(symptoms)
