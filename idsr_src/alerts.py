"""Alert rule engine.

Suggests likely diseases from a symptom set and decides whether case counts
cross a notifiable disease's reporting threshold.

Suggestion score for a disease:
    matched = |input symptoms ∩ disease symptoms|
    score   = matched * (matched / |disease symptoms|)

This favours diseases whose symptom list is largely covered by the input
while still ranking more matches above fewer. It is deterministic and easy
to explain to a reporting officer; it is not a statistical classifier.
"""

import logging
from typing import Iterable, Optional, Sequence

from .config import config
from .diseases import PRIORITY_DISEASES, TIMEFRAME_HOURS, DiseaseDefinition
from .models import DiseaseAlert

logger = logging.getLogger(__name__)

# Lookback used to count cases for diseases reported immediately
IMMEDIATE_WINDOW_HOURS = 24


def normalize_symptoms(symptoms: Iterable[str] | str | None) -> list[str]:
    """Lower-case, strip and de-duplicate symptoms, keeping first-seen order.

    A comma-separated string is accepted for free-text entry.
    """
    if not symptoms:
        return []
    if isinstance(symptoms, str):
        symptoms = symptoms.split(",")

    seen: list[str] = []
    for symptom in symptoms:
        value = str(symptom).strip().lower().replace(" ", "_")
        if value and value not in seen:
            seen.append(value)
    return seen


class AlertRuleEngine:
    """Scores symptoms against the catalog and applies reporting thresholds."""

    def __init__(self, catalog: Sequence[DiseaseDefinition] | None = None):
        self.catalog: tuple[DiseaseDefinition, ...] = tuple(
            PRIORITY_DISEASES if catalog is None else catalog
        )
        self._by_code = {d.code: d for d in self.catalog}

    def get_disease(self, code: str | None) -> Optional[DiseaseDefinition]:
        if not code:
            return None
        return self._by_code.get(code.strip().upper())

    # --- Diagnosis suggestions ---

    @staticmethod
    def score(symptoms: Iterable[str], disease: DiseaseDefinition) -> float:
        """Precision-weighted overlap between a symptom set and a disease."""
        if not disease.symptoms:
            return 0.0
        matched = len(set(symptoms) & set(disease.symptoms))
        return matched * (matched / len(disease.symptoms))

    def suggest(
        self,
        symptoms: Iterable[str] | str | None,
        limit: int | None = None,
    ) -> list[DiseaseDefinition]:
        """Suggest up to ``limit`` diseases, best match first.

        Diseases with no matching symptom are excluded. Equal scores keep
        catalog order.
        """
        normalized = normalize_symptoms(symptoms)
        if not normalized:
            return []

        limit = config.MAX_SUGGESTIONS if limit is None else limit
        scored = [
            (self.score(normalized, disease), disease)
            for disease in self.catalog
        ]
        scored = [(s, d) for s, d in scored if s > 0]
        # sorted() is stable, so ties stay in catalog order
        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [disease for _, disease in scored[:limit]]

    # --- Threshold alerts ---

    @staticmethod
    def timeframe_hours(timeframe: str) -> Optional[int]:
        """Hours covered by a reporting timeframe bucket, None if unknown."""
        return TIMEFRAME_HOURS.get(timeframe)

    def window_hours(self, code: str) -> Optional[int]:
        """Lookback to use when counting cases for a disease."""
        disease = self.get_disease(code)
        if disease is None:
            return None
        if disease.is_immediate:
            return IMMEDIATE_WINDOW_HOURS
        return self.timeframe_hours(disease.reporting_timeframe)

    def should_alert(self, disease_code: str, case_count: int, elapsed_hours: float) -> bool:
        """Decide whether ``case_count`` cases over ``elapsed_hours`` need an alert.

        Immediate diseases alert as soon as the count reaches the threshold.
        Others alert only when the count reaches the threshold within the
        disease's reporting timeframe. Unknown diseases and unknown
        timeframes never alert.
        """
        disease = self.get_disease(disease_code)
        if disease is None:
            logger.debug(f"No alert rule for unknown disease {disease_code!r}")
            return False

        if disease.is_immediate:
            return case_count >= disease.reporting_threshold

        bound = self.timeframe_hours(disease.reporting_timeframe)
        if bound is None:
            logger.warning(
                f"Unknown reporting timeframe {disease.reporting_timeframe!r} "
                f"for {disease.code}; not alerting"
            )
            return False

        if elapsed_hours <= bound:
            return case_count >= disease.reporting_threshold
        return False

    def evaluate(
        self,
        disease_code: str,
        case_count: int,
        elapsed_hours: float,
        location: str | None = None,
        client_local_id: str | None = None,
    ) -> Optional[DiseaseAlert]:
        """Build an alert if the rule fires, else None."""
        if not self.should_alert(disease_code, case_count, elapsed_hours):
            return None

        disease = self.get_disease(disease_code)
        return DiseaseAlert(
            disease_code=disease.code,
            disease_name=disease.name,
            priority=disease.priority.value,
            case_count=case_count,
            reporting_threshold=disease.reporting_threshold,
            reporting_timeframe=disease.reporting_timeframe,
            location=location,
            client_local_id=client_local_id,
            contact_tracing_required=disease.contact_tracing_required,
        )
