"""Notifiable disease catalog and case-report vocabularies.

Priority diseases follow the WHO IDSR list for the African region. Each
definition carries the symptom set used for diagnosis suggestions and the
reporting threshold/timeframe used to decide when case counts must be
escalated.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DiseaseCategory(Enum):
    """IDSR disease grouping."""
    EPIDEMIC_PRONE = "epidemic_prone"
    ENDEMIC = "endemic"
    NEGLECTED = "neglected"
    OTHER = "other"


class DiseasePriority(Enum):
    """Reporting priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


IMMEDIATE = "immediate"

# Reporting timeframe bucket -> hours
TIMEFRAME_HOURS: dict[str, int] = {
    "24h": 24,
    "7d": 168,
    "30d": 720,
}


@dataclass(frozen=True)
class DiseaseDefinition:
    """Case definition and reporting rules for a notifiable disease."""
    code: str
    name: str
    category: DiseaseCategory
    priority: DiseasePriority
    symptoms: tuple[str, ...]
    case_definition: str
    reporting_threshold: int  # Cases that trigger an alert
    reporting_timeframe: str  # 'immediate', '24h', '7d', '30d'
    requires_lab_confirmation: bool
    contact_tracing_required: bool
    icd11_code: Optional[str] = None

    @property
    def is_immediate(self) -> bool:
        return self.reporting_timeframe == IMMEDIATE

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category.value,
            "priority": self.priority.value,
            "icd11_code": self.icd11_code,
            "symptoms": list(self.symptoms),
            "case_definition": self.case_definition,
            "reporting_threshold": self.reporting_threshold,
            "reporting_timeframe": self.reporting_timeframe,
            "requires_lab_confirmation": self.requires_lab_confirmation,
            "contact_tracing_required": self.contact_tracing_required,
        }


PRIORITY_DISEASES: tuple[DiseaseDefinition, ...] = (
    # Epidemic-prone diseases
    DiseaseDefinition(
        code="CHOL",
        name="Cholera",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1A00",
        symptoms=("acute_watery_diarrhea", "vomiting", "dehydration"),
        case_definition="Acute watery diarrhea with or without vomiting in persons aged 5 years or more",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="MEAS",
        name="Measles",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1F03",
        symptoms=("fever", "rash", "cough", "conjunctivitis"),
        case_definition="Fever and maculopapular rash with cough, coryza or conjunctivitis",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="YF",
        name="Yellow Fever",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1D47",
        symptoms=("fever", "jaundice", "bleeding", "abdominal_pain"),
        case_definition="Acute onset of fever with jaundice within 2 weeks of onset",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),
    DiseaseDefinition(
        code="EBOLA",
        name="Ebola Virus Disease",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1D60",
        symptoms=("fever", "bleeding", "vomiting", "diarrhea", "weakness"),
        case_definition="Sudden onset of fever with bleeding or contact with suspected case",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="COVID",
        name="COVID-19",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="RA01",
        symptoms=("fever", "cough", "breathing_difficulty", "loss_of_taste_smell"),
        case_definition="Acute respiratory illness with fever, cough, or breathing difficulty",
        reporting_threshold=5,
        reporting_timeframe="24h",
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="MPOX",
        name="Monkeypox",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1E72",
        symptoms=("fever", "rash", "lymphadenopathy", "headache"),
        case_definition="Acute rash illness with fever and lymphadenopathy",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="MENIN",
        name="Meningococcal Meningitis",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="1C1B.0",
        symptoms=("fever", "headache", "stiff_neck", "altered_consciousness"),
        case_definition="Sudden onset of fever with stiff neck or altered consciousness",
        reporting_threshold=2,
        reporting_timeframe="24h",
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),

    # Endemic diseases
    DiseaseDefinition(
        code="MAL",
        name="Malaria",
        category=DiseaseCategory.ENDEMIC,
        priority=DiseasePriority.MEDIUM,
        icd11_code="1F40",
        symptoms=("fever", "chills", "sweating", "headache"),
        case_definition="Fever with or without other symptoms in malaria-endemic area",
        reporting_threshold=10,
        reporting_timeframe="7d",
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),
    DiseaseDefinition(
        code="TB",
        name="Tuberculosis",
        category=DiseaseCategory.ENDEMIC,
        priority=DiseasePriority.MEDIUM,
        icd11_code="1B10",
        symptoms=("cough", "weight_loss", "night_sweats", "fever"),
        case_definition="Cough for 2 weeks or more with weight loss and night sweats",
        reporting_threshold=10,
        reporting_timeframe="7d",
        requires_lab_confirmation=True,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="HIV",
        name="HIV/AIDS",
        category=DiseaseCategory.ENDEMIC,
        priority=DiseasePriority.MEDIUM,
        icd11_code="1C62",
        symptoms=("weight_loss", "chronic_diarrhea", "fever", "opportunistic_infections"),
        case_definition="Clinical signs with positive HIV test",
        reporting_threshold=20,
        reporting_timeframe="30d",
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),

    # Other priority diseases
    DiseaseDefinition(
        code="DENG",
        name="Dengue Fever",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.MEDIUM,
        icd11_code="1D2Z",
        symptoms=("fever", "headache", "joint_pain", "rash", "bleeding"),
        case_definition="Acute febrile illness with headache and joint/muscle pain",
        reporting_threshold=5,
        reporting_timeframe="7d",
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),
    DiseaseDefinition(
        code="TYPH",
        name="Typhoid Fever",
        category=DiseaseCategory.ENDEMIC,
        priority=DiseasePriority.MEDIUM,
        icd11_code="1A07",
        symptoms=("fever", "headache", "abdominal_pain", "constipation"),
        case_definition="Prolonged fever with headache and abdominal symptoms",
        reporting_threshold=5,
        reporting_timeframe="7d",
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),
    DiseaseDefinition(
        code="RABIES",
        name="Rabies",
        category=DiseaseCategory.OTHER,
        priority=DiseasePriority.HIGH,
        icd11_code="1C82",
        symptoms=("hydrophobia", "altered_consciousness", "paralysis", "animal_bite"),
        case_definition="History of animal bite with neurological symptoms",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=False,
        contact_tracing_required=True,
    ),
    DiseaseDefinition(
        code="POLIO",
        name="Acute Flaccid Paralysis (AFP)",
        category=DiseaseCategory.EPIDEMIC_PRONE,
        priority=DiseasePriority.HIGH,
        icd11_code="8C70",
        symptoms=("paralysis", "fever", "weakness"),
        case_definition="Acute onset of flaccid paralysis in child under 15 years",
        reporting_threshold=1,
        reporting_timeframe=IMMEDIATE,
        requires_lab_confirmation=True,
        contact_tracing_required=False,
    ),
)

# Symptom code -> display label
SYMPTOM_OPTIONS: dict[str, str] = {
    "fever": "Fever",
    "cough": "Cough",
    "rash": "Rash",
    "diarrhea": "Diarrhea",
    "acute_watery_diarrhea": "Acute Watery Diarrhea",
    "vomiting": "Vomiting",
    "headache": "Headache",
    "breathing_difficulty": "Difficulty Breathing",
    "joint_pain": "Joint Pain",
    "muscle_pain": "Muscle Pain",
    "weakness": "Weakness/Fatigue",
    "bleeding": "Bleeding",
    "jaundice": "Jaundice",
    "dehydration": "Dehydration",
    "stiff_neck": "Stiff Neck",
    "altered_consciousness": "Altered Consciousness",
    "conjunctivitis": "Red Eyes (Conjunctivitis)",
    "loss_of_taste_smell": "Loss of Taste or Smell",
    "lymphadenopathy": "Swollen Lymph Nodes",
    "chills": "Chills",
    "sweating": "Sweating",
    "weight_loss": "Weight Loss",
    "night_sweats": "Night Sweats",
    "abdominal_pain": "Abdominal Pain",
    "paralysis": "Paralysis",
    "hydrophobia": "Fear of Water",
    "animal_bite": "Animal Bite",
    "other": "Other",
}

AGE_GROUPS: dict[str, str] = {
    "0-1": "0-1 year",
    "1-5": "1-5 years",
    "5-15": "5-15 years",
    "15-49": "15-49 years",
    "50+": "50+ years",
}

GENDER_OPTIONS: dict[str, str] = {
    "M": "Male",
    "F": "Female",
    "O": "Other",
    "U": "Unknown",
}

_BY_CODE: dict[str, DiseaseDefinition] = {d.code: d for d in PRIORITY_DISEASES}

_PRIORITY_ORDER = {
    DiseasePriority.HIGH: 0,
    DiseasePriority.MEDIUM: 1,
    DiseasePriority.LOW: 2,
}


def get_disease_by_code(code: str | None) -> Optional[DiseaseDefinition]:
    """Look up a disease definition. Returns None for unknown codes."""
    if not code:
        return None
    return _BY_CODE.get(code.strip().upper())


def get_diseases_for_dropdown() -> list[dict]:
    """Disease options ordered high -> low priority, catalog order within a priority."""
    options = [
        {
            "value": d.code,
            "label": f"{d.name} ({d.code})",
            "priority": d.priority.value,
        }
        for d in PRIORITY_DISEASES
    ]
    return sorted(options, key=lambda o: _PRIORITY_ORDER[DiseasePriority(o["priority"])])
