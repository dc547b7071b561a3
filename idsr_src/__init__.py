"""IDSR Case Sync Module.

Offline-first case reporting for Integrated Disease Surveillance and
Response:
- Case reports are validated and staged locally (SQLite) first
- Staged reports are pushed to the remote store exactly once per
  client_local_id, on reconnect and on a backstop interval
- New cases are checked against notifiable-disease reporting thresholds
- Recent confirmed cases are grouped into outbreak cluster candidates for
  review; declaring an outbreak is an explicit user action
"""

from .alerters import BaseAlerter, LogAlerter, RemoteNotificationAlerter
from .alerts import AlertRuleEngine, normalize_symptoms
from .config import config, IDSRConfig
from .detector import (
    OutbreakClusterDetector,
    declare_outbreak,
    get_active_outbreaks,
    update_outbreak_status,
)
from .diseases import PRIORITY_DISEASES, DiseaseDefinition, get_disease_by_code
from .intake import CaseReportIntake, build_case_report, generate_client_local_id
from .models import (
    CaseReport,
    CaseStatus,
    DiseaseAlert,
    FailureKind,
    Outbreak,
    OutbreakClusterCandidate,
    OutbreakStatus,
    SyncStatus,
)
from .remote import RemoteStore, SupabaseStore
from .service import SyncService
from .staging import StagingDatabase
from .sync import SyncCoordinator, build_coordinator, sync_staged_reports

__all__ = [
    # Config
    "config",
    "IDSRConfig",
    # Staging
    "StagingDatabase",
    # Remote
    "RemoteStore",
    "SupabaseStore",
    # Intake
    "CaseReportIntake",
    "build_case_report",
    "generate_client_local_id",
    # Sync
    "SyncCoordinator",
    "SyncService",
    "build_coordinator",
    "sync_staged_reports",
    # Alerts
    "AlertRuleEngine",
    "normalize_symptoms",
    "BaseAlerter",
    "LogAlerter",
    "RemoteNotificationAlerter",
    # Outbreaks
    "OutbreakClusterDetector",
    "declare_outbreak",
    "update_outbreak_status",
    "get_active_outbreaks",
    # Diseases
    "PRIORITY_DISEASES",
    "DiseaseDefinition",
    "get_disease_by_code",
    # Models
    "CaseReport",
    "CaseStatus",
    "DiseaseAlert",
    "FailureKind",
    "Outbreak",
    "OutbreakClusterCandidate",
    "OutbreakStatus",
    "SyncStatus",
]
