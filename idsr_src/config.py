"""Configuration for IDSR case sync and outbreak signals."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Find and load .env file
_env_candidates = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent / ".env",
    Path(__file__).parent.parent / ".env.template",
]

for env_path in _env_candidates:
    if env_path.exists():
        load_dotenv(env_path)
        break


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class IDSRConfig:
    """Configuration settings for case sync, alerting and cluster detection."""

    # --- Local staging store ---
    STAGING_DB_PATH: str = os.getenv(
        "IDSR_STAGING_DB_PATH",
        str(Path.home() / ".idsr" / "staging.db"),
    )

    # --- Remote store (PostgREST / Supabase) ---
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
    SUPABASE_KEY: str = os.getenv("SUPABASE_KEY", "")
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("IDSR_REQUEST_TIMEOUT", "15"))
    # Requires a unique constraint on case_reports.client_local_id
    USE_UPSERT: bool = _env_flag("IDSR_USE_UPSERT")

    # --- Sync scheduling ---
    SYNC_INTERVAL_SECONDS: int = int(os.getenv("IDSR_SYNC_INTERVAL", "300"))
    CONNECTIVITY_CHECK_SECONDS: int = int(os.getenv("IDSR_CONNECTIVITY_CHECK", "30"))
    # Claims older than this are assumed abandoned by a crashed run
    STALE_SYNC_MINUTES: int = int(os.getenv("IDSR_STALE_SYNC_MINUTES", "15"))

    # --- Alerting ---
    NOTIFY_REMOTE: bool = _env_flag("IDSR_NOTIFY_REMOTE")

    # --- Fixed surveillance rules ---
    CLUSTER_WINDOW_DAYS: int = 7
    MIN_CLUSTER_SIZE: int = 5
    MAX_SUGGESTIONS: int = 5
    INITIAL_CASE_STATUS: str = "suspected"

    # --- Remote tables ---
    CASE_REPORTS_TABLE: str = "case_reports"
    FACILITIES_TABLE: str = "facilities"
    DISTRICTS_TABLE: str = "districts"
    OUTBREAKS_TABLE: str = "outbreaks"
    NOTIFICATIONS_TABLE: str = "notifications"

    def is_remote_configured(self) -> bool:
        """Check if remote store credentials are configured."""
        return bool(self.SUPABASE_URL and self.SUPABASE_KEY)


config = IDSRConfig()
