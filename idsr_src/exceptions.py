"""Exception hierarchy for the IDSR sync pipeline."""


class IDSRError(Exception):
    """Base class for all IDSR errors."""


# --- Local staging store ---

class StagingError(IDSRError):
    """Storage-layer failure in the local staging store."""


class ReportNotFoundError(StagingError):
    """No staged report with the given client_local_id."""

    def __init__(self, client_local_id: str):
        super().__init__(f"No staged report with client_local_id {client_local_id!r}")
        self.client_local_id = client_local_id


class CorruptReportError(StagingError):
    """A stored row that no longer decodes into a CaseReport."""

    def __init__(self, client_local_id: str, reason: str):
        super().__init__(f"Report {client_local_id} cannot be read: {reason}")
        self.client_local_id = client_local_id
        self.reason = reason


class InvalidTransitionError(StagingError):
    """A sync-state change that the state machine does not allow."""

    def __init__(self, client_local_id: str, current: str, requested: str):
        super().__init__(
            f"Report {client_local_id}: cannot move from {current!r} to {requested!r}"
        )
        self.client_local_id = client_local_id
        self.current = current
        self.requested = requested


# --- Intake ---

class CaseValidationError(IDSRError):
    """A case report failed validation before staging."""

    def __init__(self, field_errors: dict[str, str]):
        summary = "; ".join(f"{k}: {v}" for k, v in sorted(field_errors.items()))
        super().__init__(f"Validation failed: {summary}")
        self.field_errors = field_errors


# --- Remote store ---

class RemoteStoreError(IDSRError):
    """A remote store call failed."""

    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteTransportError(RemoteStoreError):
    """Network failure, timeout, or server-side error. Safe to retry."""

    retryable = True


class RemoteValidationError(RemoteStoreError):
    """The remote store rejected the request. Needs correction before retry."""

    retryable = False


class RemoteConflictError(RemoteValidationError):
    """Unique constraint violation (e.g. client_local_id already inserted)."""


# --- Outbreaks ---

class OutbreakTransitionError(IDSRError):
    """An outbreak status change that is not allowed."""
