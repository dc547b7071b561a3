"""Shared fixtures: temporary staging DB and an in-memory remote store."""

import copy
import itertools
from datetime import datetime

import pytest

from idsr_src.alerters import LogAlerter
from idsr_src.alerts import AlertRuleEngine
from idsr_src.exceptions import RemoteConflictError, RemoteTransportError
from idsr_src.models import CaseReport, parse_timestamp, utc_now
from idsr_src.remote import RemoteStore
from idsr_src.staging import StagingDatabase
from idsr_src.sync import SyncCoordinator


def _compare(op, value, operand):
    if isinstance(operand, datetime):
        value = parse_timestamp(value)
        if value is None:
            return False
    if op == "eq":
        return value == operand
    if op == "neq":
        return value != operand
    if op == "in":
        return value in operand
    if op == "is":
        return value is operand
    if value is None:
        return False
    return {
        "gt": value > operand,
        "gte": value >= operand,
        "lt": value < operand,
        "lte": value <= operand,
    }[op]


def _matches(row, filters):
    for column, criteria in (filters or {}).items():
        conditions = criteria if isinstance(criteria, list) else [criteria]
        for condition in conditions:
            op, operand = condition if isinstance(condition, tuple) else ("eq", condition)
            if operand is None and op == "eq":
                op = "is"
            if not _compare(op, row.get(column), operand):
                return False
    return True


class FakeRemoteStore(RemoteStore):
    """In-memory RemoteStore with failure injection.

    ``insert_errors`` maps a client_local_id to the exception raised when
    that record is inserted. ``lost_responses`` holds client_local_ids whose
    insert lands but whose response is lost (transport error after write).
    ``unique_client_ids`` enforces a unique constraint on client_local_id.
    """

    def __init__(self, unique_client_ids=False, supports_upsert=False):
        self.tables: dict[str, list[dict]] = {}
        self.unique_client_ids = unique_client_ids
        self.supports_upsert = supports_upsert
        self.insert_errors: dict[str, Exception] = {}
        self.lost_responses: set[str] = set()
        self.failing_tables: set[str] = set()
        self.available = True
        self.insert_calls = 0
        self._ids = itertools.count(1)

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def seed(self, table, *rows):
        for row in rows:
            self.rows(table).append(dict(row))

    def insert(self, table, record):
        self.insert_calls += 1
        if table in self.failing_tables:
            raise RemoteTransportError(f"{table} unavailable")

        local_id = record.get("client_local_id")
        if local_id in self.insert_errors:
            raise self.insert_errors[local_id]
        if self.unique_client_ids and local_id is not None:
            if any(r.get("client_local_id") == local_id for r in self.rows(table)):
                raise RemoteConflictError(
                    f"duplicate key value violates unique constraint ({local_id})",
                    status_code=409,
                )

        row = copy.deepcopy(record)
        row["id"] = f"{table}-{next(self._ids)}"
        row.setdefault("created_at", utc_now().isoformat())
        self.rows(table).append(row)

        if local_id in self.lost_responses:
            self.lost_responses.discard(local_id)
            raise RemoteTransportError("Connection reset after write")
        return copy.deepcopy(row)

    def upsert(self, table, record, on_conflict):
        if any(r.get(on_conflict) == record.get(on_conflict) for r in self.rows(table)):
            return None
        return self.insert(table, record)

    def query(self, table, filters=None, columns="*", order=None, limit=None):
        if table in self.failing_tables:
            raise RemoteTransportError(f"{table} unavailable")

        found = [
            copy.deepcopy(r) for r in self.rows(table)
            if _matches(r, filters)
        ]
        if order:
            column, _, direction = order.partition(".")
            found.sort(key=lambda r: r.get(column) or "", reverse=direction == "desc")
        if limit is not None:
            found = found[:limit]
        return found

    def update(self, table, filters, patch):
        if table in self.failing_tables:
            raise RemoteTransportError(f"{table} unavailable")

        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(patch)
                updated.append(copy.deepcopy(row))
        return updated

    def is_available(self):
        return self.available


def corrupt_status(staging, client_local_id, value="bogus"):
    """Write a case status that no longer decodes, bypassing validation."""
    with staging._get_connection() as conn:
        conn.execute(
            "UPDATE staged_case_reports SET status = ? WHERE client_local_id = ?",
            (value, client_local_id),
        )
        conn.commit()


_report_ids = itertools.count(1)


@pytest.fixture
def make_report():
    """Factory for CaseReport objects with sensible defaults."""
    def _make(**overrides):
        data = {
            "client_local_id": f"CASE-TEST-{next(_report_ids):04d}",
            "disease_code": "MAL",
            "age_group": "15-49",
            "gender": "F",
            "symptoms": ["fever", "chills"],
            "location": "Ward 4, Kisumu",
            "facility": "Kisumu County Hospital",
            "district": "Kisumu",
        }
        data.update(overrides)
        return CaseReport(**data)
    return _make


@pytest.fixture
def valid_submission():
    return {
        "disease_code": "mal",
        "age_group": "15-49",
        "gender": "female",
        "symptoms": ["Fever", "chills"],
        "location": "  Ward 4, Kisumu ",
        "facility": "Kisumu County Hospital",
        "district": "Kisumu",
    }


@pytest.fixture
def staging(tmp_path):
    return StagingDatabase(tmp_path / "staging.db")


@pytest.fixture
def remote():
    store = FakeRemoteStore()
    store.seed("facilities", {"id": "fac-1", "name": "Kisumu County Hospital"})
    store.seed("districts", {"id": "dist-1", "name": "Kisumu"})
    return store


@pytest.fixture
def log_alerter():
    return LogAlerter()


@pytest.fixture
def coordinator(staging, remote, log_alerter):
    return SyncCoordinator(
        staging,
        remote,
        rule_engine=AlertRuleEngine(),
        alerters=[log_alerter],
    )
