"""Tests for outbreak cluster detection and outbreak declaration."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeRemoteStore
from idsr_src.detector import (
    OutbreakClusterDetector,
    declare_outbreak,
    get_active_outbreaks,
    update_outbreak_status,
)
from idsr_src.exceptions import OutbreakTransitionError
from idsr_src.models import OutbreakClusterCandidate, OutbreakStatus

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_case(case_id, disease_code="CHOL", location="Ward 4", days_ago=1, status="confirmed"):
    return {
        "id": case_id,
        "disease_code": disease_code,
        "location_detail": location,
        "status": status,
        "report_date": (NOW - timedelta(days=days_ago)).isoformat(),
    }


@pytest.fixture
def detector():
    return OutbreakClusterDetector()


class TestDetect:
    """Test grouping confirmed cases into candidates."""

    def test_four_cases_no_candidate(self, detector):
        cases = [make_case(f"c{i}") for i in range(4)]
        assert detector.detect(cases, now=NOW) == []

    def test_fifth_case_makes_candidate(self, detector):
        cases = [make_case(f"c{i}") for i in range(5)]

        candidates = detector.detect(cases, now=NOW)

        assert len(candidates) == 1
        assert candidates[0].disease_code == "CHOL"
        assert candidates[0].location == "Ward 4"
        assert candidates[0].case_count == 5
        assert set(candidates[0].case_ids) == {"c0", "c1", "c2", "c3", "c4"}

    def test_only_confirmed_cases_count(self, detector):
        cases = [make_case(f"c{i}") for i in range(4)]
        cases.append(make_case("s1", status="suspected"))
        cases.append(make_case("p1", status="probable"))

        assert detector.detect(cases, now=NOW) == []

    def test_cases_outside_window_ignored(self, detector):
        cases = [make_case(f"c{i}") for i in range(4)]
        cases.append(make_case("old", days_ago=8))

        assert detector.detect(cases, now=NOW) == []

    def test_future_cases_ignored(self, detector):
        cases = [make_case(f"c{i}") for i in range(4)]
        cases.append(make_case("future", days_ago=-1))

        assert detector.detect(cases, now=NOW) == []

    def test_grouped_by_disease_and_location(self, detector):
        cases = [make_case(f"a{i}", location="Ward 4") for i in range(3)]
        cases += [make_case(f"b{i}", location="Ward 5") for i in range(3)]
        cases += [make_case(f"m{i}", disease_code="MEAS", location="Ward 4") for i in range(3)]

        assert detector.detect(cases, now=NOW) == []

    def test_location_match_is_exact(self, detector):
        cases = [make_case(f"a{i}", location="Ward 4") for i in range(4)]
        cases.append(make_case("a5", location="ward 4"))

        assert detector.detect(cases, now=NOW) == []

    def test_separator_in_location_does_not_collide(self, detector):
        # "CHOL" at "X|Y" must not merge with "CHOL|X" at "Y"
        cases = [make_case(f"a{i}", disease_code="CHOL", location="X|Y") for i in range(3)]
        cases += [make_case(f"b{i}", disease_code="CHOL|X", location="Y") for i in range(3)]

        assert detector.detect(cases, now=NOW) == []

    def test_cases_without_location_skipped(self, detector):
        cases = [make_case(f"c{i}", location=None) for i in range(6)]
        assert detector.detect(cases, now=NOW) == []

    def test_sorted_largest_first(self, detector):
        cases = [make_case(f"a{i}", location="Ward 4") for i in range(5)]
        cases += [make_case(f"b{i}", disease_code="MEAS", location="Ward 1") for i in range(7)]

        candidates = detector.detect(cases, now=NOW)

        assert [(c.disease_code, c.case_count) for c in candidates] == [("MEAS", 7), ("CHOL", 5)]

    def test_case_dates(self, detector):
        cases = [make_case(f"c{i}", days_ago=i + 1) for i in range(5)]

        candidate = detector.detect(cases, now=NOW)[0]

        assert candidate.first_case_date == NOW - timedelta(days=5)
        assert candidate.last_case_date == NOW - timedelta(days=1)

    def test_stateless(self, detector):
        cases = [make_case(f"c{i}") for i in range(5)]
        assert detector.detect(cases, now=NOW) == detector.detect(cases, now=NOW)

    def test_empty_input(self, detector):
        assert detector.detect([], now=NOW) == []

    def test_explicit_zero_window_kept(self):
        detector = OutbreakClusterDetector(window_days=0)
        cases = [make_case(f"c{i}") for i in range(5)]

        assert detector.window_days == 0
        assert detector.detect(cases, now=NOW) == []

    def test_explicit_zero_cluster_size_kept(self):
        detector = OutbreakClusterDetector(min_cluster_size=0)

        candidates = detector.detect([make_case("c0")], now=NOW)

        assert detector.min_cluster_size == 0
        assert [c.case_count for c in candidates] == [1]


class TestDetectFromStore:
    """Test detection over remote case rows."""

    def test_queries_recent_confirmed_cases(self, detector):
        remote = FakeRemoteStore()
        remote.seed("case_reports", *[make_case(f"c{i}") for i in range(5)])
        remote.seed("case_reports", make_case("old", days_ago=30))

        candidates = detector.detect_from_store(remote, now=NOW)

        assert len(candidates) == 1
        assert candidates[0].case_count == 5


@pytest.fixture
def candidate():
    return OutbreakClusterCandidate(
        disease_code="CHOL",
        location="Ward 4",
        case_count=6,
        first_case_date=NOW - timedelta(days=5),
        last_case_date=NOW,
    )


class TestOutbreakDeclaration:
    """Test explicit outbreak declaration and status changes."""

    def test_declare_creates_active_outbreak(self, candidate):
        remote = FakeRemoteStore()

        outbreak = declare_outbreak(remote, candidate, declared_by="user-9", affected_districts=["Kisumu"])

        assert outbreak.id is not None
        assert outbreak.status == OutbreakStatus.ACTIVE
        assert outbreak.start_date == candidate.first_case_date
        row = remote.rows("outbreaks")[0]
        assert row["disease_code"] == "CHOL"
        assert row["case_count"] == 6
        assert row["declared_by"] == "user-9"
        assert row["affected_districts"] == ["Kisumu"]

    def test_declare_requires_user(self, candidate):
        with pytest.raises(ValueError):
            declare_outbreak(FakeRemoteStore(), candidate, declared_by="")

    def test_detection_never_declares(self, detector):
        remote = FakeRemoteStore()
        remote.seed("case_reports", *[make_case(f"c{i}") for i in range(5)])

        detector.detect_from_store(remote, now=NOW)

        assert remote.rows("outbreaks") == []

    def test_contain_then_resolve(self, candidate):
        remote = FakeRemoteStore()
        outbreak = declare_outbreak(remote, candidate, declared_by="user-9")

        update_outbreak_status(remote, outbreak, OutbreakStatus.CONTAINED)
        update_outbreak_status(remote, outbreak, OutbreakStatus.RESOLVED)

        assert outbreak.status == OutbreakStatus.RESOLVED
        assert remote.rows("outbreaks")[0]["status"] == "resolved"

    def test_resolved_is_final(self, candidate):
        remote = FakeRemoteStore()
        outbreak = declare_outbreak(remote, candidate, declared_by="user-9")
        update_outbreak_status(remote, outbreak, OutbreakStatus.RESOLVED)

        with pytest.raises(OutbreakTransitionError):
            update_outbreak_status(remote, outbreak, OutbreakStatus.ACTIVE)

    def test_stale_status_rejected(self, candidate):
        remote = FakeRemoteStore()
        outbreak = declare_outbreak(remote, candidate, declared_by="user-9")
        remote.rows("outbreaks")[0]["status"] = "resolved"

        with pytest.raises(OutbreakTransitionError):
            update_outbreak_status(remote, outbreak, OutbreakStatus.CONTAINED)
        assert outbreak.status == OutbreakStatus.ACTIVE

    def test_active_outbreaks(self, candidate):
        remote = FakeRemoteStore()
        first = declare_outbreak(remote, candidate, declared_by="user-9")
        declare_outbreak(remote, candidate, declared_by="user-9")
        update_outbreak_status(remote, first, OutbreakStatus.RESOLVED)

        active = get_active_outbreaks(remote)

        assert len(active) == 1
        assert active[0].status == OutbreakStatus.ACTIVE
