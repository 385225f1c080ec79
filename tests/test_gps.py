"""
Tests for GPS time extraction and handoff estimation
"""

from datetime import datetime, timezone

import pytest

from jobtracker.services.gps import (
    estimate_handoff_from_local, extract_gps_timestamp, parse_gps_coordinates, resolve_handoff_time,
)

SAMPLE = "Lat:41.908566,Lon:-87.677826,Acc:6.550611,Alt:190.527401,Time:1700000000"


def test_extract_epoch_seconds():
    assert extract_gps_timestamp(SAMPLE) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_extract_epoch_milliseconds():
    ts = extract_gps_timestamp("Lat:1,Lon:2,Time:1700000000500")
    assert ts == datetime(2023, 11, 14, 22, 13, 20, 500000, tzinfo=timezone.utc)


def test_extract_fractional_seconds():
    ts = extract_gps_timestamp("Time:1756312898.246060")
    assert ts.year == 2025
    assert ts.tzinfo is not None


@pytest.mark.parametrize("value", [None, "", "Time:abc", "Lat:41.9,Lon:-87.6", 12345, "Time:100"])
def test_extract_unusable_values_return_none(value):
    assert extract_gps_timestamp(value) is None


def test_parse_coordinates():
    fix = parse_gps_coordinates(SAMPLE)
    assert fix.lat == pytest.approx(41.908566)
    assert fix.lon == pytest.approx(-87.677826)
    assert fix.accuracy == pytest.approx(6.550611)
    assert fix.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert parse_gps_coordinates("Time:1700000000") is None


def test_local_estimate_picks_latest_offset_before_completion():
    completed = datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)
    est = estimate_handoff_from_local("01/01/2025", "9:30 AM", completed)
    # 9:30 local at UTC-7 is 16:30Z; UTC-8 would land after completion
    assert est.timestamp == datetime(2025, 1, 1, 16, 30, tzinfo=timezone.utc)
    assert est.source == "local_heuristic"
    assert est.confidence == "low"


def test_local_estimate_accepts_24h_and_iso_dates():
    completed = datetime(2025, 1, 1, 23, 0, tzinfo=timezone.utc)
    est = estimate_handoff_from_local("2025-01-01", "13:15", completed, offsets=[-5])
    assert est.timestamp == datetime(2025, 1, 1, 18, 15, tzinfo=timezone.utc)


def test_local_estimate_none_when_every_candidate_is_after_completion():
    completed = datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)
    assert estimate_handoff_from_local("01/02/2025", "9:30 AM", completed) is None


def test_local_estimate_rejects_garbage():
    completed = datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)
    assert estimate_handoff_from_local("yesterday", "9:30 AM", completed) is None
    assert estimate_handoff_from_local("01/01/2025", "half past", completed) is None


def test_resolve_prefers_gps():
    completed = datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)
    est = resolve_handoff_time(SAMPLE, "01/01/2025", "9:30 AM", completed)
    assert est.source == "gps"
    assert est.confidence == "high"
    assert est.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_resolve_falls_back_to_local_then_none():
    completed = datetime(2025, 1, 1, 17, 0, tzinfo=timezone.utc)
    est = resolve_handoff_time("Time:abc", "01/01/2025", "9:30 AM", completed)
    assert est.source == "local_heuristic"
    assert resolve_handoff_time(None, None, None, completed) is None
