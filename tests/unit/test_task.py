"""Unit tests for the points task payload."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from tests.helpers import ALICE, NOW
from tracker.services.points.task import PointsTask
from tracker.utils.exceptions import TaskDecodeError


def test_payload_uses_rfc3339_utc():
    task = PointsTask("testnet", ALICE.upper().replace("0X", "0x"), NOW, NOW + timedelta(hours=1))

    assert task.to_payload() == {
        "chain_name": "testnet",
        "user_address": ALICE,
        "period_start": "2026-01-01T12:00:00Z",
        "period_end": "2026-01-01T13:00:00Z",
    }
    assert PointsTask.from_payload(task.to_payload()) == task


def test_offsets_are_normalized_to_utc():
    task = PointsTask.from_payload(
        {
            "chain_name": "testnet",
            "user_address": ALICE,
            "period_start": "2026-01-01T14:00:00+02:00",
            "period_end": "2026-01-01T13:00:00Z",
        }
    )
    assert task.period_start == NOW
    assert task.period_start.tzinfo == UTC


def test_aware_datetimes_in_other_zones_are_converted():
    tz = timezone(timedelta(hours=-5))
    task = PointsTask("testnet", ALICE, datetime(2026, 1, 1, 7, tzinfo=tz), NOW)
    assert task.period_start == NOW


class TestMalformedPayload:
    """Payloads that must be dead-lettered."""

    @pytest.fixture
    def payload(self):
        return PointsTask("testnet", ALICE, NOW, NOW + timedelta(hours=1)).to_payload()

    def test_missing_field(self, payload):
        del payload["period_end"]
        with pytest.raises(TaskDecodeError, match="period_end"):
            PointsTask.from_payload(payload)

    def test_timestamp_without_offset(self, payload):
        payload["period_start"] = "2026-01-01T12:00:00"
        with pytest.raises(TaskDecodeError):
            PointsTask.from_payload(payload)

    def test_garbage_timestamp(self, payload):
        payload["period_start"] = "yesterday"
        with pytest.raises(TaskDecodeError):
            PointsTask.from_payload(payload)

    def test_wrong_type(self, payload):
        payload["chain_name"] = 5
        with pytest.raises(TaskDecodeError):
            PointsTask.from_payload(payload)

    def test_not_an_object(self):
        with pytest.raises(TaskDecodeError):
            PointsTask.from_payload(["testnet"])
