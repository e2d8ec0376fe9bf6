from datetime import date, datetime

import pytest

from salonbook.config import settings
from salonbook.errors import ValidationError
from salonbook.policies import check_booking_horizon, resolve_granularity, slot_cutoff, validate_duration


def test_granularity_prefers_explicit_staff_interval():
    assert resolve_granularity(20, [45]) == 20


def test_granularity_derives_from_single_service():
    assert resolve_granularity(None, [45]) == 45
    assert resolve_granularity(None, [30, 60]) == 15
    assert resolve_granularity(None, []) == 15


def test_granularity_single_service_derivation_can_be_disabled(monkeypatch):
    monkeypatch.setattr(settings, "SLOT_DERIVE_FROM_SINGLE_SERVICE", False)

    assert resolve_granularity(None, [45]) == 15


def test_granularity_floor_is_applied():
    assert resolve_granularity(5, []) == 15
    assert resolve_granularity(5, [], floor_min=1) == 5
    assert resolve_granularity(None, [], default_min=0, floor_min=0) == 1


def test_custom_policy_chain():
    def always_ten(explicit_min, offered_durations):
        return 10

    assert resolve_granularity(30, [45], policies=(always_ten,), floor_min=1) == 10


def test_booking_horizon():
    today = date(2026, 3, 2)

    check_booking_horizon(today, today)
    check_booking_horizon(date(2026, 5, 31), today)
    with pytest.raises(ValidationError):
        check_booking_horizon(date(2026, 3, 1), today)
    with pytest.raises(ValidationError):
        check_booking_horizon(date(2026, 6, 1), today)
    check_booking_horizon(date(2026, 3, 1), today, past_days=1)


def test_slot_cutoff():
    now_local = datetime(2026, 3, 2, 10, 0)

    assert slot_cutoff(now_local, exclude_past=False) is None
    assert slot_cutoff(now_local, exclude_past=True, min_advance_min=0) == now_local
    assert slot_cutoff(now_local, exclude_past=True, min_advance_min=30) == datetime(2026, 3, 2, 10, 30)


def test_validate_duration():
    assert validate_duration("45") == 45
    with pytest.raises(ValidationError):
        validate_duration(0)
    with pytest.raises(ValidationError):
        validate_duration("abc")
