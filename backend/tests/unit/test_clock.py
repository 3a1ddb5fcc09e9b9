from datetime import date, datetime, time, timezone

import pytest

from lessonbook.core.clock import SystemClock


class _PinnedClock(SystemClock):
    def __init__(self, now: datetime):
        super().__init__("Europe/London")
        self._now = now

    def now(self) -> datetime:
        return self._now


@pytest.mark.unit
class TestSystemClock:
    def test_to_utc_during_british_summer_time(self):
        clock = SystemClock("Europe/London")
        assert clock.to_utc(date(2025, 6, 10), time(9, 0)) == datetime(2025, 6, 10, 8, 0, tzinfo=timezone.utc)

    def test_to_utc_in_winter(self):
        clock = SystemClock("Europe/London")
        assert clock.to_utc(date(2025, 1, 10), time(9, 0)) == datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)

    def test_today_follows_school_timezone(self):
        # 23:30 UTC on 1 June is already 2 June in London
        clock = _PinnedClock(datetime(2025, 6, 1, 23, 30, tzinfo=timezone.utc))
        assert clock.today() == date(2025, 6, 2)

    def test_start_of_today_is_local_midnight(self):
        clock = _PinnedClock(datetime(2025, 6, 1, 23, 30, tzinfo=timezone.utc))
        assert clock.start_of_today() == datetime(2025, 6, 1, 23, 0, tzinfo=timezone.utc)

    def test_days_from_today(self):
        clock = _PinnedClock(datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc))
        assert clock.days_from_today(2) == date(2025, 6, 3)

    def test_system_now_is_aware_utc(self):
        assert SystemClock().now().tzinfo == timezone.utc
