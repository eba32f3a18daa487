from datetime import datetime, timedelta, timezone

from trading.cooldown import CooldownTimer, utc_now


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 7, 22, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def test_inactive_until_started():
    timer = CooldownTimer(30, clock=FakeClock())
    assert timer.is_active is False
    assert timer.remaining_seconds() == 0.0


def test_active_for_configured_window():
    clock = FakeClock()
    timer = CooldownTimer(30, clock=clock)

    timer.start_cooldown()
    assert timer.is_active is True
    assert timer.remaining_seconds() == 30.0

    clock.now += timedelta(seconds=29)
    assert timer.is_active is True

    clock.now += timedelta(seconds=1)
    assert timer.is_active is False


def test_restart_extends_window():
    clock = FakeClock()
    timer = CooldownTimer(30, clock=clock)
    timer.start_cooldown()
    clock.now += timedelta(seconds=20)

    timer.start_cooldown()
    clock.now += timedelta(seconds=20)

    assert timer.is_active is True


def test_reset_clears_window():
    timer = CooldownTimer(30, clock=FakeClock())
    timer.start_cooldown()
    timer.reset()
    assert timer.is_active is False


def test_default_clock_is_timezone_aware():
    assert utc_now().tzinfo is timezone.utc

    timer = CooldownTimer(30)
    timer.start_cooldown()

    assert timer.cooldown_until.tzinfo is timezone.utc
    assert timer.is_active is True
    assert 29.0 < timer.remaining_seconds() <= 30.0
