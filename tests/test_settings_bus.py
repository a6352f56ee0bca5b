from __future__ import annotations

from prayersync.catalog import CalculationMethod, Madhab
from prayersync.models import SettingsSnapshot
from prayersync.settings_bus import SettingsChangeBus


def _snapshot(method: CalculationMethod) -> SettingsSnapshot:
    return SettingsSnapshot(method=method, madhab=Madhab.SHAFI)


def test_burst_of_notifications_emits_once_with_latest(timers) -> None:
    bus = SettingsChangeBus(0.3, timer_factory=timers)
    received = []
    bus.subscribe(received.append)

    bus.notify(_snapshot(CalculationMethod.EGYPTIAN))
    bus.notify(_snapshot(CalculationMethod.KARACHI))
    bus.notify(_snapshot(CalculationMethod.DUBAI))

    assert [timer.cancelled for timer in timers.timers] == [True, True, False]
    assert all(timer.started for timer in timers.timers)
    assert timers.timers[-1].interval == 0.3

    # Superseded timers that still fire must not emit.
    timers.timers[0].fire()
    timers.timers[1].fire()
    assert received == []

    timers.timers[2].fire()
    assert received == [_snapshot(CalculationMethod.DUBAI)]

    timers.timers[2].fire()
    assert len(received) == 1


def test_flush_emits_pending_snapshot_immediately(timers) -> None:
    bus = SettingsChangeBus(timer_factory=timers)
    received = []
    bus.subscribe(received.append)

    bus.notify(_snapshot(CalculationMethod.QATAR))

    assert bus.has_pending
    assert bus.flush() is True
    assert received == [_snapshot(CalculationMethod.QATAR)]
    assert timers.timers[0].cancelled
    assert bus.flush() is False


def test_failing_subscriber_does_not_starve_others(timers, caplog) -> None:
    bus = SettingsChangeBus(timer_factory=timers)
    received = []

    def broken(snapshot: SettingsSnapshot) -> None:
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    bus.notify(_snapshot(CalculationMethod.KUWAIT))
    bus.flush()

    assert received == [_snapshot(CalculationMethod.KUWAIT)]
    assert "Settings subscriber" in caplog.text


def test_unsubscribe_stops_delivery(timers) -> None:
    bus = SettingsChangeBus(timer_factory=timers)
    received = []
    unsubscribe = bus.subscribe(received.append)

    unsubscribe()
    bus.notify(_snapshot(CalculationMethod.SINGAPORE))
    bus.flush()

    assert received == []


def test_closed_bus_drops_notifications(timers) -> None:
    bus = SettingsChangeBus(timer_factory=timers)
    received = []
    bus.subscribe(received.append)

    bus.notify(_snapshot(CalculationMethod.EGYPTIAN))
    bus.close()
    bus.notify(_snapshot(CalculationMethod.KARACHI))

    assert timers.timers[0].cancelled
    assert len(timers.timers) == 1
    assert bus.flush() is False
    assert received == []
