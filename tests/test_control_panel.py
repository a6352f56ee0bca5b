from __future__ import annotations

from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from werkzeug.security import generate_password_hash

from prayersync.catalog import CalculationMethod, Madhab
from prayersync.control_panel import ControlPanelServer
from prayersync.errors import LocationUnavailable
from prayersync.high_latitude import HighLatitudeRule
from prayersync.models import SettingsSnapshot
from prayersync.view_model import UNAVAILABLE_MESSAGE


class NoLocation:
    def current_coordinates(self):
        raise LocationUnavailable("no fix")


def _make_app(make_coordinator, **kwargs) -> ControlPanelServer:
    coordinator = make_coordinator(**kwargs)
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    return ControlPanelServer(
        username="admin",
        password_hash=generate_password_hash("secret"),
        coordinator=coordinator,
        view_model=coordinator.create_view_model("America/Los_Angeles"),
        secret_key="test-secret",
        scheduler=scheduler,
    )


def _login(client) -> None:
    client.post(
        "/login",
        data={"username": "admin", "password": "secret"},
        follow_redirects=True,
    )


def test_login_required_redirects(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()

    resp = client.get("/")

    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]


def test_valid_login_creates_session(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()

    resp = client.post(
        "/login",
        data={"username": "admin", "password": "secret"},
        follow_redirects=False,
    )

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/")


def test_invalid_login_shows_error(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()

    resp = client.post("/login", data={"username": "admin", "password": "wrong"})

    assert resp.status_code == 200
    assert "Invalid credentials" in resp.get_data(as_text=True)


def test_dashboard_shows_times_and_prayer_jobs(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)
    server.scheduler.add_job(
        lambda: None,
        trigger="date",
        id="prayer_maghrib_20240621",
        run_date=datetime(2024, 6, 22, 3, 35, tzinfo=timezone.utc),
        replace_existing=True,
    )

    body = client.get("/").get_data(as_text=True)

    assert "2024-06-21" in body
    assert "Maghrib" in body
    assert "prayer_maghrib_20240621" in body


def test_dashboard_reports_unavailable_times(make_coordinator) -> None:
    server = _make_app(make_coordinator, location=NoLocation())
    client = server.app.test_client()
    _login(client)

    body = client.get("/").get_data(as_text=True)

    assert UNAVAILABLE_MESSAGE in body


def test_settings_form_updates_coordinator(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    resp = client.post(
        "/settings",
        data={
            "method": "Egyptian",
            "madhab": "hanafi",
            "high_latitude_rule": "seventh_of_the_night",
            "use_ramadan_isha_offset": "on",
        },
    )

    settings = server.coordinator.settings
    assert resp.status_code == 200
    assert "Settings saved" in resp.get_data(as_text=True)
    assert settings.method is CalculationMethod.EGYPTIAN
    assert settings.madhab is Madhab.HANAFI
    assert settings.high_latitude_rule is HighLatitudeRule.SEVENTH_OF_THE_NIGHT
    assert settings.use_astronomical_maghrib is False
    assert settings.use_ramadan_isha_offset is True


def test_settings_form_falls_back_on_unknown_ids(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    client.post("/settings", data={"method": "Atlantis", "madhab": "zahiri"})

    assert server.coordinator.settings.method is CalculationMethod.MUSLIM_WORLD_LEAGUE
    assert server.coordinator.settings.madhab is Madhab.SHAFI


def test_settings_form_keeps_fields_it_does_not_send(make_coordinator) -> None:
    server = _make_app(
        make_coordinator,
        snapshot=SettingsSnapshot(method=CalculationMethod.EGYPTIAN, madhab=Madhab.HANAFI),
    )
    client = server.app.test_client()
    _login(client)

    resp = client.post("/settings", data={"use_astronomical_maghrib": "on"})

    settings = server.coordinator.settings
    assert resp.status_code == 200
    assert settings.method is CalculationMethod.EGYPTIAN
    assert settings.madhab is Madhab.HANAFI
    assert settings.use_astronomical_maghrib is True


def test_api_times_returns_local_and_utc_times(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    resp = client.get("/api/times?date=2024-06-21")
    payload = resp.get_json()

    assert resp.status_code == 200
    assert payload["date"] == "2024-06-21"
    assert payload["method"] == "MuslimWorldLeague"
    assert set(payload["times"]) == {"fajr", "dhuhr", "asr", "maghrib", "isha"}
    assert payload["utc"]["dhuhr"].startswith("2024-06-21T20:")
    assert payload["times"]["dhuhr"].startswith("13:")


def test_api_times_rejects_bad_dates(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    resp = client.get("/api/times?date=midsummer")

    assert resp.status_code == 400


def test_api_times_unavailable(make_coordinator) -> None:
    server = _make_app(make_coordinator, location=NoLocation())
    client = server.app.test_client()
    _login(client)

    resp = client.get("/api/times")

    assert resp.status_code == 404
    assert resp.get_json()["error"] == UNAVAILABLE_MESSAGE


def test_api_future_reports_disclaimer(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    ramadan = client.get("/api/future?date=2025-03-01").get_json()
    past = client.get("/api/future?date=2023-01-01")

    assert ramadan["is_ramadan"] is True
    assert ramadan["disclaimer_level"] == "short_term"
    assert ramadan["hijri_date"] == "1446-09-01 AH"
    assert past.status_code == 400


def test_api_settings_lists_current_snapshot(make_coordinator) -> None:
    server = _make_app(make_coordinator)
    client = server.app.test_client()
    _login(client)

    payload = client.get("/api/settings").get_json()

    assert payload["method"] == "MuslimWorldLeague"
    assert payload["high_latitude_rule"] == "middle_of_the_night"
