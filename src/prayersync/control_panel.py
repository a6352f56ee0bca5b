from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import (
    Flask,
    jsonify,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from werkzeug.security import check_password_hash

from prayersync.catalog import CalculationMethod, Madhab, parse_madhab, parse_method
from prayersync.coordinator import SynchronizationCoordinator
from prayersync.errors import PrayerTimeError
from prayersync.high_latitude import HighLatitudeRule
from prayersync.view_model import UNAVAILABLE_MESSAGE, PrayerTimesViewModel


LOGIN_TEMPLATE = """
<!doctype html>
<title>PrayerSync Login</title>
<h1>Login</h1>
<form method="post">
  <label>Username <input name="username" /></label><br />
  <label>Password <input name="password" type="password" /></label><br />
  <button type="submit">Login</button>
</form>
{% if error %}<p style="color:red">{{ error }}</p>{% endif %}
"""


DASHBOARD_TEMPLATE = """
<!doctype html>
<title>PrayerSync Dashboard</title>
<h1>PrayerSync</h1>
<p>Method: {{ settings.method.display_name }} &middot; Madhab: {{ settings.madhab.display_name }}</p>
{% if warning %}<p style="color:orange">{{ warning }}</p>{% endif %}
{% if error %}
<p style="color:red">{{ error }}</p>
{% else %}
<h2>{{ day }}</h2>
<table>
{% for row in rows %}
  <tr><td>{{ row.label }}</td><td>{{ row.time }}</td></tr>
{% endfor %}
</table>
{% endif %}
<h2>Scheduled jobs</h2>
<ul>
{% for job in jobs %}
  <li>{{ job.id }} at {{ job.next_run_time }}</li>
{% else %}
  <li>No pending jobs.</li>
{% endfor %}
</ul>
<p><a href="{{ url_for('settings_page') }}">Settings</a> &middot; <a href="{{ url_for('logout') }}">Logout</a></p>
"""


SETTINGS_TEMPLATE = """
<!doctype html>
<title>PrayerSync Settings</title>
<h1>Settings</h1>
<form method="post">
  <label>Method
    <select name="method">
    {% for method in methods %}
      <option value="{{ method.value }}" {% if method == settings.method %}selected{% endif %}>{{ method.display_name }}</option>
    {% endfor %}
    </select>
  </label><br />
  <label>Madhab
    <select name="madhab">
    {% for madhab in madhabs %}
      <option value="{{ madhab.value }}" {% if madhab == settings.madhab %}selected{% endif %}>{{ madhab.display_name }}</option>
    {% endfor %}
    </select>
  </label><br />
  <label>High latitude rule
    <select name="high_latitude_rule">
    {% for rule in rules %}
      <option value="{{ rule.value }}" {% if rule == settings.high_latitude_rule %}selected{% endif %}>{{ rule.value }}</option>
    {% endfor %}
    </select>
  </label><br />
  <label><input type="checkbox" name="use_astronomical_maghrib" {% if settings.use_astronomical_maghrib %}checked{% endif %} /> Astronomical Maghrib</label><br />
  <label><input type="checkbox" name="use_ramadan_isha_offset" {% if settings.use_ramadan_isha_offset %}checked{% endif %} /> Ramadan Isha offset</label><br />
  <button type="submit">Save</button>
</form>
{% if message %}<p>{{ message }}</p>{% endif %}
<p><a href="{{ url_for('dashboard') }}">Back</a></p>
"""


def _login_required(handler):
    def wrapper(*args, **kwargs):
        if "user" not in session:
            return redirect(url_for("login"))
        return handler(*args, **kwargs)

    wrapper.__name__ = handler.__name__
    return wrapper


@dataclass
class ControlPanelServer:
    username: str
    password_hash: str
    coordinator: SynchronizationCoordinator
    view_model: PrayerTimesViewModel
    secret_key: str
    host: str = "0.0.0.0"
    port: int = 8080
    scheduler: Optional[BackgroundScheduler] = None

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)
        self._app = self._create_app()

    @property
    def app(self) -> Flask:
        return self._app

    def _create_app(self) -> Flask:
        app = Flask(__name__)
        app.secret_key = self.secret_key

        @app.route("/login", methods=["GET", "POST"])
        def login():
            error: Optional[str] = None
            if request.method == "POST":
                username = request.form.get("username", "")
                password = request.form.get("password", "")
                if username == self.username and check_password_hash(
                    self.password_hash, password
                ):
                    session["user"] = username
                    self._logger.info("Control panel login success for %s", username)
                    return redirect(url_for("dashboard"))
                self._logger.warning("Control panel login failed for %s", username)
                error = "Invalid credentials"
            return render_template_string(LOGIN_TEMPLATE, error=error)

        @app.route("/logout")
        def logout():
            session.pop("user", None)
            return redirect(url_for("login"))

        @app.route("/")
        @_login_required
        def dashboard():
            times = self.view_model.load()
            settings = self.coordinator.settings
            return render_template_string(
                DASHBOARD_TEMPLATE,
                settings=settings,
                warning=settings.method.compatibility_status(settings.madhab).warning_message,
                error=self.view_model.error_message,
                day=times.date.isoformat() if times else "",
                rows=self.view_model.rows(),
                jobs=self._jobs(),
            )

        @app.route("/settings", methods=["GET", "POST"])
        @_login_required
        def settings_page():
            message: Optional[str] = None
            if request.method == "POST":
                current = self.coordinator.settings
                # Missing fields keep the current value; unknown ids fall back to defaults.
                method = request.form.get("method")
                madhab = request.form.get("madhab")
                self.coordinator.update_settings(
                    method=current.method if method is None else parse_method(method),
                    madhab=current.madhab if madhab is None else parse_madhab(madhab),
                    high_latitude_rule=request.form.get(
                        "high_latitude_rule", current.high_latitude_rule
                    ),
                    use_astronomical_maghrib="use_astronomical_maghrib" in request.form,
                    use_ramadan_isha_offset="use_ramadan_isha_offset" in request.form,
                )
                message = "Settings saved"
            return render_template_string(
                SETTINGS_TEMPLATE,
                settings=self.coordinator.settings,
                methods=list(CalculationMethod),
                madhabs=list(Madhab),
                rules=list(HighLatitudeRule),
                message=message,
            )

        @app.route("/api/settings")
        @_login_required
        def api_settings():
            return jsonify(self.coordinator.settings.to_dict())

        @app.route("/api/times")
        @_login_required
        def api_times():
            raw = request.args.get("date", "").strip()
            try:
                day = date.fromisoformat(raw) if raw else None
            except ValueError:
                return jsonify({"error": f"Invalid date: {raw}"}), 400
            try:
                times = self.coordinator.get_prayer_times(day)
            except PrayerTimeError as exc:
                self._logger.warning("API times lookup failed: %s", exc)
                return jsonify({"error": UNAVAILABLE_MESSAGE}), 404
            payload: Dict[str, Any] = {
                "date": times.date.isoformat(),
                "method": times.method.value,
                "madhab": times.madhab.value,
                "times": {
                    prayer.kind.value: self.view_model.format_time(prayer.time)
                    for prayer in times.prayers
                },
                "utc": {prayer.kind.value: prayer.time.isoformat() for prayer in times.prayers},
            }
            return jsonify(payload)

        @app.route("/api/future")
        @_login_required
        def api_future():
            raw = request.args.get("date", "").strip()
            try:
                day = date.fromisoformat(raw)
            except ValueError:
                return jsonify({"error": f"Invalid date: {raw}"}), 400
            try:
                result = self.coordinator.service.get_future_prayer_times(day)
            except ValueError as exc:
                return jsonify({"error": str(exc)}), 400
            except PrayerTimeError as exc:
                self._logger.warning("API future lookup failed: %s", exc)
                return jsonify({"error": UNAVAILABLE_MESSAGE}), 404
            return jsonify(
                {
                    "date": day.isoformat(),
                    "hijri_date": str(result.hijri_date),
                    "is_ramadan": result.is_ramadan,
                    "disclaimer_level": result.disclaimer_level.value,
                    "disclaimer": result.disclaimer_level.message,
                    "is_high_latitude": result.is_high_latitude,
                    "precision_minutes": result.precision_minutes,
                    "times": {
                        prayer.kind.value: self.view_model.format_time(prayer.time)
                        for prayer in result.times.prayers
                    },
                }
            )

        return app

    def _jobs(self):
        if self.scheduler is None:
            return []
        return sorted(
            (job for job in self.scheduler.get_jobs() if job.id.startswith("prayer_")),
            key=lambda job: job.id,
        )
