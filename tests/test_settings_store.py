from __future__ import annotations

from pathlib import Path

from prayersync.catalog import CalculationMethod, Madhab
from prayersync.high_latitude import HighLatitudeRule
from prayersync.models import SettingsSnapshot
from prayersync.settings_store import SettingsStore


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    defaults = SettingsSnapshot(method=CalculationMethod.KARACHI, madhab=Madhab.HANAFI)
    store = SettingsStore(tmp_path / "settings.yml", defaults=defaults)

    assert store.load() == defaults


def test_saved_settings_survive_a_restart(tmp_path: Path) -> None:
    path = tmp_path / "state" / "settings.yml"
    snapshot = SettingsSnapshot(
        method=CalculationMethod.JAFARI_TEHRAN,
        madhab=Madhab.JAFARI,
        use_astronomical_maghrib=True,
        high_latitude_rule=HighLatitudeRule.TWILIGHT_ANGLE,
    )

    SettingsStore(path).save(snapshot)

    assert SettingsStore(path).load() == snapshot
    assert "method: JafariTehran" in path.read_text(encoding="utf-8")


def test_partial_file_is_merged_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yml"
    path.write_text("madhab: hanafi\n", encoding="utf-8")
    defaults = SettingsSnapshot(method=CalculationMethod.EGYPTIAN)

    loaded = SettingsStore(path, defaults=defaults).load()

    assert loaded.method is CalculationMethod.EGYPTIAN
    assert loaded.madhab is Madhab.HANAFI


def test_unknown_ids_fall_back_instead_of_failing(tmp_path: Path) -> None:
    path = tmp_path / "settings.yml"
    path.write_text("method: Atlantis\nmadhab: zahiri\n", encoding="utf-8")

    loaded = SettingsStore(path).load()

    assert loaded.method is CalculationMethod.MUSLIM_WORLD_LEAGUE
    assert loaded.madhab is Madhab.SHAFI


def test_unreadable_file_returns_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yml"
    path.write_text("method: [unclosed\n", encoding="utf-8")

    assert SettingsStore(path).load() == SettingsSnapshot()
