from __future__ import annotations

from pathlib import Path

from prayersync.logging_utils import LoggerFactory


def test_logger_factory_writes_to_rotating_file(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "prayersync.log"
    logger = LoggerFactory.create("prayersync_test", log_file=log_path)
    logger.info("prayer times computed")

    for handler in logger.handlers:
        handler.flush()

    assert log_path.exists()
    content = log_path.read_text(encoding="utf-8")
    assert "prayer times computed" in content
    assert "INFO prayersync_test" in content


def test_logger_factory_configures_once(tmp_path: Path) -> None:
    first = LoggerFactory.create("prayersync_once", log_file=tmp_path / "a.log")
    second = LoggerFactory.create("prayersync_once", log_file=tmp_path / "b.log")

    assert first is second
    assert len(second.handlers) == 2
    assert not (tmp_path / "b.log").exists()
    for handler in list(second.handlers):
        handler.close()
        second.removeHandler(handler)
