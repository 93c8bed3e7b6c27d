import logging
from pathlib import Path

import pytest

from gapsong.logging_utils import (
    configure_logging,
    debug_enabled,
    gap_logger,
    get_log_dir,
    get_log_path,
    log_exception,
)


def test_log_path_uses_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "gapsong.log"


def test_debug_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GAPSONG_DEBUG", raising=False)
    assert not debug_enabled()
    monkeypatch.setenv("GAPSONG_DEBUG", "1")
    assert debug_enabled()


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path / "logs"))
    try:
        raise ValueError("bad gap")
    except ValueError as exc:
        path = log_exception("export 1-2", exc)
    assert path == tmp_path / "logs" / "gapsong.log"
    text = path.read_text(encoding="utf-8")
    assert "export 1-2 failed: ValueError: bad gap" in text
    assert "Traceback" in text


def test_configure_logging_adds_file_handler(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path))
    configure_logging(force=True)
    logger = logging.getLogger("gapsong")
    handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert handlers
    assert Path(handlers[-1].baseFilename) == tmp_path / "gapsong.log"


def test_log_exception_records_gap_context(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path))
    path = log_exception(
        "export",
        RuntimeError("disk full"),
        gap_id="12-34",
        details={"target": "Gap_A_to_B.wav", "distance": 5.0},
    )
    assert path is not None
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0].endswith("export (gap 12-34) failed: RuntimeError: disk full")
    assert lines[1:3] == ["    distance=5.0", "    target='Gap_A_to_B.wav'"]


def test_gap_logger_tags_records(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("GAPSONG_LOG_DIR", str(tmp_path))
    configure_logging(force=True)
    log = gap_logger("gapsong.scheduler", "12-34")

    with caplog.at_level(logging.INFO, logger="gapsong"):
        log.info("Playing at %.1f BPM", 150.0)

    record = caplog.records[-1]
    assert getattr(record, "gap_id") == "12-34"
    assert record.getMessage() == "Playing at 150.0 BPM"
    text = (tmp_path / "gapsong.log").read_text(encoding="utf-8")
    assert "gapsong.scheduler: [12-34] Playing at 150.0 BPM" in text
