from pathlib import Path

from peerly.utils import logging_config
from peerly.utils.logging_config import (
    LogFiles,
    Logger,
    clear_trace_id,
    get_trace_id,
    set_trace_id,
)


def test_log_files_from_config():
    assert LogFiles.RESOLVER == "resolver/resolver.log"
    assert LogFiles.ERROR == "errors/error.log"
    assert LogFiles.get("missing") == "missing/missing.log"


def test_logger_writes_with_trace_id(tmp_path):
    set_trace_id("req-test123")
    Logger.info("Resolved 10.1000/x", file=LogFiles.RESOLVER)

    content = (tmp_path / "logs" / "resolver" / "resolver.log").read_text(encoding="utf-8")
    assert "[INFO] [req-test123]" in content
    assert "test_logging_config.py" in content
    assert content.rstrip().endswith("Resolved 10.1000/x")


def test_level_filtering(tmp_path):
    Logger.set_level("WARNING")
    Logger.info("hidden", file=LogFiles.SEARCH)
    Logger.warning("shown", file=LogFiles.SEARCH)

    content = Path(tmp_path / "logs" / "search" / "search.log").read_text(encoding="utf-8")
    assert "hidden" not in content
    assert "[WARNING] [-]" in content


def test_trace_id_lifecycle():
    generated = set_trace_id()
    assert generated.startswith("req-")
    assert get_trace_id() == generated
    clear_trace_id()
    assert get_trace_id() is None


def test_non_mapping_config_uses_defaults(tmp_path, monkeypatch):
    config_file = tmp_path / "log_config.yaml"
    config_file.write_text("- resolver\n- search\n", encoding="utf-8")
    monkeypatch.setattr(logging_config, "LOG_CONFIG_FILE", config_file)
    monkeypatch.setattr(LogFiles, "_files", None)

    assert LogFiles.get("resolver") == "resolver/resolver.log"
    assert LogFiles.ERROR == "errors/error.log"
