import logging
import logging.handlers

from messaging_core.core.logging.builder import make_dict_config, setup_logging
from messaging_core.core.logging.filters import RequestIdFilter

from ..test_fixtures.messaging_fixtures import make_test_settings


def test_make_dict_config_with_log_dir_uses_files(tmp_path):
    settings = make_test_settings(LOG_TO_STDOUT=False, LOG_DIR=tmp_path, LOG_FORMAT="json")

    cfg = make_dict_config(settings)

    assert set(cfg["handlers"]) == {"console", "file", "error_file"}
    assert cfg["handlers"]["file"]["filename"].endswith("messaging.log")
    assert cfg["handlers"]["error_file"]["filename"].endswith("errors.log")
    assert cfg["handlers"]["file"]["formatter"] == "json"
    assert cfg["loggers"][""]["handlers"] == ["console", "file", "error_file"]


def test_make_dict_config_stdout_only():
    cfg = make_dict_config(make_test_settings(LOG_TO_STDOUT=True))

    assert set(cfg["handlers"]) == {"console", "error_console"}
    assert cfg["handlers"]["console"]["formatter"] == "standard"
    assert cfg["handlers"]["console"]["filters"] == ["request_id", "redact"]


def test_sql_logging_is_opt_in():
    quiet = make_dict_config(make_test_settings(ENABLE_SQL_LOGGING=False))
    verbose = make_dict_config(make_test_settings(ENABLE_SQL_LOGGING=True))

    assert quiet["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
    assert verbose["loggers"]["sqlalchemy.engine"]["level"] == "DEBUG"


def test_setup_logging_creates_log_dir_and_writes_files(tmp_path, restore_logging):
    log_dir = tmp_path / "logs"
    settings = make_test_settings(LOG_TO_STDOUT=False, LOG_DIR=log_dir, LOG_FORMAT="json")
    assert not log_dir.exists()

    setup_logging(settings)
    logging.getLogger("messaging_core.tests").error("store.unavailable")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert log_dir.exists()
    root = logging.getLogger()
    assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
    assert any(isinstance(f, RequestIdFilter) for f in root.filters)
    assert "store.unavailable" in (log_dir / "errors.log").read_text(encoding="utf-8")
