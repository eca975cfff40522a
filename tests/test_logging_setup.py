import logging
from pathlib import Path

from dirreconciler.core.logging_setup import MaskSecretsFilter, build_logger


def test_logger_creates_files_and_redacts(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    logger = build_logger(
        name="drec_t1",
        run_id="run123",
        action="apply",
        base_dir="logs",
        console_level="INFO",
        file_level="DEBUG",
        extra={"kind": "user_group"},
    )

    logger.info("hello Authorization: Bearer abc123")
    logger.info("request headers: %s", "x-api-key: KEY-0001")
    logger.error("password=secret-x, token: tkn999 | api_key=AKIA123")

    app_log = Path("logs/app.log")
    assert app_log.exists()

    dated_dirs = list(Path("logs").glob("20*"))
    assert dated_dirs, "dated directory not created"
    files = list(dated_dirs[0].glob("apply_run123.log"))
    assert files, "per-run log file not created"

    content = app_log.read_text(encoding="utf-8")
    assert "***REDACTED***" in content
    for secret in ("abc123", "KEY-0001", "secret-x", "AKIA123"):
        assert secret not in content
    assert "run=run123 action=apply kind=user_group" in content

    action_content = files[0].read_text(encoding="utf-8")
    assert "***REDACTED***" in action_content
    assert "tkn999" not in action_content


def test_rotating_file_captures_debug_from_library_loggers(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    build_logger(name="drec_t2", run_id="r42", action="read", base_dir="logs")

    # module loggers below the base name share its sinks, without adapter context
    logging.getLogger("drec_t2.http").debug("debug-line-42")

    content = Path("logs/app.log").read_text(encoding="utf-8")
    assert "DEBUG" in content and "debug-line-42" in content
    assert "run=- action=- kind=-" in content


def test_repeated_builds_do_not_duplicate_handlers(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for _ in range(3):
        build_logger(name="drec_t3", run_id="r1", action="delete", base_dir="logs")
    base = logging.getLogger("drec_t3")
    assert sum(1 for h in base.handlers if type(h) is logging.StreamHandler) == 1
    assert len(logging.getLogger("drec_t3.delete.r1").handlers) == 1


def test_mask_filter_handles_mapping_args():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "%(h)s", (), None)
    record.args = {"h": "x-api-key=abc"}
    MaskSecretsFilter().filter(record)
    assert record.getMessage() == "x-api-key=***REDACTED***"
