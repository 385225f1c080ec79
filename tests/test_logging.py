"""
Tests for structured logging and the in-memory log tail
"""

import json
import logging

import yaml

from jobtracker.logging_config import JsonFormatter, MemoryLogHandler, setup_logging, trace_id_var


def make_record(**extra):
    record = logging.LogRecord("jobtracker.lifecycle", logging.INFO, __file__, 1, "Job moved", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_and_trace_id():
    token = trace_id_var.set("trace-9")
    try:
        line = JsonFormatter().format(make_record(component="lifecycle", job_id="ECS-20250101140000-01"))
    finally:
        trace_id_var.reset(token)
    entry = json.loads(line)
    assert entry["msg"] == "Job moved"
    assert entry["component"] == "lifecycle"
    assert entry["job_id"] == "ECS-20250101140000-01"
    assert entry["trace_id"] == "trace-9"


def test_memory_handler_filters_by_component():
    handler = MemoryLogHandler(max_size=3)
    handler.setFormatter(JsonFormatter())
    for i in range(4):
        handler.emit(make_record(component="poller" if i % 2 else "ingest", n=i))
    logs = handler.get_logs()
    assert [e["n"] for e in logs] == [1, 2, 3]
    assert [e["n"] for e in handler.get_logs(component="poller")] == [1, 3]
    assert len(handler.get_logs(limit=1)) == 1


def test_setup_logging_reads_yaml_file(tmp_path, monkeypatch):
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": "%(message)s"}},
        "handlers": {"console": {"class": "logging.StreamHandler", "formatter": "plain"}},
        "loggers": {"jobtracker.custom": {"level": "DEBUG"}},
        "root": {"level": "INFO", "handlers": ["console"]},
    }
    (tmp_path / "LOGGING.yaml").write_text(yaml.safe_dump(config))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    try:
        loaded = setup_logging()
        assert "jobtracker.custom" in loaded["loggers"]
        assert logging.getLogger("jobtracker.custom").level == logging.WARNING
    finally:
        monkeypatch.undo()
        setup_logging()


def test_memory_handler_filters_by_job():
    handler = MemoryLogHandler()
    handler.setFormatter(JsonFormatter())
    handler.emit(make_record(component="lifecycle", job_id="ECS-20250101140000-01"))
    handler.emit(make_record(component="lifecycle", job_id="ECS-20250101140000-02"))
    handler.emit(make_record(component="poller"))
    logs = handler.get_logs(job_id="ECS-20250101140000-02")
    assert len(logs) == 1
    assert logs[0]["job_id"] == "ECS-20250101140000-02"
