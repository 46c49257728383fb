"""Settings loading, cron validation and job registration."""

import pytest

from core.config import load_settings
from core.infra.scheduler import Scheduler, validate_cron_expression
from core.pipeline import LearningPipeline
from main import schedule_jobs


def test_load_settings_layers_yaml_and_environment(tmp_path, monkeypatch):
    config = tmp_path / "config.yaml"
    config.write_text(
        "database_path: /tmp/x.db\n"
        "batch_size: 10\n"
        "run_timeouts:\n"
        "  scrape: 5\n"
        "schedules:\n"
        "  health_check: '*/5 * * * *'\n"
    )
    monkeypatch.setenv("CRON_SECRET", "from-env")
    monkeypatch.setenv("BATCH_SIZE", "25")

    settings = load_settings(str(config))

    assert settings.database_path == "/tmp/x.db"
    assert settings.batch_size == 25
    assert settings.cron_secret == "from-env"
    assert settings.timeout_for("scrape") == 5
    assert settings.timeout_for("unknown") == 60.0
    assert settings.schedules == {"health_check": "*/5 * * * *"}


def test_missing_config_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("DATABASE_PATH", raising=False)

    settings = load_settings(str(tmp_path / "absent.yaml"))

    assert settings.database_path == "db/learning.db"
    assert settings.cron_secret is None
    assert settings.retention_days == 7


@pytest.mark.parametrize("expression, valid", [
    ("*/15 * * * *", True),
    ("0 8 * * 1-5", True),
    ("0 8 * *", False),
    ("0 8 * * * *", False),
    ("61 * * * *", False),
    ("every day", False),
])
def test_validate_cron_expression(expression, valid):
    assert validate_cron_expression(expression) is valid


def test_schedule_jobs_registers_entries_and_scrapes(settings):
    settings.schedules = {
        "process_queue": "*/15 * * * *",
        "daily_report": "0 8 * * *",
        "scrape:devdocs": "0 */6 * * *",
        "make_coffee": "0 7 * * *",
    }
    scheduler = Scheduler()
    pipeline = LearningPipeline(settings)

    count = schedule_jobs(scheduler, pipeline, settings)

    assert count == 3
    assert set(scheduler.list_jobs()) == {"process_queue", "daily_report", "scrape:devdocs"}


def test_invalid_schedule_is_rejected(settings):
    settings.schedules = {"self_heal": "whenever"}

    with pytest.raises(ValueError):
        schedule_jobs(Scheduler(), LearningPipeline(settings), settings)
