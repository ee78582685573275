"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import habitstory.core.config as core_config
    import habitstory.observability.client as client_module
    import habitstory.main as main_module

    importlib.reload(core_config)
    importlib.reload(client_module)
    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")
    assert client_module.get_opik_client() is None


def test_worker_registers_both_jobs(monkeypatch) -> None:
    from apscheduler.schedulers.background import BackgroundScheduler

    from habitstory.core.config import settings
    from habitstory.worker import scheduler_main

    monkeypatch.setattr(settings, "streak_job_hour", 1)
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler_main.register_jobs(scheduler)

    jobs = {job.id: job for job in scheduler.get_jobs()}
    assert set(jobs) == {"schedule_tasks_job", "update_streaks_job"}
    assert "hour='1'" in str(jobs["update_streaks_job"].trigger)
