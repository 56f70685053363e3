import logging
import os

from celery.schedules import crontab

from app.config import settings

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = _env_value(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("scheduler_config_invalid_int name=%s value=%s", name, raw)
        return default


def get_celery_config() -> dict:
    config: dict[str, object] = {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": settings.celery_timezone,
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
    }
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL", 5)
    return config


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    if _env_bool("RECONCILIATION_SWEEP_ENABLED", True):
        hour = _env_int("RECONCILIATION_SWEEP_HOUR", 2)
        schedule["bank_reconciliation_sweep"] = {
            "task": "app.tasks.reconciliation.sweep_bank_integrations",
            "schedule": crontab(hour=min(max(hour, 0), 23), minute=15),
        }
    return schedule
