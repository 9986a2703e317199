"""Celery task definitions for match maintenance."""
from celery import Task
from celery.exceptions import SoftTimeLimitExceeded
import logging
from datetime import datetime, UTC
from typing import Any, Dict
import asyncio
from functools import wraps

import config
from services import open_runtime
from stores import StorageUnavailable
from workers.celery_app import app

logger = logging.getLogger(__name__)

soft_time_limit = 60  # seconds
hard_time_limit = 180  # seconds


def runtime_factory():
    """Open a match runtime for one task run. Replaced in tests."""
    return open_runtime(config.DB_PATH, config.REDIS_URL)


def _with_manager(op):
    async def runner():
        async with runtime_factory() as runtime:
            return await op(runtime.manager)
    return asyncio.run(runner())


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


def celery_task(**task_kwargs):
    """Combined decorator that registers a Celery task and adds error handling.

    - Registers the function as a Celery task via @app.task()
    - For retryable exceptions: logs and re-raises to allow Celery's autoretry mechanism
    - For non-retryable exceptions: logs and returns graceful failure dict
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except SoftTimeLimitExceeded:
                logger.warning(f"{func.__name__} exceeded soft time limit, graceful shutdown")
                raise
            except Exception as exc:
                # Check if exception is retryable (default to True for unknown exceptions)
                is_retryable = getattr(exc, 'retryable', True)

                if not is_retryable:
                    logger.error(f"{func.__name__} failed with non-retryable error: {exc.__class__.__name__}: {exc}", exc_info=True)
                    return {
                        "status": "failure",
                        "error": exc.__class__.__name__,
                        "message": str(exc),
                        "timestamp": _timestamp(),
                    }
                logger.error(f"{func.__name__} failed with retryable error: {exc.__class__.__name__}: {exc}", exc_info=True)
                raise
        return app.task(base=MatchServerTask, **task_kwargs)(wrapper)
    return decorator


class MatchServerTask(Task):
    """Base task class with custom error handling and logging."""

    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 5}
    retry_backoff = True
    retry_backoff_max = 3600
    retry_jitter = True

    def on_retry(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        """Log retry events."""
        logger.warning(
            f"Task {self.name} (id={task_id}) retrying after {exc}",
            extra={"task_id": task_id, "task_args": args, "task_kwargs": kwargs},
        )

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        """Log task failures."""
        logger.error(
            f"Task {self.name} (id={task_id}) failed with {exc}",
            extra={"task_id": task_id, "task_args": args, "task_kwargs": kwargs},
            exc_info=einfo,
        )

    def on_success(self, result: Any, task_id: str, args: tuple, kwargs: dict) -> None:
        """Log task successes."""
        logger.info(
            f"Task {self.name} (id={task_id}) succeeded",
            extra={"task_id": task_id, "task_result": result},
        )


def _report_to_result(report) -> Dict[str, Any]:
    if not report.success:
        # enumeration failed; let Celery retry the whole sweep
        raise StorageUnavailable(report.error or "sweep failed")
    if report.skipped:
        status = "skipped"
    elif report.errors:
        status = "partial_failure"
    else:
        status = "success"
    result = {
        "status": status,
        "expired_active_matches": report.results.expired_active_matches,
        "deleted_abandoned_matches": report.results.deleted_abandoned_matches,
        "orphaned_pointers_removed": report.orphaned_pointers_removed,
        "timestamp": _timestamp(),
    }
    if report.errors:
        result["errors"] = report.errors
    return result


@celery_task(
    bind=True,
    name="workers.tasks.sweep_matches",
    queue="maintenance",
    priority=2,
    soft_time_limit=soft_time_limit,
    time_limit=hard_time_limit,
)
def sweep_matches(self, abandoned_retention_days: int = config.ABANDONED_RETENTION_DAYS, sweep_active: bool = True) -> Dict[str, Any]:
    """
    Expire idle active matches and purge old abandoned ones.

    Returns:
        dict: {
            "status": "success" | "partial_failure" | "skipped",
            "expired_active_matches": int,
            "deleted_abandoned_matches": int,
            "orphaned_pointers_removed": int,
            "errors": list[str] (optional),
        }
    """
    logger.info(f"Starting sweep_matches (retention={abandoned_retention_days}d, sweep_active={sweep_active})")
    report = _with_manager(
        lambda manager: manager.perform_match_cleanup(abandoned_retention_days, sweep_active)
    )
    return _report_to_result(report)


@celery_task(
    bind=True,
    name="workers.tasks.emergency_cleanup",
    queue="maintenance",
    priority=5,
    soft_time_limit=soft_time_limit,
    time_limit=hard_time_limit,
)
def emergency_cleanup(self) -> Dict[str, Any]:
    """Sweep with the short emergency retention for abandoned matches."""
    logger.warning("Starting emergency_cleanup")
    report = _with_manager(lambda manager: manager.emergency_cleanup())
    return _report_to_result(report)


@celery_task(
    bind=True,
    name="workers.tasks.recommend_cleanup",
    queue="maintenance",
    priority=2,
    soft_time_limit=soft_time_limit,
    time_limit=hard_time_limit,
)
def recommend_cleanup(self) -> Dict[str, Any]:
    recommendation = _with_manager(lambda manager: manager.recommend_cleanup())
    # reason is only present when cleanup is recommended
    return {
        "status": "success",
        **recommendation.model_dump(mode="json", exclude_none=True),
        "timestamp": _timestamp(),
    }


@celery_task(
    bind=True,
    name="workers.tasks.clear_old_metrics",
    queue="maintenance",
    priority=2,
    soft_time_limit=soft_time_limit,
    time_limit=hard_time_limit,
)
def clear_old_metrics(self) -> Dict[str, Any]:
    """Put an expiry on metrics keys that lost theirs."""
    touched = _with_manager(lambda manager: manager.metrics.clear_old_metrics())
    return {
        "status": "success",
        "keys_expired": touched,
        "timestamp": _timestamp(),
    }
