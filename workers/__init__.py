"""Workers package: Celery app and background task definitions.

Public API:
- `celery_app`: Celery application instance and configuration
- `tasks`: task implementations (e.g. `sweep_matches`)
"""

# Import tasks early to register Celery decorators before lazy loading
from . import tasks as _tasks_module

_TASK_NAMES = (
    "sweep_matches",
    "emergency_cleanup",
    "recommend_cleanup",
    "clear_old_metrics",
)


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "celery_app":
        from .celery_app import app
        return app
    elif name == "tasks":
        return _tasks_module
    elif name in _TASK_NAMES:
        return getattr(_tasks_module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "celery_app",
    "tasks",
    *_TASK_NAMES,
]
