import os
from pathlib import Path

# Path to the SQLite database file holding finished matches and player stats.
# Can be overridden using the MATCH_DB_PATH environment variable.
DB_PATH = os.environ.get("MATCH_DB_PATH", str(Path(__file__).parent / "db.sqlite3"))

# Redis instance used for active matches, metrics and the sweep lock.
REDIS_URL = os.environ.get("MATCH_REDIS_URL", "redis://localhost:6379/0")

# Connection pool size. Callers beyond it wait up to REDIS_POOL_TIMEOUT_SECONDS
# for a free connection instead of failing.
REDIS_MAX_CONNECTIONS = int(os.environ.get("MATCH_REDIS_MAX_CONNECTIONS", "50"))
REDIS_POOL_TIMEOUT_SECONDS = float(os.environ.get("MATCH_REDIS_POOL_TIMEOUT_SECONDS", "5"))

# Match lifecycle
MATCH_TIMEOUT_MINUTES = int(os.environ.get("MATCH_TIMEOUT_MINUTES", "10"))
MATCH_CACHE_TTL_SECONDS = int(os.environ.get("MATCH_CACHE_TTL_SECONDS", "600"))

# Cleanup
ABANDONED_RETENTION_DAYS = int(os.environ.get("ABANDONED_RETENTION_DAYS", "7"))
EMERGENCY_RETENTION_DAYS = int(os.environ.get("EMERGENCY_RETENTION_DAYS", "1"))
NEAR_TIMEOUT_WARNING_MINUTES = int(os.environ.get("NEAR_TIMEOUT_WARNING_MINUTES", "8"))

# Metrics
METRICS_WINDOW_SECONDS = int(os.environ.get("METRICS_WINDOW_SECONDS", "300"))
METRICS_MAX_ENTRIES = int(os.environ.get("METRICS_MAX_ENTRIES", "100"))
ACTIVE_MATCH_ALERT_THRESHOLD = int(os.environ.get("ACTIVE_MATCH_ALERT_THRESHOLD", "1000"))

# Celery
CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

# HTTP
CORS_ORIGINS = [o.strip() for o in os.environ.get("MATCH_CORS_ORIGINS", "*").split(",") if o.strip()]
