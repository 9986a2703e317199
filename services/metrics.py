"""Operational metrics for the match system, stored in Redis.

Layout (all keys under `ai_match_metrics:`):
- `api_times:{endpoint}` / `db_times:{backend}`: JSON samples, newest first,
  trimmed to `max_entries`, expiring after two windows
- `active_count`: gauge
- `outcomes`: hash of completed / abandoned counts for the rolling window
- `completion_rate`: JSON summary derived from `outcomes`
- `errors`: hash of api_errors / database_errors / total_requests

Every recording method swallows and logs its own failures, so a metrics
outage never changes the outcome of the operation being measured.
"""
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import config
from infrastructure import RedisClient
from models import MatchMetrics, MatchStatus, MonitoringMetrics, ErrorRates
from stores.exceptions import MatchStoreError
from utils.time import now_utc, to_iso

logger = logging.getLogger(__name__)

PREFIX = "ai_match_metrics"
ACTIVE_COUNT_KEY = f"{PREFIX}:active_count"
COMPLETION_RATE_KEY = f"{PREFIX}:completion_rate"
OUTCOMES_KEY = f"{PREFIX}:outcomes"
ERRORS_KEY = f"{PREFIX}:errors"
API_TIMES_KEY = f"{PREFIX}:api_times"
DB_TIMES_KEY = f"{PREFIX}:db_times"

API_ENDPOINTS = ("start", "play_round", "status", "abandon")
BACKENDS = ("redis", "sqlite")

SAMPLES_PER_READ = 20
COMPLETION_RATE_ALERT = 70.0
ERROR_RATE_ALERT = 0.05


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class MetricsRecorder:

    def __init__(
        self,
        redis: RedisClient,
        *,
        window_seconds: int = config.METRICS_WINDOW_SECONDS,
        max_entries: int = config.METRICS_MAX_ENTRIES,
        active_alert_threshold: int = config.ACTIVE_MATCH_ALERT_THRESHOLD,
    ):
        self.redis = redis
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self.active_alert_threshold = active_alert_threshold

    # -------------------------------------------------
    # Recording
    # -------------------------------------------------

    async def _push_sample(self, key: str, sample: dict) -> None:
        r = self.redis.get()
        pipe = r.pipeline(transaction=False)
        pipe.lpush(key, json.dumps(sample))
        pipe.ltrim(key, 0, self.max_entries - 1)
        pipe.expire(key, self.window_seconds * 2)
        await pipe.execute()

    async def _bump_errors(self, **fields: int) -> None:
        r = self.redis.get()
        pipe = r.pipeline(transaction=False)
        for field, amount in fields.items():
            pipe.hincrby(ERRORS_KEY, field, amount)
        pipe.expire(ERRORS_KEY, self.window_seconds)
        await pipe.execute()

    async def record_api_response_time(self, endpoint: str, duration_ms: float, success: bool) -> None:
        try:
            await self._push_sample(
                f"{API_TIMES_KEY}:{endpoint}",
                {
                    "operation": f"api_{endpoint}",
                    "duration": duration_ms,
                    "success": success,
                    "timestamp": to_iso(now_utc()),
                },
            )
            fields = {"total_requests": 1}
            if not success:
                fields["api_errors"] = 1
            await self._bump_errors(**fields)
        except Exception as exc:
            logger.warning(f"[METRICS] Could not record api time for {endpoint}: {exc}")

    async def record_backend_operation(
        self,
        operation: str,
        backend: str,
        duration_ms: float,
        success: bool,
    ) -> None:
        try:
            await self._push_sample(
                f"{DB_TIMES_KEY}:{backend}",
                {
                    "operation": f"db_{backend}_{operation}",
                    "duration": duration_ms,
                    "success": success,
                    "timestamp": to_iso(now_utc()),
                },
            )
            if not success:
                await self._bump_errors(database_errors=1)
        except Exception as exc:
            logger.warning(f"[METRICS] Could not record {backend} time for {operation}: {exc}")

    async def update_active_match_count(self, count: int) -> None:
        try:
            await self.redis.get().set(ACTIVE_COUNT_KEY, str(count), ex=self.window_seconds)
        except Exception as exc:
            logger.warning(f"[METRICS] Could not update active match count: {exc}")

    async def adjust_active_match_count(self, delta: int) -> None:
        """Nudge the gauge between sweeps; each sweep overwrites it with a real count."""
        try:
            pipe = self.redis.get().pipeline(transaction=True)
            pipe.incrby(ACTIVE_COUNT_KEY, delta)
            pipe.expire(ACTIVE_COUNT_KEY, self.window_seconds)
            await pipe.execute()
        except Exception as exc:
            logger.warning(f"[METRICS] Could not adjust active match count: {exc}")

    async def update_completion_rate(self, completed: int, abandoned: int) -> None:
        try:
            total = completed + abandoned
            data = {
                "completion_rate": completed / total * 100 if total else 100.0,
                "completed_matches": completed,
                "abandoned_matches": abandoned,
                "total_matches": total,
                "timestamp": to_iso(now_utc()),
            }
            await self.redis.get().set(COMPLETION_RATE_KEY, json.dumps(data), ex=self.window_seconds)
        except Exception as exc:
            logger.warning(f"[METRICS] Could not update completion rate: {exc}")

    async def record_match_outcome(self, status: MatchStatus) -> None:
        """Count one finished match towards the rolling completion rate."""
        if not status.is_terminal:
            return
        try:
            r = self.redis.get()
            pipe = r.pipeline(transaction=True)
            pipe.hincrby(OUTCOMES_KEY, status.value, 1)
            pipe.expire(OUTCOMES_KEY, self.window_seconds)
            pipe.hgetall(OUTCOMES_KEY)
            *_, counts = await pipe.execute()
        except Exception as exc:
            logger.warning(f"[METRICS] Could not record match outcome {status.value}: {exc}")
            return
        await self.update_completion_rate(
            int(counts.get(MatchStatus.COMPLETED.value, 0)),
            int(counts.get(MatchStatus.ABANDONED.value, 0)),
        )

    @asynccontextmanager
    async def track_api(self, endpoint: str):
        """Time the block as an API call. Rule violations are not counted as errors."""
        start = time.perf_counter()
        success = True
        try:
            yield
        except MatchStoreError:
            raise
        except Exception:
            success = False
            raise
        finally:
            await self.record_api_response_time(endpoint, (time.perf_counter() - start) * 1000, success)

    @asynccontextmanager
    async def track_backend(self, operation: str, backend: str):
        start = time.perf_counter()
        success = True
        try:
            yield
        except MatchStoreError:
            raise
        except Exception:
            success = False
            raise
        finally:
            await self.record_backend_operation(
                operation, backend, (time.perf_counter() - start) * 1000, success
            )

    # -------------------------------------------------
    # Reading
    # -------------------------------------------------

    async def _recent_durations(self, key: str) -> list[float]:
        raw = await self.redis.get().lrange(key, 0, SAMPLES_PER_READ - 1)
        durations = []
        for item in raw:
            try:
                durations.append(float(json.loads(item)["duration"]))
            except (ValueError, KeyError, TypeError):
                continue
        return durations

    async def get_metrics(self) -> MatchMetrics:
        try:
            r = self.redis.get()
            active = await r.get(ACTIVE_COUNT_KEY)
            completion_raw = await r.get(COMPLETION_RATE_KEY)
            completion = json.loads(completion_raw) if completion_raw else {}
            errors = await r.hgetall(ERRORS_KEY)

            api_times = {e: await self._recent_durations(f"{API_TIMES_KEY}:{e}") for e in API_ENDPOINTS}
            db_times = {b: await self._recent_durations(f"{DB_TIMES_KEY}:{b}") for b in BACKENDS}

            completed = int(completion.get("completed_matches", 0))
            abandoned = int(completion.get("abandoned_matches", 0))
            total = completed + abandoned
            return MatchMetrics(
                # adjustments can drift below zero after the key expires
                active_match_count=max(int(active), 0) if active else 0,
                completion_rate=float(completion.get("completion_rate", 100.0)),
                abandonment_rate=abandoned / total * 100 if total else 0.0,
                # rough: a typical match is about three rounds
                average_match_duration=_average(api_times["play_round"]) * 3,
                total_matches_completed=completed,
                total_matches_abandoned=abandoned,
                recent_api_response_times=api_times,
                database_operation_times=db_times,
                error_rates=ErrorRates(
                    api_errors=int(errors.get("api_errors", 0)),
                    database_errors=int(errors.get("database_errors", 0)),
                    total_requests=int(errors.get("total_requests", 0)),
                ),
                timestamp=now_utc(),
            )
        except Exception as exc:
            logger.warning(f"[METRICS] Could not read metrics: {exc}")
            return MatchMetrics(timestamp=now_utc())

    async def get_monitoring_metrics(self) -> MonitoringMetrics:
        try:
            metrics = await self.get_metrics()
            errors = metrics.error_rates
            error_ratio = (
                (errors.api_errors + errors.database_errors) / errors.total_requests
                if errors.total_requests
                else 0.0
            )

            alerts = []
            if metrics.active_match_count > self.active_alert_threshold:
                alerts.append("High active match count")
            if metrics.completion_rate < COMPLETION_RATE_ALERT:
                alerts.append("Low completion rate")
            if error_ratio > ERROR_RATE_ALERT:
                alerts.append("High error rate")

            api_samples = [d for times in metrics.recent_api_response_times.values() for d in times]
            db_samples = [d for times in metrics.database_operation_times.values() for d in times]
            return MonitoringMetrics(
                active_matches=metrics.active_match_count,
                completion_rate=metrics.completion_rate,
                error_rate=error_ratio * 100,
                average_api_response_time=_average(api_samples),
                average_db_response_time=_average(db_samples),
                alerts_triggered=alerts,
            )
        except Exception as exc:
            logger.warning(f"[METRICS] Could not build monitoring metrics: {exc}")
            return MonitoringMetrics(alerts_triggered=["Metrics collection error"])

    async def clear_old_metrics(self) -> int:
        """Put an expiry on any metrics key that lacks one. Returns keys touched."""
        touched = 0
        try:
            r = self.redis.get()
            async for key in r.scan_iter(match=f"{PREFIX}:*", count=200):
                if await r.ttl(key) == -1:
                    await r.expire(key, self.window_seconds)
                    touched += 1
        except Exception as exc:
            logger.warning(f"[METRICS] Could not clear old metrics: {exc}")
        return touched
