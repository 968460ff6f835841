"""Synthetic read/write traffic generator for populating sampled-query statistics."""

from __future__ import annotations

import bisect
import itertools
import logging
import math
import random
import statistics
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from bson.errors import BSONError
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from .errors import CommandError, WorkloadConflictError
from .events import WORKLOAD_COMPLETE, WORKLOAD_PROGRESS, ProgressChannel, workload_topic
from .models import (
    AdvisorConfig,
    LatencySummary,
    Namespace,
    ProfileInfo,
    QueryPattern,
    WorkloadConfig,
    WorkloadErrorEntry,
    WorkloadPhase,
    WorkloadStats,
    WorkloadStatus,
)
from .mongo import MongoGateway
from .profiles import (
    TemplateRenderer,
    get_profile,
    harvest_sample_values,
    list_profiles,
    sample_fields,
)

logger = logging.getLogger(__name__)

FIND_LIMIT = 20
_FIND_OPTIONS = ("sort", "limit", "skip", "projection")


class WeightedPicker:
    """Pick patterns with probability proportional to their weight.

    Cumulative weights plus binary search select exactly as a pool holding
    ``weight`` copies of each pattern would, without materializing the pool.
    """

    def __init__(self, patterns: Sequence[QueryPattern], rng: random.Random) -> None:
        if not patterns:
            raise ValueError("At least one query pattern is required")
        self._patterns = list(patterns)
        self._cumulative = list(itertools.accumulate(p.weight for p in self._patterns))
        self._rng = rng

    @property
    def total_weight(self) -> int:
        return self._cumulative[-1]

    def pick(self) -> QueryPattern:
        point = self._rng.randrange(self.total_weight)
        return self._patterns[bisect.bisect_right(self._cumulative, point)]


def summarize_latencies(latencies: Sequence[float]) -> LatencySummary:
    if not latencies:
        return LatencySummary()
    ordered = sorted(latencies)

    def pct(p: float) -> float:
        rank = max(1, math.ceil(p / 100 * len(ordered)))
        return ordered[rank - 1]

    return LatencySummary(
        count=len(ordered),
        avg_ms=round(statistics.fmean(ordered), 2),
        p50_ms=pct(50),
        p95_ms=pct(95),
        p99_ms=pct(99),
        max_ms=ordered[-1],
    )


@dataclass
class WorkloadRun:
    """Mutable state of one run; only the scheduler touches it, under its lock."""

    namespace: Namespace
    config: WorkloadConfig
    patterns: list[QueryPattern]
    started_at: datetime
    started_clock: float
    latency_window: int = 1000
    error_window: int = 100
    phase: WorkloadPhase = WorkloadPhase.RUNNING
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_type: dict[str, int] = field(default_factory=lambda: {"read": 0, "write": 0})
    by_operation: dict[str, int] = field(default_factory=dict)
    latencies: deque[float] = field(init=False)
    errors: deque[WorkloadErrorEntry] = field(init=False)
    ended_clock: float | None = None
    error: str | None = None
    cancel: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    def __post_init__(self) -> None:
        self.latencies = deque(maxlen=self.latency_window)
        self.errors = deque(maxlen=self.error_window)

    def elapsed(self, now: float) -> float:
        end = self.ended_clock if self.ended_clock is not None else now
        return max(0.0, end - self.started_clock)


class WorkloadScheduler:
    """Replays a weighted pattern mix against one collection at a target rate.

    Phases: idle -> running -> completed | stopped. A control-loop failure
    moves the run back to idle with the error kept for inspection. Only one
    run is active per scheduler.
    """

    def __init__(
        self,
        config: AdvisorConfig,
        gateway: MongoGateway,
        channel: ProgressChannel | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.channel = channel
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()
        self._run: WorkloadRun | None = None

    @staticmethod
    def profiles() -> list[ProfileInfo]:
        return list_profiles()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None and self._run.phase is WorkloadPhase.RUNNING

    def start(self, namespace: Namespace, config: WorkloadConfig) -> WorkloadStatus:
        """Begin a run in the background; raises ``WorkloadConflictError`` if one is active."""
        if self.is_running:
            raise WorkloadConflictError("Workload simulation is already running")

        patterns = list(config.custom_patterns or get_profile(config.profile).patterns)
        collection = self.gateway.collection(namespace)
        try:
            documents = list(
                collection.aggregate([{"$sample": {"size": self.config.sample_document_count}}])
            )
        except PyMongoError as exc:
            raise CommandError(f"Failed to sample documents: {exc}") from exc
        sample_values = harvest_sample_values(documents, sample_fields(patterns), rng=self._rng)
        picker = WeightedPicker(patterns, self._rng)

        run = WorkloadRun(
            namespace=namespace,
            config=config,
            patterns=patterns,
            started_at=datetime.now(timezone.utc),
            started_clock=self._clock(),
            latency_window=self.config.latency_window,
            error_window=self.config.error_window,
        )
        with self._lock:
            if self._run is not None and self._run.phase is WorkloadPhase.RUNNING:
                raise WorkloadConflictError("Workload simulation is already running")
            self._run = run
        run.thread = threading.Thread(
            target=self._loop,
            args=(run, collection, picker, sample_values),
            name=f"workload-{namespace}",
            daemon=True,
        )
        run.thread.start()
        logger.info(
            "Workload started on %s: %s, %.0fs at %.1f qps (%d sampled documents)",
            namespace,
            "custom" if config.custom_patterns else config.profile,
            config.duration_seconds,
            config.queries_per_second,
            len(documents),
        )
        return self.status()

    def stop(self) -> WorkloadStatus:
        """Cancel the active run; the in-flight operation finishes first."""
        with self._lock:
            run = self._run
            if run is None or run.phase is not WorkloadPhase.RUNNING:
                return self._snapshot(run)
            run.cancel.set()
            run.phase = WorkloadPhase.STOPPED
            run.ended_clock = self._clock()
        if run.thread is not None and run.thread is not threading.current_thread():
            run.thread.join(timeout=self.config.stop_timeout_seconds)
        logger.info("Workload on %s stopped after %d operations", run.namespace, run.total)
        return self.status()

    def status(self) -> WorkloadStatus:
        with self._lock:
            return self._snapshot(self._run)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current run's loop exits; True if it did."""
        with self._lock:
            thread = self._run.thread if self._run is not None else None
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _loop(
        self,
        run: WorkloadRun,
        collection: Collection,
        picker: WeightedPicker,
        sample_values: Mapping[str, Sequence[Any]],
    ) -> None:
        interval = 1.0 / run.config.queries_per_second
        try:
            while not run.cancel.is_set():
                if self._clock() - run.started_clock >= run.config.duration_seconds:
                    self._complete(run)
                    return
                pattern = picker.pick()
                self._execute(run, collection, pattern, sample_values)
                if run.total % self.config.progress_every == 0:
                    self._publish(run, WORKLOAD_PROGRESS)
                # re-armed after each operation, so slow operations stretch the interval
                run.cancel.wait(interval)
        except Exception as exc:
            logger.exception("Workload control loop failed on %s", run.namespace)
            with self._lock:
                if run.phase is WorkloadPhase.RUNNING:
                    run.phase = WorkloadPhase.IDLE
                    run.ended_clock = self._clock()
                run.error = str(exc)

    def _execute(
        self,
        run: WorkloadRun,
        collection: Collection,
        pattern: QueryPattern,
        sample_values: Mapping[str, Sequence[Any]],
    ) -> None:
        renderer = TemplateRenderer(sample_values, rng=self._rng)
        started = time.perf_counter()
        try:
            run_operation(collection, pattern, renderer)
        except (PyMongoError, BSONError, ValueError, TypeError) as exc:
            # the driver rejects malformed operations client side with ValueError or TypeError
            logger.debug("Workload operation %r failed: %s", pattern.name, exc)
            with self._lock:
                if run.phase is not WorkloadPhase.RUNNING:
                    return
                run.total += 1
                run.failed += 1
                run.errors.append(
                    WorkloadErrorEntry(
                        pattern=pattern.name, error=str(exc), timestamp=datetime.now(timezone.utc)
                    )
                )
            return
        latency_ms = round((time.perf_counter() - started) * 1000, 3)
        with self._lock:
            # an operation that finishes after stop() is not counted
            if run.phase is not WorkloadPhase.RUNNING:
                return
            run.total += 1
            run.successful += 1
            run.by_type[pattern.type] = run.by_type.get(pattern.type, 0) + 1
            run.by_operation[pattern.operation] = run.by_operation.get(pattern.operation, 0) + 1
            run.latencies.append(latency_ms)

    def _complete(self, run: WorkloadRun) -> None:
        with self._lock:
            if run.phase is not WorkloadPhase.RUNNING:
                return
            run.phase = WorkloadPhase.COMPLETED
            run.ended_clock = self._clock()
        logger.info("Workload on %s completed: %d operations", run.namespace, run.total)
        self._publish(run, WORKLOAD_COMPLETE)

    def _publish(self, run: WorkloadRun, event: str) -> None:
        if self.channel is None:
            return
        with self._lock:
            snapshot = self._snapshot(run)
        stats = snapshot.stats.model_dump(by_alias=True, mode="json") if snapshot.stats else {}
        if event == WORKLOAD_COMPLETE:
            payload = stats
        else:
            payload = {
                "queriesExecuted": snapshot.queries_executed,
                "progress": snapshot.progress,
                "elapsed": snapshot.elapsed_seconds,
                "remaining": snapshot.remaining_seconds,
                "actualQps": snapshot.actual_qps,
                "stats": stats,
            }
        self.channel.publish(workload_topic(str(run.namespace)), event, payload)

    def _snapshot(self, run: WorkloadRun | None) -> WorkloadStatus:
        """Point-in-time copy; caller holds the lock."""
        if run is None:
            return WorkloadStatus()
        elapsed = run.elapsed(self._clock())
        duration = run.config.duration_seconds
        finished = run.phase is not WorkloadPhase.RUNNING
        actual_qps = round(run.total / elapsed, 1) if elapsed > 0 else 0.0
        latencies = list(run.latencies)
        stats = WorkloadStats(
            total_queries=run.total,
            successful_queries=run.successful,
            failed_queries=run.failed,
            by_type=dict(run.by_type),
            by_operation=dict(run.by_operation),
            latencies=latencies,
            errors=list(run.errors),
            latency_summary=summarize_latencies(latencies),
            actual_duration_seconds=round(elapsed, 1) if finished else None,
            actual_qps=actual_qps if finished else None,
        )
        return WorkloadStatus(
            phase=run.phase,
            is_running=not finished,
            namespace=str(run.namespace),
            profile="custom" if run.config.custom_patterns else run.config.profile,
            config=run.config,
            started_at=run.started_at,
            elapsed_seconds=round(elapsed, 1),
            remaining_seconds=round(max(0.0, duration - elapsed), 1) if not finished else 0.0,
            progress=round(min(100.0, elapsed / duration * 100), 1),
            actual_qps=actual_qps,
            queries_executed=run.total,
            stats=stats,
            error=run.error,
        )


def _find_options(options: Mapping[str, Any]) -> dict[str, Any]:
    kwargs = {name: options[name] for name in _FIND_OPTIONS if name in options}
    sort = kwargs.get("sort")
    if isinstance(sort, Mapping):
        kwargs["sort"] = list(sort.items())
    kwargs["limit"] = min(int(kwargs.get("limit") or FIND_LIMIT), FIND_LIMIT)
    return kwargs


def run_operation(
    collection: Collection, pattern: QueryPattern, renderer: TemplateRenderer
) -> None:
    """Materialize ``pattern`` and execute it once against ``collection``."""
    operation = pattern.operation
    if operation == "find":
        query = renderer.render(pattern.filter or {})
        list(collection.find(query, **_find_options(pattern.options)))
    elif operation == "aggregate":
        list(collection.aggregate(renderer.render(pattern.pipeline or [])))
    elif operation == "update":
        collection.update_one(renderer.render(pattern.filter), renderer.render(pattern.update))
    elif operation == "insert":
        collection.insert_one(renderer.render(pattern.document))
    elif operation == "delete":
        collection.delete_one(renderer.render(pattern.filter))
    else:
        raise ValueError(f"Unsupported operation: {operation}")
