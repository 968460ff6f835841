"""Control of sampled-query capture (``configureQueryAnalyzer``) for one namespace."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from pymongo.errors import PyMongoError

from .errors import SamplingCommandError, SamplingConflictError, SamplingNotActiveError
from .events import SAMPLING_STATUS, ProgressChannel, sampling_topic
from .models import Namespace, SampledQueries, SamplingState, SamplingStatus
from .mongo import MongoGateway
from .parsing import to_jsonable

logger = logging.getLogger(__name__)

MIN_RATE = 1
MAX_RATE = 50


def check_rate(samples_per_second: int) -> int:
    if not MIN_RATE <= samples_per_second <= MAX_RATE:
        raise ValueError(f"samplesPerSecond must be between {MIN_RATE} and {MAX_RATE}")
    return samples_per_second


class QuerySamplingController:
    """Starts, retunes and stops the query analyzer; at most one active session."""

    def __init__(self, gateway: MongoGateway, channel: ProgressChannel | None = None) -> None:
        self.gateway = gateway
        self.channel = channel
        self._state = SamplingState()
        self._lock = threading.Lock()

    @property
    def state(self) -> SamplingState:
        with self._lock:
            return self._state.model_copy()

    def _command(self, command: dict[str, Any], action: str) -> dict[str, Any]:
        logger.info("Query analyzer %s: %s", action, command)
        try:
            return to_jsonable(self.gateway.admin_command(command))
        except PyMongoError as exc:
            raise SamplingCommandError(f"Failed to {action} query sampling: {exc}") from exc

    def start(self, namespace: Namespace, samples_per_second: int = 10) -> SamplingState:
        rate = check_rate(samples_per_second)
        with self._lock:
            if self._state.is_active:
                raise SamplingConflictError(
                    f"Query sampling is already active on {self._state.namespace}"
                )
            command = {
                "configureQueryAnalyzer": str(namespace),
                "mode": "full",
                "samplesPerSecond": rate,
            }
            response = self._command(command, "start")
            self._state = SamplingState(
                is_active=True,
                namespace=str(namespace),
                started_at=datetime.now(timezone.utc),
                samples_per_second=rate,
                last_command=command,
                last_response=response,
            )
            state = self._state.model_copy()
        self._emit(state)
        return state

    def stop(self, namespace: Namespace | None = None) -> SamplingState:
        """Turn sampling off; returns the state as it was just before stopping."""
        with self._lock:
            target = str(namespace) if namespace is not None else self._state.namespace
            if not target:
                raise SamplingNotActiveError("No active sampling session")
            command = {"configureQueryAnalyzer": target, "mode": "off"}
            response = self._command(command, "stop")
            final = self._state.model_copy()
            self._state = SamplingState(
                total_samples=final.total_samples,
                last_command=command,
                last_response=response,
            )
            state = self._state.model_copy()
        self._emit(state, namespace=target)
        return final

    def update_rate(self, samples_per_second: int) -> SamplingState:
        rate = check_rate(samples_per_second)
        with self._lock:
            if not self._state.is_active or not self._state.namespace:
                raise SamplingNotActiveError("No active sampling session")
            command = {
                "configureQueryAnalyzer": self._state.namespace,
                "mode": "full",
                "samplesPerSecond": rate,
            }
            response = self._command(command, "update")
            self._state = self._state.model_copy(
                update={
                    "samples_per_second": rate,
                    "last_command": command,
                    "last_response": response,
                }
            )
            state = self._state.model_copy()
        self._emit(state)
        return state

    def status(self) -> SamplingStatus:
        """Current state enriched with analyzer ops and the stored sample count."""
        state = self.state
        if not state.is_active:
            return SamplingStatus(**state.model_dump())

        duration = 0
        if state.started_at is not None:
            duration = int((datetime.now(timezone.utc) - state.started_at).total_seconds())
        try:
            ops = self.gateway.admin_aggregate(
                [
                    {"$currentOp": {"allUsers": True, "localOps": True}},
                    {"$match": {"desc": "query analyzer"}},
                ]
            )
        except PyMongoError as exc:
            return SamplingStatus(**state.model_dump(), duration_seconds=duration, error=str(exc))

        total = state.total_samples
        try:
            total = self.gateway.config_collection("sampledQueries").count_documents(
                {"ns": state.namespace}
            )
        except PyMongoError as exc:
            # config db is often not readable by application users
            logger.debug("Cannot count sampled queries for %s: %s", state.namespace, exc)
        with self._lock:
            if self._state.is_active and self._state.namespace == state.namespace:
                self._state = self._state.model_copy(update={"total_samples": total})
        return SamplingStatus(
            **state.model_dump(exclude={"total_samples"}),
            total_samples=total,
            duration_seconds=duration,
            analyzer_ops=[to_jsonable(op) for op in ops],
        )

    def list_queries(
        self, namespace: Namespace, *, limit: int = 100, skip: int = 0
    ) -> SampledQueries:
        if limit < 0 or skip < 0:
            raise ValueError("limit and skip must be non-negative integers")
        source = {"$listSampledQueries": {"namespace": str(namespace)}}
        try:
            queries = self.gateway.admin_aggregate(
                [source, {"$sort": {"expireAt": -1}}, {"$skip": skip}, {"$limit": limit}]
            )
            counted = self.gateway.admin_aggregate([source, {"$count": "total"}])
        except PyMongoError as exc:
            raise SamplingCommandError(f"Failed to list sampled queries: {exc}") from exc

        by_type: dict[str, int] = {}
        normalized: list[dict[str, Any]] = []
        for query in queries:
            name = query.get("cmdName") or "unknown"
            by_type[name] = by_type.get(name, 0) + 1
            sampled_at = query.get("expireAt") or query.get("sampledAt")
            doc = to_jsonable(query)
            doc["sampledAt"] = sampled_at.isoformat() if isinstance(sampled_at, datetime) else None
            normalized.append(doc)
        return SampledQueries(
            queries=normalized,
            total=counted[0]["total"] if counted else 0,
            by_type=by_type,
            limit=limit,
            skip=skip,
        )

    def stats(self, namespace: Namespace) -> dict[str, Any]:
        """Sampled query counts and percentages per command name."""
        try:
            groups = self.gateway.admin_aggregate(
                [
                    {"$listSampledQueries": {"namespace": str(namespace)}},
                    {"$group": {"_id": "$cmdName", "count": {"$sum": 1}}},
                ]
            )
        except PyMongoError as exc:
            raise SamplingCommandError(f"Failed to get sampling statistics: {exc}") from exc
        total = sum(group["count"] for group in groups)
        state = self.state
        return {
            "totalQueries": total,
            "byType": {
                str(group["_id"]): {
                    "count": group["count"],
                    "percentage": round(group["count"] / total * 100, 1) if total else 0.0,
                }
                for group in groups
            },
            "samplingState": {
                "isActive": state.is_active,
                "startedAt": state.started_at.isoformat() if state.started_at else None,
                "samplesPerSecond": state.samples_per_second,
            },
        }

    def clear(self, namespace: Namespace) -> int:
        try:
            result = self.gateway.config_collection("sampledQueries").delete_many(
                {"ns": str(namespace)}
            )
        except PyMongoError as exc:
            raise SamplingCommandError(f"Failed to clear sampled queries: {exc}") from exc
        logger.info("Cleared %d sampled queries for %s", result.deleted_count, namespace)
        return result.deleted_count

    def _emit(self, state: SamplingState, *, namespace: str | None = None) -> None:
        target = namespace or state.namespace
        if self.channel is not None and target:
            payload = state.model_dump(by_alias=True, mode="json")
            self.channel.publish(sampling_topic(target), SAMPLING_STATUS, payload)
