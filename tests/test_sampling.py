from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from pymongo.errors import OperationFailure

from conftest import FakeGateway, failing_command
from shardkey_advisor.errors import (
    SamplingCommandError,
    SamplingConflictError,
    SamplingNotActiveError,
)
from shardkey_advisor.events import SAMPLING_STATUS, ProgressChannel
from shardkey_advisor.models import Namespace
from shardkey_advisor.sampling import QuerySamplingController


def test_start_stop_cycle(gateway: FakeGateway, namespace: Namespace) -> None:
    channel = ProgressChannel()
    controller = QuerySamplingController(gateway, channel)

    state = controller.start(namespace, 25)
    assert state.is_active
    assert state.namespace == "shop.orders"
    assert state.samples_per_second == 25
    assert gateway.commands[-1] == {
        "configureQueryAnalyzer": "shop.orders",
        "mode": "full",
        "samplesPerSecond": 25,
    }
    assert next(iter(gateway.commands[-1])) == "configureQueryAnalyzer"

    final = controller.stop()
    assert final.is_active
    assert final.samples_per_second == 25
    assert gateway.commands[-1] == {"configureQueryAnalyzer": "shop.orders", "mode": "off"}
    assert not controller.state.is_active

    events = channel.history("sampling:shop.orders")
    assert [e.event for e in events] == [SAMPLING_STATUS, SAMPLING_STATUS]
    assert events[0].payload["isActive"] is True
    assert events[1].payload["isActive"] is False


def test_start_while_active_conflicts(gateway: FakeGateway, namespace: Namespace) -> None:
    controller = QuerySamplingController(gateway)
    controller.start(namespace)
    with pytest.raises(SamplingConflictError):
        controller.start(Namespace(database="shop", collection="users"))
    assert len(gateway.commands) == 1


@pytest.mark.parametrize("rate", [0, 51])
def test_rate_bounds(gateway: FakeGateway, namespace: Namespace, rate: int) -> None:
    controller = QuerySamplingController(gateway)
    with pytest.raises(ValueError):
        controller.start(namespace, rate)
    assert gateway.commands == []


def test_stop_without_session(gateway: FakeGateway, namespace: Namespace) -> None:
    controller = QuerySamplingController(gateway)
    with pytest.raises(SamplingNotActiveError):
        controller.stop()
    # an explicit namespace can still be switched off
    controller.stop(namespace)
    assert gateway.commands[-1]["mode"] == "off"


def test_update_rate(gateway: FakeGateway, namespace: Namespace) -> None:
    controller = QuerySamplingController(gateway)
    with pytest.raises(SamplingNotActiveError):
        controller.update_rate(5)
    controller.start(namespace, 10)
    state = controller.update_rate(40)
    assert state.samples_per_second == 40
    assert gateway.commands[-1]["samplesPerSecond"] == 40


def test_command_failure_leaves_state_unchanged(namespace: Namespace) -> None:
    controller = QuerySamplingController(FakeGateway(on_command=failing_command("unauthorized")))
    with pytest.raises(SamplingCommandError, match="unauthorized"):
        controller.start(namespace)
    assert not controller.state.is_active


def test_status_reports_ops_and_sample_count(gateway: FakeGateway, namespace: Namespace) -> None:
    gateway.on_aggregate = lambda pipeline: [{"desc": "query analyzer", "ns": "shop.orders"}]
    sampled = gateway.config_collection("sampledQueries")
    sampled.documents = [{"ns": "shop.orders"}, {"ns": "shop.orders"}, {"ns": "shop.users"}]
    controller = QuerySamplingController(gateway)

    assert controller.status().is_active is False
    controller.start(namespace)
    status = controller.status()
    assert status.is_active
    assert status.total_samples == 2
    assert status.analyzer_ops == [{"desc": "query analyzer", "ns": "shop.orders"}]
    assert "$currentOp" in gateway.pipelines[-1][0]
    assert controller.state.total_samples == 2


def test_status_ignores_count_failures(gateway: FakeGateway, namespace: Namespace) -> None:
    gateway.config_collection("sampledQueries").fail_with = OperationFailure("no config access")
    controller = QuerySamplingController(gateway)
    controller.start(namespace)
    status = controller.status()
    assert status.error is None
    assert status.total_samples == 0


def test_list_queries(gateway: FakeGateway, namespace: Namespace) -> None:
    when = datetime(2024, 5, 1, tzinfo=timezone.utc)

    def aggregate(pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if "$count" in pipeline[-1]:
            return [{"total": 42}]
        return [
            {"cmdName": "find", "ns": "shop.orders", "expireAt": when},
            {"cmdName": "update", "ns": "shop.orders", "expireAt": when},
            {"cmdName": "find", "ns": "shop.orders"},
        ]

    gateway.on_aggregate = aggregate
    result = QuerySamplingController(gateway).list_queries(namespace, limit=3, skip=6)

    assert result.total == 42
    assert result.by_type == {"find": 2, "update": 1}
    assert result.queries[0]["sampledAt"] == when.isoformat()
    assert result.queries[2]["sampledAt"] is None
    assert gateway.pipelines[0] == [
        {"$listSampledQueries": {"namespace": "shop.orders"}},
        {"$sort": {"expireAt": -1}},
        {"$skip": 6},
        {"$limit": 3},
    ]


def test_list_queries_rejects_negative_paging(gateway: FakeGateway, namespace: Namespace) -> None:
    with pytest.raises(ValueError):
        QuerySamplingController(gateway).list_queries(namespace, limit=-1)


def test_stats_percentages(gateway: FakeGateway, namespace: Namespace) -> None:
    gateway.on_aggregate = lambda pipeline: [
        {"_id": "find", "count": 3},
        {"_id": "update", "count": 1},
    ]
    stats = QuerySamplingController(gateway).stats(namespace)
    assert stats["totalQueries"] == 4
    assert stats["byType"]["find"] == {"count": 3, "percentage": 75.0}
    assert stats["byType"]["update"]["percentage"] == 25.0
    assert stats["samplingState"]["isActive"] is False


def test_clear_deletes_namespace_samples(gateway: FakeGateway, namespace: Namespace) -> None:
    sampled = gateway.config_collection("sampledQueries")
    sampled.documents = [{"ns": "shop.orders"}, {"ns": "shop.users"}]
    assert QuerySamplingController(gateway).clear(namespace) == 1
    assert sampled.documents == [{"ns": "shop.users"}]
