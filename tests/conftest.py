from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import pytest
from pymongo.common import validate_ok_for_update
from pymongo.errors import OperationFailure

from shardkey_advisor.models import Namespace


def _matches(doc: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    for name, expected in query.items():
        if isinstance(expected, Mapping):
            continue
        if doc.get(name) != expected:
            return False
    return True


@dataclass
class FakeCollection:
    """Just enough of ``pymongo.collection.Collection`` for the advisor."""

    documents: list[dict[str, Any]] = field(default_factory=list)
    indexes: list[dict[str, Any]] = field(
        default_factory=lambda: [{"name": "_id_", "key": {"_id": 1}}]
    )
    fail_with: Exception | None = None
    calls: list[tuple[str, Any]] = field(default_factory=list)

    def _record(self, name: str, arg: Any) -> None:
        self.calls.append((name, copy.deepcopy(arg)))
        if self.fail_with is not None and name != "aggregate-sample":
            raise self.fail_with

    def aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        first = pipeline[0] if pipeline else {}
        if "$sample" in first:
            self.calls.append(("aggregate-sample", copy.deepcopy(list(pipeline))))
            return [dict(doc) for doc in self.documents[: first["$sample"]["size"]]]
        self._record("aggregate", list(pipeline))
        return []

    def find(self, query: Mapping[str, Any], **kwargs: Any) -> list[dict[str, Any]]:
        self._record("find", {"filter": query, **kwargs})
        found = [doc for doc in self.documents if _matches(doc, query)]
        return found[: kwargs.get("limit") or None]

    def insert_one(self, document: Mapping[str, Any]) -> SimpleNamespace:
        self._record("insert_one", document)
        self.documents.append(dict(document))
        return SimpleNamespace(inserted_id=len(self.documents))

    def update_one(self, query: Mapping[str, Any], update: Mapping[str, Any]) -> SimpleNamespace:
        self._record("update_one", {"filter": query, "update": update})
        validate_ok_for_update(update)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def delete_one(self, query: Mapping[str, Any]) -> SimpleNamespace:
        self._record("delete_one", query)
        return SimpleNamespace(deleted_count=0)

    def delete_many(self, query: Mapping[str, Any]) -> SimpleNamespace:
        self._record("delete_many", query)
        kept = [doc for doc in self.documents if not _matches(doc, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted)

    def count_documents(self, query: Mapping[str, Any]) -> int:
        self._record("count_documents", query)
        return sum(1 for doc in self.documents if _matches(doc, query))

    def list_indexes(self) -> list[dict[str, Any]]:
        return [dict(idx) for idx in self.indexes]


CommandHandler = Callable[[dict[str, Any]], dict[str, Any]]
AggregateHandler = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


@dataclass
class FakeGateway:
    """In-memory stand-in for ``PyMongoGateway``."""

    on_command: CommandHandler = lambda command: {"ok": 1}
    on_aggregate: AggregateHandler = lambda pipeline: []
    commands: list[dict[str, Any]] = field(default_factory=list)
    pipelines: list[list[dict[str, Any]]] = field(default_factory=list)
    collections: dict[str, FakeCollection] = field(default_factory=dict)
    closed: bool = False

    def admin_command(self, command: Mapping[str, Any]) -> dict[str, Any]:
        self.commands.append(dict(command))
        return self.on_command(dict(command))

    def admin_aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        self.pipelines.append([dict(stage) for stage in pipeline])
        return self.on_aggregate([dict(stage) for stage in pipeline])

    def collection(self, namespace: Namespace) -> FakeCollection:
        return self.collections.setdefault(str(namespace), FakeCollection())

    def config_collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(f"config.{name}", FakeCollection())

    def close(self) -> None:
        self.closed = True


def analyze_response(
    *,
    total: int = 10_000,
    sampled: int = 10_000,
    distinct: int = 5_000,
    top_frequency: int = 3,
    monotonicity: str = "not monotonic",
    correlation: float | None = None,
    single_shard_reads: float = 90.0,
    scatter_gather_reads: float = 5.0,
    single_shard_writes: float = 90.0,
    shard_key_updates: float = 0.0,
    reads: int = 100,
    writes: int = 100,
    is_unique: bool = False,
) -> dict[str, Any]:
    """Raw ``analyzeShardKey`` output in the server's camelCase layout."""
    mono: dict[str, Any] = {"type": monotonicity}
    if correlation is not None:
        mono["recordIdCorrelationCoefficient"] = correlation
    return {
        "keyCharacteristics": {
            "numDocsTotal": total,
            "numOrphanDocs": 0,
            "avgDocSizeBytes": 220,
            "numDocsSampled": sampled,
            "isUnique": is_unique,
            "numDistinctValues": distinct,
            "mostCommonValues": [{"value": {"customerId": "c-1"}, "frequency": top_frequency}],
            "monotonicity": mono,
        },
        "readDistribution": {
            "sampleSize": {"total": reads, "find": reads, "aggregate": 0, "count": 0, "distinct": 0},
            "percentageOfSingleShardReads": single_shard_reads,
            "percentageOfMultiShardReads": 100 - single_shard_reads - scatter_gather_reads,
            "percentageOfScatterGatherReads": scatter_gather_reads,
            "numReadsByRange": [],
        },
        "writeDistribution": {
            "sampleSize": {"total": writes, "update": writes, "delete": 0, "findAndModify": 0},
            "percentageOfSingleShardWrites": single_shard_writes,
            "percentageOfMultiShardWrites": 0,
            "percentageOfScatterGatherWrites": 100 - single_shard_writes,
            "numWritesByRange": [],
            "percentageOfShardKeyUpdates": shard_key_updates,
            "percentageOfSingleWritesWithoutShardKey": 0,
            "percentageOfMultiWritesWithoutShardKey": 0,
        },
        "ok": 1,
    }


def failing_command(message: str = "command failed") -> CommandHandler:
    def handler(command: dict[str, Any]) -> dict[str, Any]:
        raise OperationFailure(message)

    return handler


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def namespace() -> Namespace:
    return Namespace(database="shop", collection="orders")
