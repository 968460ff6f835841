"""Database gateway used by every service that talks to MongoDB."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from pymongo import MongoClient
from pymongo.collection import Collection

from .models import AdvisorConfig, Namespace

logger = logging.getLogger(__name__)


class MongoGateway(Protocol):
    """Subset of the cluster the advisor needs."""

    def admin_command(self, command: Mapping[str, Any]) -> dict[str, Any]: ...

    def admin_aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]: ...

    def collection(self, namespace: Namespace) -> Collection: ...

    def config_collection(self, name: str) -> Collection: ...

    def close(self) -> None: ...


class PyMongoGateway(MongoGateway):
    """Gateway backed by a ``pymongo.MongoClient``."""

    def __init__(self, client: MongoClient) -> None:
        self._client = client

    @classmethod
    def from_uri(cls, uri: str, **kwargs: Any) -> PyMongoGateway:
        kwargs.setdefault("appname", "shardkey-advisor")
        return cls(MongoClient(uri, **kwargs))

    def admin_command(self, command: Mapping[str, Any]) -> dict[str, Any]:
        # The command verb must stay the first key.
        return dict(self._client.admin.command(dict(command)))

    def admin_aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return list(self._client.admin.aggregate(list(pipeline)))

    def collection(self, namespace: Namespace) -> Collection:
        return self._client[namespace.database][namespace.collection]

    def config_collection(self, name: str) -> Collection:
        return self._client["config"][name]

    def close(self) -> None:
        self._client.close()


def create_gateway(config: AdvisorConfig) -> MongoGateway | None:
    """Build a pymongo gateway when a URI is configured."""
    if not config.mongo_uri:
        return None
    logger.info("Creating MongoDB client")
    return PyMongoGateway.from_uri(config.mongo_uri)
