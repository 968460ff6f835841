"""Built-in workload profiles and ``{{placeholder}}`` template materialization."""

from __future__ import annotations

import random
import re
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from bson import json_util

from .errors import UnknownProfileError
from .models import PatternSummary, ProfileInfo, QueryPattern

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

CATEGORIES = ["technology", "sports", "entertainment", "news", "lifestyle"]
PAYMENT_METHODS = ["credit_card", "debit_card", "paypal"]

FALLBACK_VALUES: dict[str, list[Any]] = {
    "region": ["NA", "EU", "APAC", "LATAM"],
    "status": ["pending", "processing", "shipped", "delivered", "cancelled"],
}


@dataclass(frozen=True)
class WorkloadProfile:
    id: str
    name: str
    description: str
    patterns: tuple[QueryPattern, ...]

    def info(self) -> ProfileInfo:
        return ProfileInfo(
            id=self.id,
            name=self.name,
            description=self.description,
            patterns=[
                PatternSummary(name=p.name, type=p.type, weight=p.weight, operation=p.operation)
                for p in self.patterns
            ],
        )


def _profile(
    id_: str, name: str, description: str, patterns: list[dict[str, Any]]
) -> WorkloadProfile:
    return WorkloadProfile(
        id=id_,
        name=name,
        description=description,
        patterns=tuple(QueryPattern.model_validate(p) for p in patterns),
    )


ECOMMERCE = _profile(
    "ecommerce",
    "E-commerce",
    "Simulates an e-commerce order system with customer-centric reads and writes",
    [
        {
            "name": "Get customer orders",
            "type": "read",
            "weight": 25,
            "operation": "find",
            "filter": {"customerId": "{{customerId}}"},
            "options": {"sort": {"createdAt": -1}, "limit": 20},
        },
        {
            "name": "Place new order",
            "type": "write",
            "weight": 15,
            "operation": "insert",
            "document": {
                "orderId": "{{newOrderId}}",
                "customerId": "{{customerId}}",
                "region": "{{region}}",
                "totalAmount": "{{amount}}",
                "status": "pending",
                "paymentMethod": "{{paymentMethod}}",
                "lineItems": [{"sku": "{{sku}}", "quantity": "{{quantity}}"}],
                "createdAt": "{{now}}",
                "updatedAt": "{{now}}",
            },
        },
        {
            "name": "Get order details",
            "type": "read",
            "weight": 10,
            "operation": "find",
            "filter": {"orderId": "{{orderId}}"},
        },
        {
            "name": "Update order status",
            "type": "write",
            "weight": 10,
            "operation": "update",
            "filter": {"orderId": "{{orderId}}"},
            "update": {"$set": {"status": "{{status}}", "updatedAt": "{{now}}"}},
        },
        {
            "name": "Customer updates order",
            "type": "write",
            "weight": 15,
            "operation": "update",
            "filter": {"customerId": "{{customerId}}", "orderId": "{{orderId}}"},
            "update": {"$set": {"shippingAddress.street": "{{address}}", "updatedAt": "{{now}}"}},
        },
        {
            "name": "Cancel customer order",
            "type": "write",
            "weight": 10,
            "operation": "update",
            "filter": {"customerId": "{{customerId}}", "status": "pending"},
            "update": {"$set": {"status": "cancelled", "updatedAt": "{{now}}"}},
        },
        {
            "name": "Customer spending summary",
            "type": "read",
            "weight": 10,
            "operation": "aggregate",
            "pipeline": [
                {"$match": {"customerId": "{{customerId}}"}},
                {
                    "$group": {
                        "_id": "$customerId",
                        "totalSpent": {"$sum": "$totalAmount"},
                        "orderCount": {"$sum": 1},
                    }
                },
            ],
        },
        {
            "name": "Regional sales report",
            "type": "read",
            "weight": 5,
            "operation": "aggregate",
            "pipeline": [
                {"$match": {"region": "{{region}}", "createdAt": {"$gte": "{{dateFrom}}"}}},
                {
                    "$group": {
                        "_id": "$region",
                        "totalSales": {"$sum": "$totalAmount"},
                        "count": {"$sum": 1},
                    }
                },
            ],
        },
    ],
)

SOCIAL = _profile(
    "social",
    "Social Media",
    "Simulates a social media platform with user-centric reads and writes",
    [
        {
            "name": "Get user feed",
            "type": "read",
            "weight": 25,
            "operation": "find",
            "filter": {"userId": "{{userId}}"},
            "options": {"sort": {"createdAt": -1}, "limit": 20},
        },
        {
            "name": "Create new post",
            "type": "write",
            "weight": 15,
            "operation": "insert",
            "document": {
                "postId": "{{newPostId}}",
                "userId": "{{userId}}",
                "username": "user_{{userId}}",
                "content": "{{content}}",
                "category": "{{category}}",
                "visibility": "public",
                "likes": 0,
                "commentCount": 0,
                "comments": [],
                "createdAt": "{{now}}",
                "updatedAt": "{{now}}",
            },
        },
        {
            "name": "Edit post",
            "type": "write",
            "weight": 10,
            "operation": "update",
            "filter": {"userId": "{{userId}}", "postId": "{{postId}}"},
            "update": {
                "$set": {"content": "Edited post content", "isEdited": True, "updatedAt": "{{now}}"}
            },
        },
        {
            "name": "Delete post",
            "type": "write",
            "weight": 5,
            "operation": "delete",
            "filter": {"userId": "{{userId}}", "postId": "{{postId}}"},
        },
        {
            "name": "Get post by ID",
            "type": "read",
            "weight": 10,
            "operation": "find",
            "filter": {"postId": "{{postId}}"},
        },
        {
            "name": "Like post",
            "type": "write",
            "weight": 10,
            "operation": "update",
            "filter": {"postId": "{{postId}}"},
            "update": {"$inc": {"likes": 1}},
        },
        {
            "name": "Add comment",
            "type": "write",
            "weight": 10,
            "operation": "update",
            "filter": {"userId": "{{userId}}", "postId": "{{postId}}"},
            "update": {
                "$push": {
                    "comments": {
                        "commentId": "{{newCommentId}}",
                        "userId": "{{userId}}",
                        "content": "Sample comment",
                        "createdAt": "{{now}}",
                    }
                },
                "$inc": {"commentCount": 1},
            },
        },
        {
            "name": "User engagement stats",
            "type": "read",
            "weight": 10,
            "operation": "aggregate",
            "pipeline": [
                {"$match": {"userId": "{{userId}}"}},
                {
                    "$group": {
                        "_id": "$userId",
                        "totalLikes": {"$sum": "$likes"},
                        "totalPosts": {"$sum": 1},
                        "avgLikes": {"$avg": "$likes"},
                    }
                },
            ],
        },
        {
            "name": "Get trending posts",
            "type": "read",
            "weight": 5,
            "operation": "aggregate",
            "pipeline": [
                {"$match": {"createdAt": {"$gte": "{{dateFrom}}"}, "visibility": "public"}},
                {"$sort": {"likes": -1}},
                {"$limit": 10},
            ],
        },
    ],
)

PROFILES: dict[str, WorkloadProfile] = {p.id: p for p in (ECOMMERCE, SOCIAL)}


def list_profiles() -> list[ProfileInfo]:
    return [profile.info() for profile in PROFILES.values()]


def get_profile(profile_id: str) -> WorkloadProfile:
    try:
        return PROFILES[profile_id]
    except KeyError:
        raise UnknownProfileError(f"Unknown workload profile: {profile_id}") from None


def is_generated(name: str) -> bool:
    return name in _GENERATORS or (name.startswith("new") and name[3:4].isupper())


def _random_uuid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


_GENERATORS: dict[str, Any] = {
    "now": lambda rng, now: now,
    "dateFrom": lambda rng, now: now - timedelta(days=7),
    "amount": lambda rng, now: round(rng.uniform(10, 510), 2),
    "address": lambda rng, now: f"{rng.randint(1, 9999)} Updated Street",
    "content": lambda rng, now: "Sample post content from workload simulation",
    "category": lambda rng, now: rng.choice(CATEGORIES),
    "paymentMethod": lambda rng, now: rng.choice(PAYMENT_METHODS),
    "sku": lambda rng, now: f"SKU-{rng.getrandbits(32):08X}",
    "quantity": lambda rng, now: rng.randint(1, 3),
}


def _placeholders(node: Any) -> Iterable[str]:
    if isinstance(node, str):
        yield from PLACEHOLDER.findall(node)
    elif isinstance(node, Mapping):
        for value in node.values():
            yield from _placeholders(value)
    elif isinstance(node, list):
        for value in node:
            yield from _placeholders(value)


def sample_fields(patterns: Iterable[QueryPattern]) -> list[str]:
    """Placeholder names that must be filled from existing documents."""
    names: dict[str, None] = {}
    for pattern in patterns:
        template = [pattern.filter, pattern.update, pattern.document, pattern.pipeline]
        for name in _placeholders(template):
            if not is_generated(name):
                names.setdefault(name, None)
    return list(names)


def _lookup(doc: Mapping[str, Any], path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def harvest_sample_values(
    documents: Sequence[Mapping[str, Any]],
    fields: Iterable[str],
    *,
    rng: random.Random | None = None,
) -> dict[str, list[Any]]:
    """Distinct scalar values per field, with placeholders when none were found."""
    rng = rng or random.Random()
    values: dict[str, list[Any]] = {}
    for name in fields:
        seen: set[str] = set()
        found: list[Any] = []
        for doc in documents:
            value = _lookup(doc, name)
            if value is None or isinstance(value, (Mapping, list)):
                continue
            marker = json_util.dumps(value)
            if marker not in seen:
                seen.add(marker)
                found.append(value)
        if not found:
            found = list(FALLBACK_VALUES.get(name, [])) or [_random_uuid(rng)]
        values[name] = found
    return values


class TemplateRenderer:
    """Fills ``{{name}}`` placeholders for one operation.

    A string that is exactly one placeholder becomes the value itself (keeping
    dates and numbers typed); embedded placeholders are interpolated as text.
    Within one render call a name always resolves to the same value.
    """

    def __init__(
        self,
        sample_values: Mapping[str, Sequence[Any]],
        *,
        rng: random.Random | None = None,
        now: datetime | None = None,
    ) -> None:
        self._samples = sample_values
        self._rng = rng or random.Random()
        self._now = now or datetime.now(timezone.utc)
        self._resolved: dict[str, Any] = {}

    def resolve(self, name: str) -> Any:
        if name not in self._resolved:
            self._resolved[name] = self._produce(name)
        return self._resolved[name]

    def _produce(self, name: str) -> Any:
        generator = _GENERATORS.get(name)
        if generator is not None:
            return generator(self._rng, self._now)
        if is_generated(name):
            return _random_uuid(self._rng)
        choices = self._samples.get(name) or FALLBACK_VALUES.get(name)
        if choices:
            return self._rng.choice(list(choices))
        return _random_uuid(self._rng)

    def render(self, node: Any) -> Any:
        if isinstance(node, str):
            whole = PLACEHOLDER.fullmatch(node)
            if whole:
                return self.resolve(whole.group(1))
            return PLACEHOLDER.sub(lambda m: str(self.resolve(m.group(1))), node)
        if isinstance(node, Mapping):
            return {key: self.render(value) for key, value in node.items()}
        if isinstance(node, list):
            return [self.render(value) for value in node]
        return node
