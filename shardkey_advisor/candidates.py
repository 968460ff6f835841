"""Candidate suggestions from sampled documents and supporting-index checks."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bson import Binary, ObjectId, json_util

from .models import (
    CandidateSuggestions,
    FieldAnalysis,
    FieldRecommendation,
    IndexCheck,
    Namespace,
    SuggestedCandidate,
)
from .mongo import MongoGateway
from .scoring import round_half_up

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 100
MAX_DEPTH = 3
MAX_TRACKED_VALUES = 1000
MAX_SUGGESTIONS = 10


@dataclass
class _FieldStats:
    types: set[str] = field(default_factory=set)
    distinct: set[str] = field(default_factory=set)
    null_count: int = 0


def value_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, list):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, ObjectId):
        return "objectid"
    if isinstance(value, uuid.UUID) or (isinstance(value, Binary) and value.subtype == 4):
        return "uuid"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__.lower()


def _walk(doc: Mapping[str, Any], prefix: str, stats: dict[str, _FieldStats], depth: int) -> None:
    if depth > MAX_DEPTH:
        return
    for name, value in doc.items():
        path = f"{prefix}.{name}" if prefix else name
        entry = stats.setdefault(path, _FieldStats())
        kind = value_type(value)
        entry.types.add(kind)
        if value is None:
            entry.null_count += 1
        elif kind not in ("object", "array") and len(entry.distinct) < MAX_TRACKED_VALUES:
            entry.distinct.add(json_util.dumps(value))
        if kind == "object":
            _walk(value, path, stats, depth + 1)


def _rating(score: int) -> str:
    if score >= 70:
        return "recommended"
    if score >= 40:
        return "possible"
    return "avoid"


def recommend_field(path: str, stats: _FieldStats, total: int) -> FieldRecommendation:
    """Heuristic suitability of a single field, 0-100."""
    score = 50
    reasons: list[str] = []
    warnings: list[str] = []
    distinct = len(stats.distinct)

    if distinct >= total * 0.5:
        score += 20
        reasons.append("High cardinality")
    elif distinct >= total * 0.1:
        score += 10
        reasons.append("Moderate cardinality")
    elif distinct < 10:
        score -= 30
        warnings.append("Very low cardinality")
    else:
        score -= 10
        warnings.append("Low cardinality")

    if stats.types & {"string", "uuid", "objectid"}:
        score += 10
        reasons.append("Good type for shard key")
    if "date" in stats.types:
        score -= 15
        warnings.append("Date fields are often monotonic")

    null_ratio = stats.null_count / total
    if null_ratio > 0.1:
        score -= 20
        warnings.append(f"{null_ratio * 100:.0f}% null values")
    elif null_ratio > 0:
        score -= 5

    lowered = path.lower()
    if any(token in lowered for token in ("customer", "user", "tenant")):
        score += 15
        reasons.append("Common query filter field")
    if "id" in lowered and "_id" not in lowered:
        score += 10
        reasons.append("ID field - likely used in queries")
    if any(token in lowered for token in ("timestamp", "createdat", "created_at")):
        score -= 20
        warnings.append("Timestamp fields are monotonically increasing")
    if any(token in lowered for token in ("status", "state", "type")) and distinct < 20:
        score -= 15
        warnings.append("Enum-like field with few values")

    score = max(0, min(100, score))
    return FieldRecommendation(
        score=score, rating=_rating(score), reasons=reasons, warnings=warnings
    )


def analyze_fields(samples: Sequence[Mapping[str, Any]]) -> list[FieldAnalysis]:
    stats: dict[str, _FieldStats] = {}
    for doc in samples:
        _walk(doc, "", stats, 0)

    total = len(samples)
    analysis: list[FieldAnalysis] = []
    for path, entry in stats.items():
        if path == "_id" or entry.types & {"array", "object"}:
            continue
        analysis.append(
            FieldAnalysis(
                field=path,
                types=sorted(entry.types),
                distinct_values=len(entry.distinct),
                distinct_ratio=len(entry.distinct) / total,
                null_ratio=entry.null_count / total,
                sample_values=sorted(entry.distinct)[:5],
                recommendation=recommend_field(path, entry, total),
            )
        )
    analysis.sort(key=lambda f: f.recommendation.score, reverse=True)
    return analysis


def _index_fields(index: Mapping[str, Any]) -> list[str]:
    return list(dict(index.get("key", {})).keys())


def build_candidates(
    fields: Sequence[FieldAnalysis], indexes: Sequence[Mapping[str, Any]]
) -> list[SuggestedCandidate]:
    candidates: list[SuggestedCandidate] = []
    for fa in fields:
        rec = fa.recommendation
        if rec.score < 40:
            continue
        candidates.append(
            SuggestedCandidate(
                key={fa.field: 1},
                label=fa.field,
                type="single",
                score=rec.score,
                rating=rec.rating,
                reasons=rec.reasons,
                warnings=rec.warnings,
                has_index=any(_index_fields(idx)[:1] == [fa.field] for idx in indexes),
            )
        )
        if fa.distinct_ratio > 0.5:
            hashed_score = rec.score - 5
            candidates.append(
                SuggestedCandidate(
                    key={fa.field: "hashed"},
                    label=f"{fa.field} (hashed)",
                    type="single-hashed",
                    score=hashed_score,
                    rating=_rating(hashed_score),
                    reasons=[*rec.reasons, "Hashed for even distribution"],
                    warnings=rec.warnings,
                    has_index=any(
                        dict(idx.get("key", {})).get(fa.field) == "hashed" for idx in indexes
                    ),
                )
            )

    top = [fa for fa in fields[:5] if fa.recommendation.score >= 30]
    for i, first in enumerate(top):
        for second in top[i + 1 :]:
            both_monotonic = all(
                any("monotonic" in w for w in fa.recommendation.warnings) for fa in (first, second)
            )
            if both_monotonic:
                continue
            score = round_half_up((first.recommendation.score + second.recommendation.score) / 2)
            candidates.append(
                SuggestedCandidate(
                    key={first.field: 1, second.field: 1},
                    label=f"{first.field} + {second.field}",
                    type="compound",
                    score=score,
                    rating=_rating(score),
                    reasons=[
                        "Compound key for better distribution",
                        *first.recommendation.reasons[:1],
                    ],
                    has_index=any(
                        _index_fields(idx)[:2] == [first.field, second.field] for idx in indexes
                    ),
                )
            )

    candidates.sort(key=lambda c: c.score, reverse=True)
    unique: list[SuggestedCandidate] = []
    seen: set[tuple[tuple[str, Any], ...]] = set()
    for cand in candidates:
        marker = tuple(cand.key.items())
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(cand)
        if len(unique) >= MAX_SUGGESTIONS:
            break
    return unique


def suggest_candidates(gateway: MongoGateway, namespace: Namespace) -> CandidateSuggestions:
    """Sample the collection and propose shard key candidates."""
    coll = gateway.collection(namespace)
    samples = list(coll.aggregate([{"$sample": {"size": SAMPLE_SIZE}}]))
    if not samples:
        return CandidateSuggestions(message="No documents found in collection")

    fields = analyze_fields(samples)
    indexes = list(coll.list_indexes())
    logger.info("Suggesting candidates for %s from %d sampled documents", namespace, len(samples))
    return CandidateSuggestions(
        candidates=build_candidates(fields, indexes),
        field_analysis=fields,
        index_info=[
            {
                "name": idx.get("name"),
                "key": dict(idx.get("key", {})),
                "unique": bool(idx.get("unique", False)),
            }
            for idx in indexes
        ],
    )


def find_supporting_index(
    key: Mapping[str, Any], indexes: Iterable[Mapping[str, Any]]
) -> Mapping[str, Any] | None:
    """First index whose leading fields are exactly the key's fields, in order."""
    fields = list(key)
    for index in indexes:
        if _index_fields(index)[: len(fields)] == fields:
            return index
    return None


def check_supporting_index(
    gateway: MongoGateway, namespace: Namespace, key: Mapping[str, Any]
) -> IndexCheck:
    index = find_supporting_index(key, gateway.collection(namespace).list_indexes())
    if index is not None:
        return IndexCheck(
            exists=True,
            index_name=index.get("name"),
            index_key=dict(index.get("key", {})),
            unique=bool(index.get("unique", False)),
        )
    return IndexCheck(
        exists=False,
        required_index=dict(key),
        create_command=f"db.{namespace.collection}.createIndex({json_util.dumps(dict(key))})",
    )
