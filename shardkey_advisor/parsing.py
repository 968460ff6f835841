"""Normalize raw ``analyzeShardKey`` responses into typed statistics and warnings."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bson import Binary, ObjectId, json_util

from .models import (
    AnalysisWarning,
    KeyCharacteristics,
    Monotonicity,
    MostCommonValue,
    ReadDistribution,
    ReadSampleSize,
    WriteDistribution,
    WriteSampleSize,
)

MAX_RECOMMENDED_KEY_FIELDS = 3


@dataclass
class ParsedAnalysis:
    """Result Parser output for one candidate."""

    key_characteristics: KeyCharacteristics | None = None
    read_distribution: ReadDistribution | None = None
    write_distribution: WriteDistribution | None = None
    warnings: list[AnalysisWarning] = field(default_factory=list)


def to_jsonable(document: Mapping[str, Any]) -> dict[str, Any]:
    """Convert BSON types (ObjectId, datetime, Binary, ...) to relaxed extended JSON."""
    return json.loads(json_util.dumps(document))


def format_value(value: Any) -> str:
    """Render a key value for display."""
    if value is None:
        return "null"
    if isinstance(value, ObjectId):
        return f'ObjectId("{value}")'
    if isinstance(value, uuid.UUID):
        return f'UUID("{value}")'
    if isinstance(value, Binary) and value.subtype == 4:
        return f'UUID("{value.as_uuid()}")'
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (Mapping, list)):
        if isinstance(value, Mapping) and len(value) == 1 and "$oid" in value:
            return f'ObjectId("{value["$oid"]}")'
        return json_util.dumps(value, separators=(",", ":"))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _num(section: Mapping[str, Any], name: str) -> Any:
    return section.get(name) or 0


def _parse_key_characteristics(kc: Mapping[str, Any]) -> KeyCharacteristics:
    monotonicity = kc.get("monotonicity") or {}
    sampled = int(_num(kc, "numDocsSampled"))
    distinct = int(_num(kc, "numDistinctValues"))
    return KeyCharacteristics(
        num_docs_total=int(_num(kc, "numDocsTotal")),
        num_orphan_docs=int(_num(kc, "numOrphanDocs")),
        avg_doc_size_bytes=float(_num(kc, "avgDocSizeBytes")),
        num_docs_sampled=sampled,
        is_unique=bool(kc.get("isUnique", False)),
        num_distinct_values=distinct,
        most_common_values=[
            MostCommonValue(
                value=format_value(entry.get("value")),
                frequency=int(entry.get("frequency") or 0),
            )
            for entry in kc.get("mostCommonValues") or []
        ],
        monotonicity=Monotonicity(
            type=monotonicity.get("type") or "unknown",
            correlation_coefficient=monotonicity.get("recordIdCorrelationCoefficient"),
        ),
        # distinct values are counted over the sample, so the sample is the denominator
        cardinality_ratio=distinct / sampled if sampled > 0 else 0.0,
    )


def _parse_read_distribution(rd: Mapping[str, Any]) -> ReadDistribution:
    sizes = rd.get("sampleSize") or {}
    return ReadDistribution(
        sample_size=ReadSampleSize(
            total=int(_num(sizes, "total")),
            find=int(_num(sizes, "find")),
            aggregate=int(_num(sizes, "aggregate")),
            count=int(_num(sizes, "count")),
            distinct=int(_num(sizes, "distinct")),
        ),
        percentage_of_single_shard_reads=float(_num(rd, "percentageOfSingleShardReads")),
        percentage_of_multi_shard_reads=float(_num(rd, "percentageOfMultiShardReads")),
        percentage_of_scatter_gather_reads=float(_num(rd, "percentageOfScatterGatherReads")),
        num_reads_by_range=list(rd.get("numReadsByRange") or []),
    )


def _parse_write_distribution(wd: Mapping[str, Any]) -> WriteDistribution:
    sizes = wd.get("sampleSize") or {}
    return WriteDistribution(
        sample_size=WriteSampleSize(
            total=int(_num(sizes, "total")),
            update=int(_num(sizes, "update")),
            delete=int(_num(sizes, "delete")),
            find_and_modify=int(_num(sizes, "findAndModify")),
        ),
        percentage_of_single_shard_writes=float(_num(wd, "percentageOfSingleShardWrites")),
        percentage_of_multi_shard_writes=float(_num(wd, "percentageOfMultiShardWrites")),
        percentage_of_scatter_gather_writes=float(_num(wd, "percentageOfScatterGatherWrites")),
        num_writes_by_range=list(wd.get("numWritesByRange") or []),
        percentage_of_shard_key_updates=float(_num(wd, "percentageOfShardKeyUpdates")),
        percentage_of_single_writes_without_shard_key=float(
            _num(wd, "percentageOfSingleWritesWithoutShardKey")
        ),
        percentage_of_multi_writes_without_shard_key=float(
            _num(wd, "percentageOfMultiWritesWithoutShardKey")
        ),
    )


def characteristics_warnings(kc: KeyCharacteristics) -> list[AnalysisWarning]:
    warnings: list[AnalysisWarning] = []
    distinct = kc.num_distinct_values
    if distinct < 10:
        warnings.append(
            AnalysisWarning(
                severity="error",
                message=(
                    f"Very low cardinality ({distinct} distinct values). "
                    "This severely limits horizontal scaling."
                ),
            )
        )
    elif kc.cardinality_ratio < 0.1:
        warnings.append(
            AnalysisWarning(
                severity="warning",
                message=(
                    f"Low cardinality ratio ({kc.cardinality_ratio * 100:.1f}%). "
                    "Consider a compound shard key for better distribution."
                ),
            )
        )

    if kc.monotonicity.type == "monotonic":
        warnings.append(
            AnalysisWarning(
                severity="warning",
                message=(
                    "Monotonically increasing/decreasing shard key detected. "
                    "This routes all inserts to one shard."
                ),
            )
        )

    if kc.most_common_values and distinct > 0:
        max_frequency = kc.most_common_values[0].frequency
        expected = kc.num_docs_total / distinct
        if max_frequency > expected * 5:
            share = max_frequency / kc.num_docs_total * 100 if kc.num_docs_total else 0.0
            warnings.append(
                AnalysisWarning(
                    severity="warning",
                    message=(
                        f"Potential hotspot detected. Most common value appears {max_frequency} "
                        f"times ({share:.1f}% of documents)."
                    ),
                )
            )
    return warnings


def parse_analysis(raw: Mapping[str, Any], key: Mapping[str, Any]) -> ParsedAnalysis:
    """Build the characteristics/read/write triple and derived warnings.

    Sections missing from ``raw`` (for example because no queries have been
    sampled yet) stay ``None``; scoring treats them as neutral.
    """
    parsed = ParsedAnalysis()

    if len(key) > MAX_RECOMMENDED_KEY_FIELDS:
        parsed.warnings.append(
            AnalysisWarning(
                severity="warning",
                message=(
                    f"Shard key has {len(key)} fields; more than "
                    f"{MAX_RECOMMENDED_KEY_FIELDS} is discouraged."
                ),
            )
        )

    if raw.get("keyCharacteristics"):
        parsed.key_characteristics = _parse_key_characteristics(raw["keyCharacteristics"])
        parsed.warnings.extend(characteristics_warnings(parsed.key_characteristics))

    if raw.get("readDistribution"):
        rd = _parse_read_distribution(raw["readDistribution"])
        parsed.read_distribution = rd
        scatter = rd.percentage_of_scatter_gather_reads
        if scatter > 50:
            parsed.warnings.append(
                AnalysisWarning(
                    severity="warning",
                    message=(
                        f"High scatter-gather reads ({scatter:.1f}%). "
                        "Most read queries don't filter by this shard key."
                    ),
                )
            )

    if raw.get("writeDistribution"):
        wd = _parse_write_distribution(raw["writeDistribution"])
        parsed.write_distribution = wd
        if wd.percentage_of_shard_key_updates > 5:
            parsed.warnings.append(
                AnalysisWarning(
                    severity="warning",
                    message=(
                        f"{wd.percentage_of_shard_key_updates:.1f}% of writes update the shard key "
                        "field. This requires document migration between shards."
                    ),
                )
            )

    return parsed
