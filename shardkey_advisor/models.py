"""Typed data models used across the shard key advisor."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

KeyDirection = Literal[1, -1, "hashed"]
Severity = Literal["warning", "error"]
PatternType = Literal["read", "write"]
Operation = Literal["find", "aggregate", "update", "insert", "delete"]


class WireModel(BaseModel):
    """Base for boundary shapes: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def key_to_string(key: dict[str, Any]) -> str:
    """Compact JSON rendering of a key, used as its display identity."""
    return json.dumps(key, separators=(",", ":"))


class Candidate(WireModel):
    """Shard key proposed for evaluation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key: dict[str, KeyDirection]
    label: str | None = None

    @field_validator("key", mode="before")
    @classmethod
    def _check_key(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            raise ValueError("Shard key must be an object")
        if not value:
            raise ValueError("Shard key must have at least one field")
        hashed = 0
        for name, direction in value.items():
            if not isinstance(name, str) or not name:
                raise ValueError("Shard key field names must be non-empty strings")
            if name.startswith("$"):
                raise ValueError(f'Invalid field name "{name}". Field names cannot start with $')
            if "\0" in name:
                raise ValueError(
                    f'Invalid field name "{name}". Field names cannot contain null characters'
                )
            if isinstance(direction, bool) or direction not in (1, -1, "hashed"):
                raise ValueError(f'Invalid value for field "{name}". Must be 1, -1, or "hashed"')
            if direction == "hashed":
                hashed += 1
        if hashed > 1:
            raise ValueError("Only one field can be hashed in a shard key")
        return value

    @property
    def key_string(self) -> str:
        return key_to_string(self.key)

    @property
    def display_label(self) -> str:
        return self.label or self.key_string


class Namespace(WireModel):
    """A ``database.collection`` pair."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    database: str
    collection: str

    @field_validator("database")
    @classmethod
    def _check_database(cls, value: str) -> str:
        if not value:
            raise ValueError("Database name cannot be empty")
        for char, label in (
            ("/", "forward slash"),
            ("\\", "backslash"),
            (".", "period"),
            (" ", "spaces"),
            ("\0", "null characters"),
        ):
            if char in value:
                raise ValueError(f"Database name cannot contain {label}")
        if len(value) > 64:
            raise ValueError("Database name cannot be longer than 64 characters")
        return value

    @field_validator("collection")
    @classmethod
    def _check_collection(cls, value: str) -> str:
        if not value:
            raise ValueError("Collection name cannot be empty")
        if "$" in value:
            raise ValueError("Collection name cannot contain dollar sign")
        if "\0" in value:
            raise ValueError("Collection name cannot contain null characters")
        if value.startswith("system."):
            raise ValueError('Collection name cannot start with "system."')
        return value

    def __str__(self) -> str:
        return f"{self.database}.{self.collection}"

    @classmethod
    def parse(cls, value: str) -> Namespace:
        """Split ``db.coll``; the collection part may itself contain periods."""
        database, sep, collection = value.partition(".")
        if not sep:
            raise ValueError(f"Namespace must look like database.collection: {value!r}")
        return cls(database=database, collection=collection)


class AnalysisOptions(WireModel):
    """Flags forwarded to ``analyzeShardKey``."""

    key_characteristics: bool = True
    read_write_distribution: bool = True
    sample_size: int | None = Field(None, ge=100, le=1_000_000)
    sample_rate: float | None = Field(None, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _single_sampling_mode(self) -> AnalysisOptions:
        if self.sample_size is not None and self.sample_rate is not None:
            raise ValueError("Cannot specify both sampleSize and sampleRate")
        return self


class MostCommonValue(WireModel):
    value: str
    frequency: int = 0


class Monotonicity(WireModel):
    type: str = "unknown"
    correlation_coefficient: float | None = None


class KeyCharacteristics(WireModel):
    num_docs_total: int = 0
    num_orphan_docs: int = 0
    avg_doc_size_bytes: float = 0
    num_docs_sampled: int = 0
    is_unique: bool = False
    num_distinct_values: int = 0
    most_common_values: list[MostCommonValue] = Field(default_factory=list)
    monotonicity: Monotonicity = Field(default_factory=Monotonicity)
    cardinality_ratio: float = 0.0


class ReadSampleSize(WireModel):
    total: int = 0
    find: int = 0
    aggregate: int = 0
    count: int = 0
    distinct: int = 0


class WriteSampleSize(WireModel):
    total: int = 0
    update: int = 0
    delete: int = 0
    find_and_modify: int = 0


class ReadDistribution(WireModel):
    sample_size: ReadSampleSize = Field(default_factory=ReadSampleSize)
    percentage_of_single_shard_reads: float = 0.0
    percentage_of_multi_shard_reads: float = 0.0
    percentage_of_scatter_gather_reads: float = 0.0
    num_reads_by_range: list[Any] = Field(default_factory=list)


class WriteDistribution(WireModel):
    sample_size: WriteSampleSize = Field(default_factory=WriteSampleSize)
    percentage_of_single_shard_writes: float = 0.0
    percentage_of_multi_shard_writes: float = 0.0
    percentage_of_scatter_gather_writes: float = 0.0
    num_writes_by_range: list[Any] = Field(default_factory=list)
    percentage_of_shard_key_updates: float = 0.0
    percentage_of_single_writes_without_shard_key: float = 0.0
    percentage_of_multi_writes_without_shard_key: float = 0.0

    @property
    def percentage_of_writes_without_shard_key(self) -> float:
        return (
            self.percentage_of_single_writes_without_shard_key
            + self.percentage_of_multi_writes_without_shard_key
        )


class AnalysisWarning(WireModel):
    severity: Severity
    message: str


class Score(WireModel):
    cardinality: int
    frequency: int
    monotonicity: int
    read_targeting: int
    write_targeting: int
    overall: int
    grade: str
    weights: dict[str, float]


class AnalysisResult(WireModel):
    """Evaluation of one candidate; never mutated once stored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    namespace: str
    key: dict[str, KeyDirection]
    key_string: str
    label: str
    key_characteristics: KeyCharacteristics | None = None
    read_distribution: ReadDistribution | None = None
    write_distribution: WriteDistribution | None = None
    score: Score
    warnings: list[AnalysisWarning] = Field(default_factory=list)
    raw_command: dict[str, Any] = Field(default_factory=dict)
    raw_output: dict[str, Any] = Field(default_factory=dict)
    analyzed_at: datetime


class CandidateError(WireModel):
    key: dict[str, KeyDirection]
    label: str
    error: str


class ComparisonRow(WireModel):
    key: str
    label: str
    cardinality: int
    frequency: int
    monotonicity: int
    read_targeting: int
    write_targeting: int
    overall: int
    grade: str
    warnings: int


class CandidateSummary(WireModel):
    key: str
    score: int
    grade: str


class Comparison(WireModel):
    metrics: list[ComparisonRow]
    best_candidate: CandidateSummary
    worst_candidate: CandidateSummary | None = None
    score_difference: int = 0


class Recommendation(WireModel):
    type: Literal["primary", "alternative", "avoid", "tip"]
    title: str | None = None
    key: str | None = None
    score: int | None = None
    grade: str | None = None
    reasons: list[str] = Field(default_factory=list)
    note: str | None = None
    message: str | None = None


class AnalysisReport(WireModel):
    id: str
    namespace: str
    results: list[AnalysisResult]
    errors: list[CandidateError]
    comparison: Comparison | None
    recommendations: list[Recommendation]
    analyzed_at: datetime


class IndexCheck(WireModel):
    exists: bool
    index_name: str | None = None
    index_key: dict[str, Any] | None = None
    unique: bool = False
    required_index: dict[str, Any] | None = None
    create_command: str | None = None


class FieldRecommendation(WireModel):
    score: int
    rating: Literal["recommended", "possible", "avoid"]
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FieldAnalysis(WireModel):
    field: str
    types: list[str]
    distinct_values: int
    distinct_ratio: float
    null_ratio: float
    sample_values: list[str]
    recommendation: FieldRecommendation


class SuggestedCandidate(WireModel):
    key: dict[str, KeyDirection]
    label: str
    type: Literal["single", "single-hashed", "compound"]
    score: int
    rating: Literal["recommended", "possible", "avoid"]
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    has_index: bool = False


class CandidateSuggestions(WireModel):
    candidates: list[SuggestedCandidate] = Field(default_factory=list)
    field_analysis: list[FieldAnalysis] = Field(default_factory=list)
    index_info: list[dict[str, Any]] = Field(default_factory=list)
    message: str | None = None


class QueryPattern(WireModel):
    """Weighted operation template replayed by the workload scheduler."""

    name: str = Field(..., min_length=1)
    description: str = ""
    type: PatternType
    weight: int = Field(..., ge=1)
    operation: Operation
    filter: dict[str, Any] | None = None
    update: dict[str, Any] | None = None
    document: dict[str, Any] | None = None
    pipeline: list[dict[str, Any]] | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_operation_fields(self) -> QueryPattern:
        if self.operation == "update" and (self.filter is None or self.update is None):
            raise ValueError(f"Pattern '{self.name}': update requires filter and update")
        if self.operation == "update" and not all(key.startswith("$") for key in self.update):
            raise ValueError(f"Pattern '{self.name}': update keys must be $ operators")
        if self.operation == "insert" and self.document is None:
            raise ValueError(f"Pattern '{self.name}': insert requires document")
        if self.operation == "aggregate" and self.pipeline is None:
            raise ValueError(f"Pattern '{self.name}': aggregate requires pipeline")
        if self.operation == "delete" and self.filter is None:
            raise ValueError(f"Pattern '{self.name}': delete requires filter")
        return self


class PatternSummary(WireModel):
    name: str
    type: PatternType
    weight: int
    operation: Operation


class ProfileInfo(WireModel):
    id: str
    name: str
    description: str
    patterns: list[PatternSummary]


class WorkloadConfig(WireModel):
    profile: str = "ecommerce"
    duration_seconds: float = Field(120, gt=0, le=3600)
    queries_per_second: float = Field(15, ge=1, le=100)
    custom_patterns: list[QueryPattern] | None = Field(None, min_length=1)


class WorkloadPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


class WorkloadErrorEntry(WireModel):
    pattern: str
    error: str
    timestamp: datetime


class LatencySummary(WireModel):
    count: int = 0
    avg_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    max_ms: float = 0.0


class WorkloadStats(WireModel):
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    by_type: dict[str, int] = Field(default_factory=lambda: {"read": 0, "write": 0})
    by_operation: dict[str, int] = Field(default_factory=dict)
    latencies: list[float] = Field(default_factory=list)
    errors: list[WorkloadErrorEntry] = Field(default_factory=list)
    latency_summary: LatencySummary = Field(default_factory=LatencySummary)
    actual_duration_seconds: float | None = None
    actual_qps: float | None = None


class WorkloadStatus(WireModel):
    phase: WorkloadPhase = WorkloadPhase.IDLE
    is_running: bool = False
    namespace: str | None = None
    profile: str | None = None
    config: WorkloadConfig | None = None
    started_at: datetime | None = None
    elapsed_seconds: float = 0.0
    remaining_seconds: float = 0.0
    progress: float = 0.0
    actual_qps: float = 0.0
    queries_executed: int = 0
    stats: WorkloadStats | None = None
    error: str | None = None


class SamplingState(WireModel):
    is_active: bool = False
    namespace: str | None = None
    started_at: datetime | None = None
    samples_per_second: int | None = None
    total_samples: int = 0
    last_command: dict[str, Any] | None = None
    last_response: dict[str, Any] | None = None


class SamplingStatus(SamplingState):
    duration_seconds: int = 0
    analyzer_ops: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None


class SampledQueries(WireModel):
    queries: list[dict[str, Any]]
    total: int
    by_type: dict[str, int]
    limit: int
    skip: int


class ProgressEvent(WireModel):
    topic: str
    event: str
    sequence: int
    emitted_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class AdvisorConfig(BaseModel):
    """Runtime configuration switches."""

    mongo_uri: str | None = None
    result_capacity: int = Field(100, ge=1)
    default_sample_size: int = Field(10_000, ge=100, le=1_000_000)
    latency_window: int = Field(1000, ge=1)
    error_window: int = Field(100, ge=1)
    progress_every: int = Field(10, ge=1)
    sample_document_count: int = Field(100, ge=1)
    stop_timeout_seconds: float = Field(5.0, gt=0.0)
    event_history: int = Field(200, ge=1)
