"""Scoring helpers turning parsed shard key statistics into comparable numbers."""

from __future__ import annotations

import math

from .models import KeyCharacteristics, ReadDistribution, Score, WriteDistribution

WEIGHTS: dict[str, float] = {
    "cardinality": 0.25,
    "frequency": 0.20,
    "monotonicity": 0.15,
    "read_targeting": 0.20,
    "write_targeting": 0.20,
}

NEUTRAL_SCORE = 50

# (deviation ratio upper bound, score); evaluated in order.
_FREQUENCY_STEPS: tuple[tuple[float, int], ...] = (
    (1.5, 100),
    (2.0, 90),
    (3.0, 80),
    (5.0, 70),
    (10.0, 50),
    (20.0, 30),
)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, matching the documented thresholds."""
    return int(math.floor(value + 0.5))


def cardinality_score(kc: KeyCharacteristics | None) -> int:
    """Score the number of distinct key values, 0-100."""
    if kc is None or kc.num_docs_total == 0:
        return NEUTRAL_SCORE

    distinct = kc.num_distinct_values
    if distinct < 10:
        return round_half_up(distinct / 10 * 20)
    if distinct < 100:
        return round_half_up(20 + (distinct - 10) / 90 * 30)

    ratio = kc.cardinality_ratio
    if ratio >= 0.5:
        return 100
    if ratio >= 0.3:
        return 90 + round_half_up((ratio - 0.3) * 50)
    if ratio >= 0.1:
        return 70 + round_half_up((ratio - 0.1) * 100)
    if ratio >= 0.01:
        return 50 + round_half_up((ratio - 0.01) * 222)
    # At least 100 distinct values never scores below the 10-99 band.
    return max(NEUTRAL_SCORE, round_half_up(ratio * 5000))


def frequency_score(kc: KeyCharacteristics | None) -> int:
    """Score how evenly documents spread over the key values, 0-100."""
    if kc is None:
        return NEUTRAL_SCORE
    if kc.is_unique:
        return 100
    if not kc.most_common_values or kc.num_distinct_values == 0 or kc.num_docs_total == 0:
        return NEUTRAL_SCORE

    expected = kc.num_docs_total / kc.num_distinct_values
    max_frequency = kc.most_common_values[0].frequency
    deviation = max_frequency / expected
    for bound, score in _FREQUENCY_STEPS:
        if deviation <= bound:
            return score
    return max(0, 20 - math.floor(deviation / 10))


def monotonicity_score(kc: KeyCharacteristics | None) -> int:
    """Penalize keys whose values trend with insertion order."""
    if kc is None:
        return NEUTRAL_SCORE
    kind = kc.monotonicity.type
    if kind == "not monotonic":
        return 100
    if kind == "monotonic":
        correlation = kc.monotonicity.correlation_coefficient
        if correlation is None:
            return 0
        return round_half_up((1 - abs(correlation)) * 100)
    return NEUTRAL_SCORE


def read_targeting_score(rd: ReadDistribution | None) -> int:
    if rd is None or rd.sample_size.total == 0:
        return NEUTRAL_SCORE
    score = rd.percentage_of_single_shard_reads
    scatter_gather = rd.percentage_of_scatter_gather_reads
    if scatter_gather > 50:
        score = max(0.0, score - (scatter_gather - 50) * 0.5)
    return round_half_up(min(100.0, score))


def write_targeting_score(wd: WriteDistribution | None) -> int:
    if wd is None or wd.sample_size.total == 0:
        return NEUTRAL_SCORE
    score = wd.percentage_of_single_shard_writes
    if wd.percentage_of_shard_key_updates > 0:
        score = max(0.0, score - wd.percentage_of_shard_key_updates * 2)
    without_key = wd.percentage_of_writes_without_shard_key
    if without_key > 10:
        score = max(0.0, score - (without_key - 10) * 0.5)
    return round_half_up(min(100.0, max(0.0, score)))


def grade_for(overall: int) -> str:
    if overall >= 90:
        return "A"
    if overall >= 80:
        return "B"
    if overall >= 70:
        return "C"
    if overall >= 60:
        return "D"
    return "F"


def calculate_score(
    kc: KeyCharacteristics | None,
    rd: ReadDistribution | None,
    wd: WriteDistribution | None,
) -> Score:
    """Combine the five sub-scores into a weighted overall score and grade."""
    parts = {
        "cardinality": cardinality_score(kc),
        "frequency": frequency_score(kc),
        "monotonicity": monotonicity_score(kc),
        "read_targeting": read_targeting_score(rd),
        "write_targeting": write_targeting_score(wd),
    }
    weighted = sum(parts[name] * weight for name, weight in WEIGHTS.items())
    # Trim float noise so x.5 totals round up consistently.
    overall = round_half_up(round(weighted, 6))
    overall = min(100, max(0, overall))
    return Score(**parts, overall=overall, grade=grade_for(overall), weights=dict(WEIGHTS))
