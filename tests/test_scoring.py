from __future__ import annotations

import pytest

from shardkey_advisor.models import (
    KeyCharacteristics,
    Monotonicity,
    MostCommonValue,
    ReadDistribution,
    ReadSampleSize,
    WriteDistribution,
    WriteSampleSize,
)
from shardkey_advisor.scoring import (
    WEIGHTS,
    calculate_score,
    cardinality_score,
    frequency_score,
    grade_for,
    monotonicity_score,
    read_targeting_score,
    round_half_up,
    write_targeting_score,
)


def _kc(
    *,
    total: int = 1000,
    sampled: int = 1000,
    distinct: int = 100,
    top: int | None = None,
    unique: bool = False,
    monotonicity: str = "not monotonic",
    correlation: float | None = None,
) -> KeyCharacteristics:
    return KeyCharacteristics(
        num_docs_total=total,
        num_docs_sampled=sampled,
        num_distinct_values=distinct,
        is_unique=unique,
        most_common_values=[MostCommonValue(value="x", frequency=top)] if top is not None else [],
        monotonicity=Monotonicity(type=monotonicity, correlation_coefficient=correlation),
        cardinality_ratio=distinct / sampled if sampled else 0.0,
    )


def _rd(single: float, scatter: float, total: int = 100) -> ReadDistribution:
    return ReadDistribution(
        sample_size=ReadSampleSize(total=total, find=total),
        percentage_of_single_shard_reads=single,
        percentage_of_scatter_gather_reads=scatter,
    )


def _wd(single: float, key_updates: float = 0.0, total: int = 100) -> WriteDistribution:
    return WriteDistribution(
        sample_size=WriteSampleSize(total=total, update=total),
        percentage_of_single_shard_writes=single,
        percentage_of_shard_key_updates=key_updates,
    )


def test_weights_sum_to_one() -> None:
    assert sum(WEIGHTS.values()) == pytest.approx(1.0)


def test_round_half_up() -> None:
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(1.49) == 1


@pytest.mark.parametrize(
    ("distinct", "sampled", "expected"),
    [
        (5, 1000, 10),
        (50, 1000, 33),
        (600, 1000, 100),
        (400, 1000, 95),
        (200, 1000, 80),
        (500, 10_000, 59),
        (100, 100_000, 50),
    ],
)
def test_cardinality_bands(distinct: int, sampled: int, expected: int) -> None:
    assert cardinality_score(_kc(distinct=distinct, sampled=sampled, total=sampled)) == expected


def test_cardinality_neutral_without_data() -> None:
    assert cardinality_score(None) == 50
    assert cardinality_score(_kc(total=0, distinct=0)) == 50


def test_cardinality_never_decreases_with_more_distinct_values() -> None:
    scores = [
        cardinality_score(_kc(total=10_000, sampled=10_000, distinct=d)) for d in range(10_001)
    ]
    assert all(a <= b for a, b in zip(scores, scores[1:]))
    assert scores[0] == 0
    assert scores[-1] == 100


def test_frequency_scores() -> None:
    assert frequency_score(_kc(unique=True, top=900)) == 100
    # 1000 docs over 100 values: 10 expected per value
    assert frequency_score(_kc(top=12)) == 100
    assert frequency_score(_kc(top=70)) == 50
    assert frequency_score(_kc(top=250)) == 18
    assert frequency_score(_kc(top=None)) == 50
    assert frequency_score(None) == 50


def test_monotonicity_scores() -> None:
    assert monotonicity_score(_kc(monotonicity="not monotonic")) == 100
    assert monotonicity_score(_kc(monotonicity="unknown")) == 50
    assert monotonicity_score(_kc(monotonicity="monotonic", correlation=0.9)) == 10
    assert monotonicity_score(_kc(monotonicity="monotonic", correlation=-0.9)) == 10
    assert monotonicity_score(_kc(monotonicity="monotonic", correlation=0.0)) == 100
    assert monotonicity_score(_kc(monotonicity="monotonic")) == 0
    assert monotonicity_score(None) == 50


def test_read_targeting() -> None:
    assert read_targeting_score(None) == 50
    assert read_targeting_score(_rd(90, 5, total=0)) == 50
    assert read_targeting_score(_rd(90, 5)) == 90
    # scatter-gather above 50% costs half a point per extra percent
    assert read_targeting_score(_rd(20, 70)) == 10
    assert read_targeting_score(_rd(5, 95)) == 0


def test_write_targeting() -> None:
    assert write_targeting_score(None) == 50
    assert write_targeting_score(_wd(90)) == 90
    assert write_targeting_score(_wd(90, key_updates=5)) == 80
    assert write_targeting_score(_wd(10, key_updates=30)) == 0
    wd = _wd(80).model_copy(update={"percentage_of_single_writes_without_shard_key": 30.0})
    assert write_targeting_score(wd) == 70


@pytest.mark.parametrize(
    ("overall", "grade"),
    [(100, "A"), (90, "A"), (89, "B"), (80, "B"), (79, "C"), (70, "C"), (60, "D"), (59, "F")],
)
def test_grade_thresholds(overall: int, grade: str) -> None:
    assert grade_for(overall) == grade


def test_calculate_score_combines_weighted_parts() -> None:
    kc = _kc(total=10_000, sampled=10_000, distinct=5_000, top=3)
    score = calculate_score(kc, _rd(90, 5), _wd(90))
    assert (score.cardinality, score.frequency, score.monotonicity) == (100, 100, 100)
    assert (score.read_targeting, score.write_targeting) == (90, 90)
    assert score.overall == 96
    assert score.grade == "A"
    assert score.weights == WEIGHTS


def test_calculate_score_is_neutral_without_data() -> None:
    score = calculate_score(None, None, None)
    assert score.overall == 50
    assert score.grade == "F"


def test_calculate_score_is_deterministic() -> None:
    kc = _kc(distinct=37, top=200, monotonicity="monotonic", correlation=0.42)
    first = calculate_score(kc, _rd(33.3, 60), _wd(51.7, key_updates=2))
    second = calculate_score(kc, _rd(33.3, 60), _wd(51.7, key_updates=2))
    assert first == second
    assert 0 <= first.overall <= 100
