"""Comparison tables and recommendations over scored candidates."""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    AnalysisResult,
    CandidateSummary,
    Comparison,
    ComparisonRow,
    Recommendation,
)

ALTERNATIVE_MARGIN = 10
AVOID_BELOW = 40


def _summary(result: AnalysisResult) -> CandidateSummary:
    return CandidateSummary(
        key=result.key_string, score=result.score.overall, grade=result.score.grade
    )


def build_comparison(results: Sequence[AnalysisResult]) -> Comparison | None:
    """Side-by-side metrics for results already sorted best first."""
    if not results:
        return None
    rows = [
        ComparisonRow(
            key=r.key_string,
            label=r.label,
            cardinality=r.score.cardinality,
            frequency=r.score.frequency,
            monotonicity=r.score.monotonicity,
            read_targeting=r.score.read_targeting,
            write_targeting=r.score.write_targeting,
            overall=r.score.overall,
            grade=r.score.grade,
            warnings=len(r.warnings),
        )
        for r in results
    ]
    best, worst = results[0], results[-1]
    return Comparison(
        metrics=rows,
        best_candidate=_summary(best),
        worst_candidate=_summary(worst) if len(results) > 1 else None,
        score_difference=best.score.overall - worst.score.overall,
    )


def positive_reasons(result: AnalysisResult) -> list[str]:
    reasons: list[str] = []
    kc = result.key_characteristics
    rd = result.read_distribution
    wd = result.write_distribution
    score = result.score

    if score.cardinality >= 80:
        distinct = f"{kc.num_distinct_values:,}" if kc else "many"
        reasons.append(f"High cardinality ({distinct} distinct values)")
    if score.frequency >= 80:
        reasons.append("Even value distribution - no hotspots detected")
    if score.monotonicity >= 80:
        reasons.append("Non-monotonic - writes distributed evenly")
    if score.read_targeting >= 70:
        if rd is not None and rd.sample_size.total > 0:
            reasons.append(
                f"{rd.percentage_of_single_shard_reads:.0f}% of reads target a single shard"
            )
        else:
            reasons.append("Good read query targeting")
    if score.write_targeting >= 70:
        if wd is not None and wd.sample_size.total > 0:
            reasons.append(
                f"{wd.percentage_of_single_shard_writes:.0f}% of writes target a single shard"
            )
        else:
            reasons.append("Good write query targeting")
    if kc is not None and kc.is_unique:
        reasons.append("Unique values ensure perfect distribution")
    return reasons


def _tips(results: Sequence[AnalysisResult]) -> list[Recommendation]:
    tips: list[Recommendation] = []
    if any(r.score.read_targeting < 50 for r in results):
        tips.append(
            Recommendation(
                type="tip",
                message=(
                    "Consider creating compound indexes that include your most common query "
                    "filters alongside the shard key."
                ),
            )
        )
    if any(
        r.key_characteristics is not None and r.key_characteristics.monotonicity.type == "monotonic"
        for r in results
    ):
        tips.append(
            Recommendation(
                type="tip",
                message=(
                    "For time-series data, consider using a hashed shard key or combining "
                    "timestamp with a non-monotonic field."
                ),
            )
        )
    if any(
        r.key_characteristics is not None and r.key_characteristics.num_distinct_values < 100
        for r in results
    ):
        tips.append(
            Recommendation(
                type="tip",
                message=(
                    "Low cardinality limits horizontal scaling. Consider combining with another "
                    "field to create a compound shard key."
                ),
            )
        )
    return tips


def generate_recommendations(results: Sequence[AnalysisResult]) -> list[Recommendation]:
    """Primary, close alternative, keys to avoid, then general tips.

    ``results`` must already be sorted by overall score, best first.
    """
    if not results:
        return []

    best = results[0]
    recs = [
        Recommendation(
            type="primary",
            title="Recommended Shard Key",
            key=best.key_string,
            score=best.score.overall,
            grade=best.score.grade,
            reasons=positive_reasons(best),
        )
    ]

    if len(results) > 1:
        second = results[1]
        behind = best.score.overall - second.score.overall
        if behind < ALTERNATIVE_MARGIN:
            recs.append(
                Recommendation(
                    type="alternative",
                    title="Close Alternative",
                    key=second.key_string,
                    score=second.score.overall,
                    grade=second.score.grade,
                    reasons=positive_reasons(second),
                    note=f"Only {behind} points behind the top choice",
                )
            )

    for result in results:
        if result.score.overall < AVOID_BELOW:
            recs.append(
                Recommendation(
                    type="avoid",
                    title="Avoid This Key",
                    key=result.key_string,
                    score=result.score.overall,
                    grade=result.score.grade,
                    reasons=[w.message for w in result.warnings],
                )
            )

    recs.extend(_tips(results))
    return recs
