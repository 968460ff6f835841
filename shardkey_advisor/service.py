"""Service orchestrating shard key evaluation across candidates."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pymongo.errors import PyMongoError

from .errors import CommandError, NotFoundError
from .events import ANALYSIS_COMPLETE, ANALYSIS_PROGRESS, ProgressChannel, analysis_topic
from .models import (
    AdvisorConfig,
    AnalysisOptions,
    AnalysisReport,
    AnalysisResult,
    Candidate,
    CandidateError,
    Namespace,
)
from .mongo import MongoGateway
from .parsing import parse_analysis, to_jsonable
from .recommendations import build_comparison, generate_recommendations
from .scoring import calculate_score
from .storage import AnalysisResultStore, create_store

logger = logging.getLogger(__name__)


class AnalysisService:
    """Runs ``analyzeShardKey`` per candidate and ranks the outcomes."""

    def __init__(
        self,
        config: AdvisorConfig,
        gateway: MongoGateway,
        store: AnalysisResultStore | None = None,
        channel: ProgressChannel | None = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.store = store if store is not None else create_store(config)
        self.channel = channel

    def build_command(
        self, namespace: Namespace, key: dict[str, Any], options: AnalysisOptions
    ) -> dict[str, Any]:
        """Command document for one candidate; the verb comes first."""
        command: dict[str, Any] = {
            "analyzeShardKey": str(namespace),
            "key": dict(key),
            "keyCharacteristics": options.key_characteristics,
            "readWriteDistribution": options.read_write_distribution,
        }
        if options.sample_rate is not None:
            command["sampleRate"] = options.sample_rate
        else:
            command["sampleSize"] = options.sample_size or self.config.default_sample_size
        return command

    def analyze_candidate(
        self,
        namespace: Namespace,
        candidate: Candidate,
        options: AnalysisOptions | None = None,
    ) -> AnalysisResult:
        """Evaluate a single candidate and keep the result in the store."""
        opts = options or AnalysisOptions()
        command = self.build_command(namespace, candidate.key, opts)
        try:
            raw = self.gateway.admin_command(command)
        except PyMongoError as exc:
            raise CommandError(f"Failed to analyze shard key: {exc}") from exc

        parsed = parse_analysis(raw, candidate.key)
        score = calculate_score(
            parsed.key_characteristics, parsed.read_distribution, parsed.write_distribution
        )
        result = AnalysisResult(
            id=f"{namespace}-{candidate.key_string}-{uuid.uuid4().hex[:8]}",
            namespace=str(namespace),
            key=dict(candidate.key),
            key_string=candidate.key_string,
            label=candidate.display_label,
            key_characteristics=parsed.key_characteristics,
            read_distribution=parsed.read_distribution,
            write_distribution=parsed.write_distribution,
            score=score,
            warnings=parsed.warnings,
            raw_command=to_jsonable(command),
            raw_output=to_jsonable(raw),
            analyzed_at=datetime.now(timezone.utc),
        )
        self.store.put(result)
        logger.info(
            "Scored %s on %s: %d (%s)", result.key_string, namespace, score.overall, score.grade
        )
        return result

    def evaluate(
        self,
        namespace: Namespace,
        candidates: Sequence[Candidate],
        options: AnalysisOptions | None = None,
        *,
        analysis_id: str | None = None,
    ) -> AnalysisReport:
        """Evaluate candidates one after another, then rank and summarize.

        A failing candidate is recorded in ``errors`` and does not stop the
        remaining ones.
        """
        run_id = analysis_id or f"analysis-{uuid.uuid4().hex[:12]}"
        topic = analysis_topic(run_id)
        total = len(candidates)
        logger.info("Analysis %s: evaluating %d candidates on %s", run_id, total, namespace)

        results: list[AnalysisResult] = []
        errors: list[CandidateError] = []
        for index, candidate in enumerate(candidates):
            self._emit(
                topic,
                ANALYSIS_PROGRESS,
                {
                    "analysisId": run_id,
                    "current": index,
                    "total": total,
                    "currentKey": candidate.key,
                    "status": "analyzing",
                },
            )
            try:
                result = self.analyze_candidate(namespace, candidate, options)
            except Exception as exc:
                logger.warning(
                    "Analysis %s: candidate %s failed: %s", run_id, candidate.key_string, exc
                )
                errors.append(
                    CandidateError(key=candidate.key, label=candidate.display_label, error=str(exc))
                )
                self._emit(
                    topic,
                    ANALYSIS_PROGRESS,
                    {
                        "analysisId": run_id,
                        "index": index,
                        "key": candidate.key,
                        "error": str(exc),
                        "status": "candidateFailed",
                    },
                )
                continue
            results.append(result)
            self._emit(
                topic,
                ANALYSIS_PROGRESS,
                {
                    "analysisId": run_id,
                    "index": index,
                    "result": result.model_dump(by_alias=True, mode="json"),
                    "status": "candidateComplete",
                },
            )

        # sorted() is stable, so equal scores keep input order
        ranked = sorted(results, key=lambda r: r.score.overall, reverse=True)
        report = AnalysisReport(
            id=run_id,
            namespace=str(namespace),
            results=ranked,
            errors=errors,
            comparison=build_comparison(ranked),
            recommendations=generate_recommendations(ranked),
            analyzed_at=datetime.now(timezone.utc),
        )
        self._emit(topic, ANALYSIS_COMPLETE, report.model_dump(by_alias=True, mode="json"))
        logger.info(
            "Analysis %s finished: %d scored, %d failed", run_id, len(ranked), len(errors)
        )
        return report

    def get_result(self, result_id: str) -> AnalysisResult:
        result = self.store.get(result_id)
        if result is None:
            raise NotFoundError(f"Analysis result not found: {result_id}")
        return result

    def clear_results(self) -> int:
        return self.store.clear()

    def _emit(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        if self.channel is not None:
            self.channel.publish(topic, event, payload)
