"""Public API facade for the shard key advisor."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .candidates import check_supporting_index, suggest_candidates
from .errors import NotConnectedError
from .events import ProgressChannel
from .models import (
    AdvisorConfig,
    AnalysisOptions,
    AnalysisReport,
    AnalysisResult,
    Candidate,
    CandidateSuggestions,
    IndexCheck,
    Namespace,
    ProfileInfo,
    ProgressEvent,
    SampledQueries,
    SamplingState,
    SamplingStatus,
    WorkloadConfig,
    WorkloadStatus,
)
from .mongo import MongoGateway, create_gateway
from .profiles import list_profiles
from .sampling import QuerySamplingController
from .service import AnalysisService
from .storage import create_store
from .workload import WorkloadScheduler


class ShardKeyAdvisorAPI:
    """High-level façade consumed by the CLI and the HTTP service.

    Database-backed components are built on first use so the facade can be
    constructed (and profiles listed) without a cluster.
    """

    def __init__(self, config: AdvisorConfig, gateway: MongoGateway | None = None) -> None:
        self.config = config
        self._gateway = gateway if gateway is not None else create_gateway(config)
        self.store = create_store(config)
        self.channel = ProgressChannel(history=config.event_history)
        self._analysis: AnalysisService | None = None
        self._scheduler: WorkloadScheduler | None = None
        self._sampling: QuerySamplingController | None = None

    @property
    def connected(self) -> bool:
        return self._gateway is not None

    @property
    def gateway(self) -> MongoGateway:
        if self._gateway is None:
            raise NotConnectedError("Not connected to MongoDB; configure a connection URI")
        return self._gateway

    @property
    def analysis(self) -> AnalysisService:
        if self._analysis is None:
            self._analysis = AnalysisService(self.config, self.gateway, self.store, self.channel)
        return self._analysis

    @property
    def scheduler(self) -> WorkloadScheduler:
        if self._scheduler is None:
            self._scheduler = WorkloadScheduler(self.config, self.gateway, self.channel)
        return self._scheduler

    @property
    def sampling(self) -> QuerySamplingController:
        if self._sampling is None:
            self._sampling = QuerySamplingController(self.gateway, self.channel)
        return self._sampling

    # analysis

    def analyze(
        self,
        namespace: Namespace,
        candidates: Iterable[Candidate],
        options: AnalysisOptions | None = None,
        *,
        analysis_id: str | None = None,
    ) -> AnalysisReport:
        """Evaluate and rank candidates."""
        return self.analysis.evaluate(
            namespace, list(candidates), options, analysis_id=analysis_id
        )

    def analyze_single(
        self, namespace: Namespace, candidate: Candidate, options: AnalysisOptions | None = None
    ) -> AnalysisResult:
        return self.analysis.analyze_candidate(namespace, candidate, options)

    def result(self, result_id: str) -> AnalysisResult:
        return self.analysis.get_result(result_id)

    def results(self) -> list[AnalysisResult]:
        return self.store.list_results()

    def clear_results(self) -> int:
        return self.store.clear()

    def suggest(self, namespace: Namespace) -> CandidateSuggestions:
        """Propose candidates from sampled documents."""
        return suggest_candidates(self.gateway, namespace)

    def check_index(self, namespace: Namespace, key: Mapping[str, Any]) -> IndexCheck:
        return check_supporting_index(self.gateway, namespace, key)

    # workload

    def profiles(self) -> list[ProfileInfo]:
        return list_profiles()

    def start_workload(self, namespace: Namespace, config: WorkloadConfig) -> WorkloadStatus:
        return self.scheduler.start(namespace, config)

    def stop_workload(self) -> WorkloadStatus:
        return self.scheduler.stop()

    def workload_status(self) -> WorkloadStatus:
        if self._scheduler is None:
            return WorkloadStatus()
        return self._scheduler.status()

    # sampling

    def start_sampling(self, namespace: Namespace, samples_per_second: int = 10) -> SamplingState:
        return self.sampling.start(namespace, samples_per_second)

    def stop_sampling(self, namespace: Namespace | None = None) -> SamplingState:
        return self.sampling.stop(namespace)

    def update_sampling_rate(self, samples_per_second: int) -> SamplingState:
        return self.sampling.update_rate(samples_per_second)

    def sampling_status(self) -> SamplingStatus:
        if self._sampling is None:
            return SamplingStatus()
        return self._sampling.status()

    def sampled_queries(
        self, namespace: Namespace, *, limit: int = 100, skip: int = 0
    ) -> SampledQueries:
        return self.sampling.list_queries(namespace, limit=limit, skip=skip)

    def sampling_stats(self, namespace: Namespace) -> dict[str, Any]:
        return self.sampling.stats(namespace)

    def clear_sampled_queries(self, namespace: Namespace) -> int:
        return self.sampling.clear(namespace)

    # events

    def close(self) -> None:
        """Stop any running workload and release the database client."""
        if self._scheduler is not None and self._scheduler.is_running:
            self._scheduler.stop()
        if self._gateway is not None:
            self._gateway.close()

    def events(self, topic: str, *, since: int = 0) -> list[ProgressEvent]:
        return self.channel.history(topic, since=since)


def build_api(
    config: AdvisorConfig | None = None, *, gateway: MongoGateway | None = None
) -> ShardKeyAdvisorAPI:
    """Convenience constructor with defaults."""
    return ShardKeyAdvisorAPI(config or AdvisorConfig(), gateway)
