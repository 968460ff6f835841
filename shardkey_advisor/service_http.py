from __future__ import annotations

import argparse
import os
from collections.abc import Iterable
from typing import Annotated, Any

import uvicorn
from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field

from .api import build_api
from .errors import AdvisorError
from .models import (
    AdvisorConfig,
    AnalysisOptions,
    AnalysisReport,
    AnalysisResult,
    Candidate,
    CandidateSuggestions,
    IndexCheck,
    KeyDirection,
    Namespace,
    ProfileInfo,
    ProgressEvent,
    QueryPattern,
    SampledQueries,
    SamplingState,
    SamplingStatus,
    WireModel,
    WorkloadConfig,
    WorkloadStatus,
)
from .mongo import MongoGateway

CandidatesPayload = Annotated[list[Candidate], Field(min_length=1)]


class NamespaceRequest(WireModel):
    """Target collection, shared by most requests."""

    database: str
    collection: str

    def namespace(self) -> Namespace:
        return Namespace(database=self.database, collection=self.collection)


class AnalyzeRequest(NamespaceRequest):
    candidates: CandidatesPayload
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    analysis_id: str | None = None


class AnalyzeSingleRequest(NamespaceRequest):
    key: dict[str, KeyDirection]
    label: str | None = None
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class CheckIndexRequest(NamespaceRequest):
    key: dict[str, KeyDirection]


class WorkloadStartRequest(NamespaceRequest):
    profile: str = "ecommerce"
    duration_seconds: float = Field(120, ge=10, le=3600)
    queries_per_second: float = Field(15, ge=1, le=100)
    custom_patterns: list[QueryPattern] | None = Field(None, min_length=1)

    def workload_config(self) -> WorkloadConfig:
        return WorkloadConfig(
            profile=self.profile,
            duration_seconds=self.duration_seconds,
            queries_per_second=self.queries_per_second,
            custom_patterns=self.custom_patterns,
        )


class SamplingStartRequest(NamespaceRequest):
    samples_per_second: int = Field(10, ge=1, le=50)


class SamplingStopRequest(WireModel):
    database: str | None = None
    collection: str | None = None


class SamplingRateRequest(WireModel):
    samples_per_second: int = Field(..., ge=1, le=50)


class ClearResponse(WireModel):
    deleted: int


def create_app(
    config: AdvisorConfig | None = None,
    *,
    gateway: MongoGateway | None = None,
    cors_origins: Iterable[str] | None = None,
) -> FastAPI:
    """Construct a FastAPI app backed by ShardKeyAdvisorAPI."""

    api = build_api(config, gateway=gateway)
    app = FastAPI(title="Shard Key Advisor", version="0.1.0")
    app.state.api = api

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(AdvisorError)
    async def advisor_error(request: Request, exc: AdvisorError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "ValueError", "detail": str(exc)},
        )

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    def healthz() -> dict[str, Any]:
        return {"status": "ok", "connected": app.state.api.connected}

    # analysis

    @app.post("/analysis/analyze", response_model=AnalysisReport)
    def analyze(payload: AnalyzeRequest) -> AnalysisReport:
        return app.state.api.analyze(
            payload.namespace(),
            payload.candidates,
            payload.options,
            analysis_id=payload.analysis_id,
        )

    @app.post("/analysis/analyze-single", response_model=AnalysisResult)
    def analyze_single(payload: AnalyzeSingleRequest) -> AnalysisResult:
        candidate = Candidate(key=payload.key, label=payload.label)
        return app.state.api.analyze_single(payload.namespace(), candidate, payload.options)

    @app.get("/analysis/results", response_model=list[AnalysisResult])
    def list_results() -> list[AnalysisResult]:
        return app.state.api.results()

    @app.get("/analysis/results/{result_id}", response_model=AnalysisResult)
    def get_result(result_id: str) -> AnalysisResult:
        return app.state.api.result(result_id)

    @app.delete("/analysis/results", response_model=ClearResponse)
    def clear_results() -> ClearResponse:
        return ClearResponse(deleted=app.state.api.clear_results())

    @app.post("/analysis/check-index", response_model=IndexCheck)
    def check_index(payload: CheckIndexRequest) -> IndexCheck:
        return app.state.api.check_index(payload.namespace(), payload.key)

    @app.get("/analysis/candidates", response_model=CandidateSuggestions)
    def candidates(database: str, collection: str) -> CandidateSuggestions:
        return app.state.api.suggest(Namespace(database=database, collection=collection))

    # workload

    @app.get("/workload/profiles", response_model=list[ProfileInfo])
    def profiles() -> list[ProfileInfo]:
        return app.state.api.profiles()

    @app.post(
        "/workload/start", response_model=WorkloadStatus, status_code=status.HTTP_202_ACCEPTED
    )
    def start_workload(payload: WorkloadStartRequest) -> WorkloadStatus:
        return app.state.api.start_workload(payload.namespace(), payload.workload_config())

    @app.post("/workload/stop", response_model=WorkloadStatus)
    def stop_workload() -> WorkloadStatus:
        return app.state.api.stop_workload()

    @app.get("/workload/status", response_model=WorkloadStatus)
    def workload_status() -> WorkloadStatus:
        return app.state.api.workload_status()

    # sampling

    @app.post("/sampling/start", response_model=SamplingState)
    def start_sampling(payload: SamplingStartRequest) -> SamplingState:
        return app.state.api.start_sampling(payload.namespace(), payload.samples_per_second)

    @app.post("/sampling/stop", response_model=SamplingState)
    def stop_sampling(payload: SamplingStopRequest | None = None) -> SamplingState:
        namespace = None
        if payload is not None and payload.database and payload.collection:
            namespace = Namespace(database=payload.database, collection=payload.collection)
        return app.state.api.stop_sampling(namespace)

    @app.post("/sampling/rate", response_model=SamplingState)
    def update_rate(payload: SamplingRateRequest) -> SamplingState:
        return app.state.api.update_sampling_rate(payload.samples_per_second)

    @app.get("/sampling/status", response_model=SamplingStatus)
    def sampling_status() -> SamplingStatus:
        return app.state.api.sampling_status()

    @app.get("/sampling/queries", response_model=SampledQueries)
    def sampled_queries(
        database: str,
        collection: str,
        limit: int = Query(default=100, ge=0, le=10_000),
        skip: int = Query(default=0, ge=0),
    ) -> SampledQueries:
        namespace = Namespace(database=database, collection=collection)
        return app.state.api.sampled_queries(namespace, limit=limit, skip=skip)

    @app.get("/sampling/stats")
    def sampling_stats(database: str, collection: str) -> dict[str, Any]:
        return app.state.api.sampling_stats(Namespace(database=database, collection=collection))

    @app.delete("/sampling/queries", response_model=ClearResponse)
    def clear_sampled(database: str, collection: str) -> ClearResponse:
        namespace = Namespace(database=database, collection=collection)
        return ClearResponse(deleted=app.state.api.clear_sampled_queries(namespace))

    # progress

    @app.get("/events/{topic}", response_model=list[ProgressEvent])
    def events(topic: str, since: int = Query(default=0, ge=0)) -> list[ProgressEvent]:
        return app.state.api.events(topic, since=since)

    return app


def run(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the shard key advisor HTTP service.")
    parser.add_argument("--host", default="127.0.0.1", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8000, help="TCP port for the service.")
    parser.add_argument(
        "--uri",
        default=os.environ.get("SHARDKEY_ADVISOR_URI"),
        help="MongoDB connection string (defaults to $SHARDKEY_ADVISOR_URI).",
    )
    parser.add_argument(
        "--sample-size",
        type=int,
        default=10_000,
        help="Default analyzeShardKey sample size when a request sets none.",
    )
    parser.add_argument(
        "--result-capacity", type=int, default=100, help="Analysis results kept in memory."
    )
    parser.add_argument(
        "--cors-origin",
        action="append",
        dest="cors_origins",
        default=None,
        help="Optional CORS origin (repeatable).",
    )
    args = parser.parse_args(argv)

    config = AdvisorConfig(
        mongo_uri=args.uri,
        default_sample_size=args.sample_size,
        result_capacity=args.result_capacity,
    )
    app = create_app(config=config, cors_origins=args.cors_origins)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


app = create_app()
