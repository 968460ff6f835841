"""Storage for analysis results."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Protocol

from .models import AdvisorConfig, AnalysisResult


class AnalysisResultStore(Protocol):
    """Abstract store contract."""

    def put(self, result: AnalysisResult) -> None: ...

    def get(self, result_id: str) -> AnalysisResult | None: ...

    def list_results(self) -> list[AnalysisResult]: ...

    def clear(self) -> int: ...


@dataclass
class InMemoryAnalysisResultStore(AnalysisResultStore):
    """Bounded ring of results; the oldest entry is evicted past ``capacity``."""

    capacity: int = 100
    _results: OrderedDict[str, AnalysisResult] = field(default_factory=OrderedDict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def put(self, result: AnalysisResult) -> None:
        with self._lock:
            self._results.pop(result.id, None)
            while len(self._results) >= self.capacity:
                self._results.popitem(last=False)
            self._results[result.id] = result

    def get(self, result_id: str) -> AnalysisResult | None:
        with self._lock:
            return self._results.get(result_id)

    def list_results(self) -> list[AnalysisResult]:
        with self._lock:
            return list(self._results.values())

    def clear(self) -> int:
        with self._lock:
            removed = len(self._results)
            self._results.clear()
            return removed

    def __len__(self) -> int:
        return len(self._results)


def create_store(config: AdvisorConfig) -> AnalysisResultStore:
    """Factory helper sized from the runtime config."""
    return InMemoryAnalysisResultStore(capacity=config.result_capacity)
