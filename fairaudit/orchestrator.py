"""
Stage 5 – Analysis orchestration.

Runs the pipeline Validating → Aggregating → Scoring → Recommending → Done.
Per-attribute work inside a stage runs on a thread pool; stages are strictly
sequential because scoring combines results across attributes. Progress is
reported to a caller-supplied observer and cancellation is cooperative: it is
checked before each unit of work and after each stage, and a cancelled run
never exposes partial metrics.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from fairaudit.aggregation import aggregate_attribute
from fairaudit.config import AnalysisConfig
from fairaudit.dataset import Dataset
from fairaudit.errors import InputValidationError, is_insufficient
from fairaudit.metrics import METRIC_ORDER, MetricName, MetricResult, combine, score_attribute
from fairaudit.recommendations import Recommendation, rank, recommend_for_metric
from fairaudit.severity import ClassifiedMetric, classify_metric

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[str, int, int], None]


class AnalysisState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    AGGREGATING = "aggregating"
    SCORING = "scoring"
    RECOMMENDING = "recommending"
    DONE = "done"
    FAILED = "failed"


CANCELLED = "cancelled"
INVALID_INPUT = "invalid input"
WORKER_ERROR = "worker error"

_SKIPPED = object()


def _json_value(value):
    return None if is_insufficient(value) else value


def _group_labels(groups) -> Dict[str, Any]:
    """String keys for group values; values whose str() collides (1 vs "1") fall back to repr()."""
    seen: Dict[str, int] = {}
    for g in groups:
        seen[str(g)] = seen.get(str(g), 0) + 1
    return {(repr(g) if seen[str(g)] > 1 else str(g)): g for g in groups}


@dataclass(frozen=True)
class AnalysisResult:
    timestamp: datetime
    metrics: Tuple[MetricResult, ...]
    recommendations: Tuple[Recommendation, ...]
    classifications: Tuple[ClassifiedMetric, ...] = ()

    def metric(self, name: Union[MetricName, str]) -> MetricResult:
        name = MetricName(name)
        return next(m for m in self.metrics if m.name is name)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible view in the shape the dashboard and report renderers consume."""
        status = {c.metric.name: c.overall.value for c in self.classifications}
        return {
            "timestamp": self.timestamp.isoformat(),
            "metrics": {
                m.name.value: {
                    "overall": _json_value(m.overall),
                    "status": status.get(m.name),
                    "byAttribute": {a: _json_value(v) for a, v in m.by_attribute.items()},
                    "byGroup": {
                        a: {label: _json_value(groups[g]) for label, g in _group_labels(groups).items()}
                        for a, groups in m.by_group.items()
                    },
                }
                for m in self.metrics
            },
            "recommendations": [
                {
                    "type": r.severity,
                    "title": r.title,
                    "description": r.description,
                    "actions": list(r.actions),
                    "sourceMetric": r.source_metric.value,
                    "attribute": r.attribute,
                    "magnitude": r.magnitude,
                }
                for r in self.recommendations
            ],
        }


class AnalysisOrchestrator:
    def __init__(
        self,
        config: AnalysisConfig,
        observer: Optional[ProgressObserver] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.observer = observer
        self.cancel_event = cancel_event or threading.Event()
        self.state = AnalysisState.IDLE
        self.failure: Optional[str] = None
        self._emit_lock = threading.Lock()
        self._last_progress = (0, 0)

    @property
    def cancelled(self) -> bool:
        return self.state is AnalysisState.FAILED and self.failure == CANCELLED

    def cancel(self) -> None:
        self.cancel_event.set()

    def _transition(self, state: AnalysisState) -> None:
        logger.info("Analysis %s -> %s", self.state.value, state.value)
        self.state = state

    def _fail(self, reason: str) -> None:
        self.failure = reason
        self._transition(AnalysisState.FAILED)

    def _emit(self, stage: str, completed: int, total: int) -> None:
        if self.observer is not None:
            self.observer(stage, completed, total)

    def _validate(self, dataset: Dataset) -> Dataset:
        if dataset is None:
            raise InputValidationError("No dataset supplied")
        dataset.validate()
        unknown = [a for a in self.config.protected_attributes if a not in dataset.protected_attributes]
        if unknown:
            raise InputValidationError(
                f"Unknown protected attribute(s) {unknown}; dataset declares {list(dataset.protected_attributes)}"
            )
        if self.config.decision_threshold is not None:
            dataset = dataset.with_threshold(self.config.decision_threshold)
        # Build the frame once here; workers only read it.
        dataset.frame()
        return dataset

    def _run_stage(self, stage: AnalysisState, items: Sequence, work: Callable) -> Optional[Dict[Any, Any]]:
        """Run work(item) for each item on the pool. Returns None if cancelled."""
        if self.cancel_event.is_set():
            return None
        self._transition(stage)
        total = len(items)
        completed = 0

        def unit(item):
            nonlocal completed
            if self.cancel_event.is_set():
                return _SKIPPED
            value = work(item)
            with self._emit_lock:
                completed += 1
                logger.debug("%s: %r done (%d/%d)", stage.value, item, completed, total)
                self._emit(stage.value, completed, total)
            return value

        results: Dict[Any, Any] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {executor.submit(unit, item): item for item in items}
            for future in as_completed(futures):
                value = future.result()
                if value is not _SKIPPED:
                    results[futures[future]] = value
        self._last_progress = (completed, total)
        if self.cancel_event.is_set():
            return None
        return results

    def _cancelled_at(self, stage: AnalysisState) -> None:
        logger.info("Analysis cancelled during %s", stage.value)
        self._fail(CANCELLED)
        self._emit(CANCELLED, *self._last_progress)

    def run(self, dataset: Dataset) -> Optional[AnalysisResult]:
        """
        Execute the full analysis. Raises InputValidationError before any progress
        event on bad input; returns None when cancelled; otherwise the result.
        """
        self.failure = None
        self._transition(AnalysisState.VALIDATING)
        try:
            dataset = self._validate(dataset)
        except InputValidationError as exc:
            logger.info("Validation failed: %s", exc)
            self._fail(INVALID_INPUT)
            raise

        cfg = self.config
        attributes = list(cfg.protected_attributes)
        try:
            aggregates = self._run_stage(
                AnalysisState.AGGREGATING,
                attributes,
                lambda a: aggregate_attribute(dataset, a, min_group_size=cfg.min_group_size, n_bins=cfg.bins),
            )
            if aggregates is None:
                self._cancelled_at(AnalysisState.AGGREGATING)
                return None

            scored = self._run_stage(AnalysisState.SCORING, attributes, lambda a: score_attribute(aggregates[a]))
            if scored is None:
                self._cancelled_at(AnalysisState.SCORING)
                return None
            metrics = tuple(combine(name, [scored[a][name] for a in attributes]) for name in METRIC_ORDER)
            classified = {m.name: classify_metric(m, cfg.thresholds) for m in metrics}

            recs = self._run_stage(
                AnalysisState.RECOMMENDING,
                list(METRIC_ORDER),
                lambda name: recommend_for_metric(classified[name], cfg.thresholds),
            )
            if recs is None:
                self._cancelled_at(AnalysisState.RECOMMENDING)
                return None
        except Exception:
            self._fail(WORKER_ERROR)
            raise

        ranked = rank([r for name in METRIC_ORDER for r in recs[name]], attributes)
        result = AnalysisResult(
            timestamp=datetime.now(timezone.utc),
            metrics=metrics,
            recommendations=tuple(ranked),
            classifications=tuple(classified[name] for name in METRIC_ORDER),
        )
        self._transition(AnalysisState.DONE)
        logger.info(
            "Analysis done: %d attribute(s), %d recommendation(s)", len(attributes), len(result.recommendations)
        )
        self._emit(AnalysisState.DONE.value, len(attributes), len(attributes))
        return result


def run_analysis(
    dataset: Dataset,
    config: Union[AnalysisConfig, Mapping[str, Any]],
    observer: Optional[ProgressObserver] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Optional[AnalysisResult]:
    """Single entry point for the surrounding application."""
    if not isinstance(config, AnalysisConfig):
        config = AnalysisConfig.from_mapping(config)
    return AnalysisOrchestrator(config, observer=observer, cancel_event=cancel_event).run(dataset)
