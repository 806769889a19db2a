"""
Stage 3 – Severity classification.

Maps a metric value to a tier using configurable thresholds. The mapping is
monotonic: a higher value never yields a worse tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from fairaudit.config import SeverityThresholds
from fairaudit.errors import MetricValue, is_insufficient
from fairaudit.metrics import MetricResult, freeze


class Severity(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INSUFFICIENT = "insufficient"


DEFAULT_THRESHOLDS = SeverityThresholds()


def classify(value: MetricValue, thresholds: Optional[SeverityThresholds] = None) -> Severity:
    thresholds = thresholds or DEFAULT_THRESHOLDS
    if is_insufficient(value):
        return Severity.INSUFFICIENT
    if value >= thresholds.success:
        return Severity.SUCCESS
    if value >= thresholds.warning:
        return Severity.WARNING
    return Severity.ERROR


@dataclass(frozen=True)
class ClassifiedMetric:
    metric: MetricResult
    overall: Severity
    by_attribute: Mapping[str, Severity]
    by_group: Mapping[str, Mapping[Any, Severity]]


def classify_metric(metric: MetricResult, thresholds: Optional[SeverityThresholds] = None) -> ClassifiedMetric:
    by_group: Dict[str, Dict[Any, Severity]] = {
        attr: {g: classify(v, thresholds) for g, v in groups.items()} for attr, groups in metric.by_group.items()
    }
    return ClassifiedMetric(
        metric=metric,
        overall=classify(metric.overall, thresholds),
        by_attribute=freeze({attr: classify(v, thresholds) for attr, v in metric.by_attribute.items()}),
        by_group=freeze(by_group),
    )
