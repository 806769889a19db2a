"""
Stage 2 – Fairness metrics.

Computes three metric families per protected attribute from aggregated counts:
- Demographic parity: min/max positive-prediction rate (four-fifths rule ratio).
- Equalized odds: 1 - the largest TPR/FPR gap between groups.
- Calibration: 1 - occupancy-weighted expected calibration error.

Every value lives in [0, 1] where 1.0 means no detected disparity. Values that
cannot be computed are `Insufficient`; every division is guarded by that rule.
Per-attribute results are then combined into one MetricResult per family, with
the worst attribute driving the overall value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from scipy.stats import chi2_contingency

from fairaudit.aggregation import AttributeAggregate, CalibrationBins, ConfusionCounts
from fairaudit.dataset import GroupKey
from fairaudit.errors import Insufficient, MetricValue, is_insufficient

logger = logging.getLogger(__name__)


class MetricName(str, Enum):
    DEMOGRAPHIC_PARITY = "demographicParity"
    EQUALIZED_ODDS = "equalizedOdds"
    CALIBRATION = "calibration"


# Fixed reporting order; also the final ranking tie-break for recommendations.
METRIC_ORDER = (MetricName.DEMOGRAPHIC_PARITY, MetricName.EQUALIZED_ODDS, MetricName.CALIBRATION)

SMALL_GROUP = Insufficient("insufficient sample")
UNDEFINED_RATE = Insufficient("undefined rate")
TOO_FEW_GROUPS = Insufficient("fewer than two eligible groups")
NO_POSITIVES = Insufficient("no positive predictions")
NO_ELIGIBLE_GROUPS = Insufficient("no eligible groups")
NO_ATTRIBUTES = Insufficient("no attribute with sufficient data")


def _clamp(value) -> float:
    return float(min(1, max(0, value)))


def freeze(value):
    """Read-only deep copy of nested dicts and lists (mappings become MappingProxyType, lists tuples)."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


@dataclass(frozen=True)
class AttributeMetric:
    name: MetricName
    attribute: str
    overall: MetricValue
    by_group: Mapping[Any, MetricValue]
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "by_group", freeze(self.by_group))
        object.__setattr__(self, "details", freeze(self.details))


@dataclass(frozen=True)
class MetricResult:
    name: MetricName
    overall: MetricValue
    by_group: Mapping[str, Mapping[Any, MetricValue]]
    by_attribute: Mapping[str, MetricValue] = field(default_factory=dict)
    details: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


def _split_eligible(counts: Dict[GroupKey, ConfusionCounts]):
    eligible = {k.group: c for k, c in counts.items() if not c.insufficient_sample}
    small = [k.group for k, c in counts.items() if c.insufficient_sample]
    return eligible, small


def _attribute_of(counts: Dict[GroupKey, Any]) -> Optional[str]:
    return next(iter(counts)).attribute if counts else None


def _parity_p_value(eligible: Dict[Any, ConfusionCounts]) -> Optional[float]:
    table = np.array([[c.predicted_positive, c.total - c.predicted_positive] for c in eligible.values()], dtype=float)
    # chi-square is undefined when a whole column is empty.
    if table.shape[0] < 2 or (table.sum(axis=0) == 0).any():
        return None
    return float(chi2_contingency(table, correction=False)[1])


def demographic_parity(counts: Dict[GroupKey, ConfusionCounts], attribute: Optional[str] = None) -> AttributeMetric:
    attribute = attribute or _attribute_of(counts)
    # Exact rationals keep ratios such as 0.8 exact at the severity boundaries.
    rates = {k.group: Fraction(c.predicted_positive, c.total) for k, c in counts.items()}
    eligible, small = _split_eligible(counts)
    by_group: Dict[Any, MetricValue] = {g: SMALL_GROUP for g in rates}
    details: Dict[str, Any] = {
        "positive_rates": {g: float(r) for g, r in rates.items()},
        "p_value": None,
        "excluded_groups": small,
    }

    if len(eligible) < 2:
        by_group.update({g: TOO_FEW_GROUPS for g in eligible})
        return AttributeMetric(MetricName.DEMOGRAPHIC_PARITY, attribute, TOO_FEW_GROUPS, by_group, details)

    eligible_rates = {g: rates[g] for g in eligible}
    max_rate = max(eligible_rates.values())
    min_rate = min(eligible_rates.values())
    if max_rate == 0:
        by_group.update({g: NO_POSITIVES for g in eligible})
        return AttributeMetric(MetricName.DEMOGRAPHIC_PARITY, attribute, NO_POSITIVES, by_group, details)

    for g, rate in eligible_rates.items():
        by_group[g] = _clamp(rate / max_rate)
    details.update({"min_rate": float(min_rate), "max_rate": float(max_rate), "p_value": _parity_p_value(eligible)})
    return AttributeMetric(MetricName.DEMOGRAPHIC_PARITY, attribute, _clamp(min_rate / max_rate), by_group, details)


def _rate(numerator: int, denominator: int) -> MetricValue:
    if denominator == 0:
        return UNDEFINED_RATE
    return Fraction(numerator, denominator)


def _spread(values: List[Fraction]) -> Optional[Fraction]:
    return max(values) - min(values) if len(values) >= 2 else None


def equalized_odds(counts: Dict[GroupKey, ConfusionCounts], attribute: Optional[str] = None) -> AttributeMetric:
    attribute = attribute or _attribute_of(counts)
    eligible, small = _split_eligible(counts)
    tpr = {g: _rate(c.true_positive, c.actual_positive) for g, c in eligible.items()}
    fpr = {g: _rate(c.false_positive, c.actual_negative) for g, c in eligible.items()}
    tpr_values = [v for v in tpr.values() if not is_insufficient(v)]
    fpr_values = [v for v in fpr.values() if not is_insufficient(v)]
    tpr_gap = _spread(tpr_values)
    fpr_gap = _spread(fpr_values)

    by_group: Dict[Any, MetricValue] = {k.group: SMALL_GROUP for k in counts}
    details: Dict[str, Any] = {
        "tpr": {g: (float(v) if not is_insufficient(v) else v) for g, v in tpr.items()},
        "fpr": {g: (float(v) if not is_insufficient(v) else v) for g, v in fpr.items()},
        "tpr_disparity": float(tpr_gap) if tpr_gap is not None else None,
        "fpr_disparity": float(fpr_gap) if fpr_gap is not None else None,
        "excluded_groups": small,
    }

    gaps = [gap for gap in (tpr_gap, fpr_gap) if gap is not None]
    if not gaps:
        by_group.update({g: TOO_FEW_GROUPS for g in eligible})
        return AttributeMetric(MetricName.EQUALIZED_ODDS, attribute, TOO_FEW_GROUPS, by_group, details)

    best_tpr = max(tpr_values) if tpr_values else None
    best_fpr = max(fpr_values) if fpr_values else None
    for g in eligible:
        if is_insufficient(tpr[g]) or is_insufficient(fpr[g]):
            by_group[g] = UNDEFINED_RATE
            continue
        by_group[g] = _clamp(1 - max(abs(tpr[g] - best_tpr), abs(fpr[g] - best_fpr)))
    return AttributeMetric(MetricName.EQUALIZED_ODDS, attribute, _clamp(1 - max(gaps)), by_group, details)


def expected_calibration_error(bins: CalibrationBins) -> float:
    """Occupancy-weighted mean |observed rate - mean score| over non-empty bins."""
    total = bins.total
    occupied = bins.counts > 0
    # n_k/n * |pos_k/n_k - sum_k/n_k| reduces to |pos_k - sum_k| / n
    return float(np.abs(bins.positives[occupied] - bins.score_sums[occupied]).sum() / total)


def calibration(
    bins: Dict[GroupKey, CalibrationBins],
    counts: Dict[GroupKey, ConfusionCounts],
    attribute: Optional[str] = None,
) -> AttributeMetric:
    attribute = attribute or _attribute_of(counts)
    by_group: Dict[Any, MetricValue] = {}
    ece: Dict[Any, float] = {}
    weights: Dict[Any, int] = {}
    for key, group_bins in bins.items():
        if counts[key].insufficient_sample:
            by_group[key.group] = SMALL_GROUP
            continue
        ece[key.group] = expected_calibration_error(group_bins)
        weights[key.group] = group_bins.total
        by_group[key.group] = _clamp(1.0 - ece[key.group])

    details: Dict[str, Any] = {"ece": ece}
    if not ece:
        return AttributeMetric(MetricName.CALIBRATION, attribute, NO_ELIGIBLE_GROUPS, by_group, details)
    weighted = sum(ece[g] * weights[g] for g in ece) / sum(weights.values())
    details["weighted_ece"] = float(weighted)
    return AttributeMetric(MetricName.CALIBRATION, attribute, _clamp(1.0 - weighted), by_group, details)


def score_attribute(aggregate: AttributeAggregate) -> Dict[MetricName, AttributeMetric]:
    """All three families for one attribute; the unit of work of the scoring stage."""
    results = {
        MetricName.DEMOGRAPHIC_PARITY: demographic_parity(aggregate.counts, aggregate.attribute),
        MetricName.EQUALIZED_ODDS: equalized_odds(aggregate.counts, aggregate.attribute),
        MetricName.CALIBRATION: calibration(aggregate.bins, aggregate.counts, aggregate.attribute),
    }
    for name, result in results.items():
        if is_insufficient(result.overall):
            logger.warning("%s for %s is insufficient: %s", name.value, aggregate.attribute, result.overall.reason)
    return results


def combine(name: MetricName, per_attribute: Sequence[AttributeMetric]) -> MetricResult:
    """Worst attribute dominates the overall value; each attribute keeps its own breakdown."""
    by_attribute = {m.attribute: m.overall for m in per_attribute}
    numeric = [v for v in by_attribute.values() if not is_insufficient(v)]
    overall = min(numeric) if numeric else NO_ATTRIBUTES
    return MetricResult(
        name=name,
        overall=overall,
        by_group=freeze({m.attribute: m.by_group for m in per_attribute}),
        by_attribute=freeze(by_attribute),
        details=freeze({m.attribute: m.details for m in per_attribute}),
    )
