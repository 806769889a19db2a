"""
Stage 4 – Remediation recommendations.

A fixed rule table keyed by (metric, severity) turns every violated attribute
into a recommendation. Only warning and error tiers fire. Ranking is fully
deterministic: severity, then magnitude (1 - attribute value, larger first),
then metric order, then the configured attribute order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fairaudit.config import SeverityThresholds
from fairaudit.errors import is_insufficient
from fairaudit.metrics import METRIC_ORDER, MetricName
from fairaudit.severity import DEFAULT_THRESHOLDS, ClassifiedMetric, Severity

CRITICAL = "critical"
MODERATE = "moderate"

SEVERITY_TO_PRIORITY = {Severity.ERROR: CRITICAL, Severity.WARNING: MODERATE}
PRIORITY_RANK = {CRITICAL: 0, MODERATE: 1}


@dataclass(frozen=True)
class RecommendationRule:
    title: str
    description: str
    actions: Tuple[str, ...]


@dataclass(frozen=True)
class Recommendation:
    severity: str  # "critical" | "moderate"
    title: str
    description: str
    actions: Tuple[str, ...]
    source_metric: MetricName
    magnitude: float
    attribute: str


RULES: Dict[Tuple[MetricName, Severity], RecommendationRule] = {
    (MetricName.DEMOGRAPHIC_PARITY, Severity.ERROR): RecommendationRule(
        title="Demographic Parity Violation: {attribute}",
        description=(
            "Positive prediction rates differ substantially across {attribute} groups: "
            "the lowest-to-highest rate ratio is {value:.3f}, below {threshold:.2f}."
        ),
        actions=(
            "Rebalance training data across {attribute} groups during preprocessing",
            "Apply reweighing so each {attribute} group contributes equally during training",
        ),
    ),
    (MetricName.DEMOGRAPHIC_PARITY, Severity.WARNING): RecommendationRule(
        title="Demographic Parity Risk: {attribute}",
        description=(
            "Positive prediction rates across {attribute} groups are drifting apart: "
            "the lowest-to-highest rate ratio is {value:.3f}, below {threshold:.2f}."
        ),
        actions=(
            "Monitor positive prediction rates across {attribute} groups",
            "Use fairness-aware sampling when refreshing training data",
        ),
    ),
    (MetricName.EQUALIZED_ODDS, Severity.ERROR): RecommendationRule(
        title="Equalized Odds Violation: {attribute}",
        description=(
            "Significant disparity in true/false positive rates between {attribute} groups: "
            "equalized odds score is {value:.3f}, below {threshold:.2f}."
        ),
        actions=(
            "Add fairness constraints to model training",
            "Apply post-hoc decision threshold adjustment per {attribute} group",
        ),
    ),
    (MetricName.EQUALIZED_ODDS, Severity.WARNING): RecommendationRule(
        title="Equalized Odds Risk: {attribute}",
        description=(
            "Moderate disparity in true/false positive rates between {attribute} groups: "
            "equalized odds score is {value:.3f}, below {threshold:.2f}."
        ),
        actions=("Tune decision thresholds separately for each {attribute} group",),
    ),
    (MetricName.CALIBRATION, Severity.ERROR): RecommendationRule(
        title="Calibration Failure: {attribute}",
        description=(
            "Predicted probabilities do not match observed outcomes for {attribute} groups: "
            "calibration score is {value:.3f}, below {threshold:.2f}."
        ),
        actions=("Recalibrate scores per {attribute} group (e.g., isotonic regression)",),
    ),
    (MetricName.CALIBRATION, Severity.WARNING): RecommendationRule(
        title="Calibration Drift: {attribute}",
        description=(
            "Predicted probabilities are drifting from observed outcomes for {attribute} groups: "
            "calibration score is {value:.3f}, below {threshold:.2f}."
        ),
        actions=("Monitor calibration across {attribute} groups over time",),
    ),
}


def _most_affected(groups) -> Optional[Tuple[Any, float]]:
    worst = None
    for g, v in groups.items():
        if is_insufficient(v):
            continue
        if worst is None or v < worst[1]:
            worst = (g, v)
    return worst


def recommend_for_metric(
    classified: ClassifiedMetric,
    thresholds: Optional[SeverityThresholds] = None,
) -> List[Recommendation]:
    """Recommendations for one metric family, one per violated attribute, unranked."""
    thresholds = thresholds or DEFAULT_THRESHOLDS
    metric = classified.metric
    out: List[Recommendation] = []
    for attribute, severity in classified.by_attribute.items():
        rule = RULES.get((metric.name, severity))
        if rule is None:
            continue
        value = metric.by_attribute[attribute]
        missed = thresholds.warning if severity is Severity.ERROR else thresholds.success
        description = rule.description.format(attribute=attribute, value=value, threshold=missed)
        worst = _most_affected(metric.by_group.get(attribute, {}))
        if worst is not None:
            description += f" Most affected group: {worst[0]} ({worst[1]:.3f})."
        out.append(
            Recommendation(
                severity=SEVERITY_TO_PRIORITY[severity],
                title=rule.title.format(attribute=attribute),
                description=description,
                actions=tuple(a.format(attribute=attribute) for a in rule.actions),
                source_metric=metric.name,
                magnitude=float(1.0 - value),
                attribute=attribute,
            )
        )
    return out


def rank(recommendations: Sequence[Recommendation], attribute_order: Sequence[str] = ()) -> List[Recommendation]:
    attr_pos = {a: i for i, a in enumerate(attribute_order)}
    metric_pos = {m: i for i, m in enumerate(METRIC_ORDER)}
    return sorted(
        recommendations,
        key=lambda r: (
            PRIORITY_RANK[r.severity],
            -r.magnitude,
            metric_pos[r.source_metric],
            attr_pos.get(r.attribute, len(attr_pos)),
            r.attribute,
        ),
    )


def generate_recommendations(
    classified: Sequence[ClassifiedMetric],
    thresholds: Optional[SeverityThresholds] = None,
    attribute_order: Sequence[str] = (),
) -> List[Recommendation]:
    recs: List[Recommendation] = []
    for item in classified:
        recs.extend(recommend_for_metric(item, thresholds))
    return rank(recs, attribute_order)
