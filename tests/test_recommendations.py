from fairaudit.config import SeverityThresholds
from fairaudit.errors import Insufficient
from fairaudit.metrics import MetricName, MetricResult
from fairaudit.recommendations import RULES, generate_recommendations, rank, recommend_for_metric
from fairaudit.severity import Severity, classify_metric


def _metric(name, by_attribute, by_group=None):
    numeric = [v for v in by_attribute.values() if not isinstance(v, Insufficient)]
    return MetricResult(
        name=name,
        overall=min(numeric) if numeric else Insufficient(),
        by_group=by_group or {a: {} for a in by_attribute},
        by_attribute=by_attribute,
    )


def test_rule_table_covers_every_violation_tier():
    for name in MetricName:
        for severity in (Severity.ERROR, Severity.WARNING):
            assert (name, severity) in RULES
        assert (name, Severity.SUCCESS) not in RULES
        assert (name, Severity.INSUFFICIENT) not in RULES


def test_only_violations_fire():
    metric = _metric(
        MetricName.DEMOGRAPHIC_PARITY,
        {"gender": 0.5, "age": 0.75, "region": 0.95, "race": Insufficient()},
    )
    recs = recommend_for_metric(classify_metric(metric))
    assert [(r.attribute, r.severity) for r in recs] == [("gender", "critical"), ("age", "moderate")]
    gender = recs[0]
    assert gender.title == "Demographic Parity Violation: gender"
    assert gender.magnitude == 0.5
    assert gender.source_metric is MetricName.DEMOGRAPHIC_PARITY
    assert len(gender.actions) == 2
    assert recs[1].title == "Demographic Parity Risk: age"


def test_description_names_most_affected_group():
    metric = _metric(
        MetricName.EQUALIZED_ODDS,
        {"gender": 0.65},
        by_group={"gender": {"male": 0.95, "female": 0.65, "other": Insufficient()}},
    )
    (rec,) = recommend_for_metric(classify_metric(metric))
    assert "female (0.650)" in rec.description
    assert "below 0.70" in rec.description
    assert rec.actions[1] == "Apply post-hoc decision threshold adjustment per gender group"


def test_ranking_severity_then_magnitude_then_metric():
    dp = _metric(MetricName.DEMOGRAPHIC_PARITY, {"gender": 0.75, "age": 0.6})
    eo = _metric(MetricName.EQUALIZED_ODDS, {"gender": 0.6, "age": 0.5})
    cal = _metric(MetricName.CALIBRATION, {"gender": 0.72})
    ranked = generate_recommendations(
        [classify_metric(cal), classify_metric(eo), classify_metric(dp)], attribute_order=["gender", "age"]
    )
    keys = [(r.source_metric, r.attribute) for r in ranked]
    assert keys == [
        (MetricName.EQUALIZED_ODDS, "age"),  # critical, magnitude 0.5
        (MetricName.DEMOGRAPHIC_PARITY, "age"),  # critical, 0.4, metric order wins the tie
        (MetricName.EQUALIZED_ODDS, "gender"),  # critical, 0.4
        (MetricName.CALIBRATION, "gender"),  # moderate, 0.28
        (MetricName.DEMOGRAPHIC_PARITY, "gender"),  # moderate, 0.25
    ]


def test_rank_is_stable_under_input_permutation():
    dp = recommend_for_metric(classify_metric(_metric(MetricName.DEMOGRAPHIC_PARITY, {"a": 0.6, "b": 0.6})))
    eo = recommend_for_metric(classify_metric(_metric(MetricName.EQUALIZED_ODDS, {"a": 0.6, "b": 0.6})))
    order = ["b", "a"]
    assert rank(dp + eo, order) == rank(list(reversed(eo + dp)), order)
    assert [r.attribute for r in rank(dp, order)] == ["b", "a"]


def test_custom_thresholds_change_tiers():
    metric = _metric(MetricName.CALIBRATION, {"gender": 0.85})
    strict = SeverityThresholds(success=0.95, warning=0.9)
    (rec,) = recommend_for_metric(classify_metric(metric, strict), strict)
    assert rec.severity == "critical"
    assert rec.title == "Calibration Failure: gender"
    assert "below 0.90" in rec.description
