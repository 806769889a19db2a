import pytest

from fairaudit.config import SeverityThresholds
from fairaudit.errors import Insufficient
from fairaudit.metrics import MetricName, MetricResult
from fairaudit.severity import Severity, classify, classify_metric


@pytest.mark.parametrize(
    "value,expected",
    [
        (1.0, Severity.SUCCESS),
        (0.8, Severity.SUCCESS),
        (0.7999, Severity.WARNING),
        (0.7, Severity.WARNING),
        (0.6999, Severity.ERROR),
        (0.0, Severity.ERROR),
        (Insufficient(), Severity.INSUFFICIENT),
    ],
)
def test_default_thresholds(value, expected):
    assert classify(value) is expected


def test_custom_thresholds():
    strict = SeverityThresholds(success=0.95, warning=0.9)
    assert classify(0.92, strict) is Severity.WARNING
    assert classify(0.85, strict) is Severity.ERROR


def test_classification_is_monotonic():
    order = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.SUCCESS: 2}
    ranks = [order[classify(i / 100)] for i in range(101)]
    assert ranks == sorted(ranks)


def test_classify_metric_applies_uniformly():
    metric = MetricResult(
        name=MetricName.EQUALIZED_ODDS,
        overall=0.65,
        by_group={"gender": {"f": 0.65, "m": 1.0}, "age": {"old": Insufficient()}},
        by_attribute={"gender": 0.65, "age": Insufficient()},
    )
    classified = classify_metric(metric)
    assert classified.overall is Severity.ERROR
    assert classified.by_attribute == {"gender": Severity.ERROR, "age": Severity.INSUFFICIENT}
    assert classified.by_group["gender"]["m"] is Severity.SUCCESS
    assert classified.by_group["age"]["old"] is Severity.INSUFFICIENT
