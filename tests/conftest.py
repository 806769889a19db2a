import pytest

from fairaudit.dataset import Dataset, Record

AGES = ["18-30", "31-50", "50+"]
REGIONS = ["north", "south"]


def records_for(attributes, tp=0, fp=0, tn=0, fn=0, pos_score=0.8, neg_score=0.2):
    """Records with explicit predicted labels for one group."""
    recs = []
    recs += [Record(dict(attributes), pos_score, 1, 1) for _ in range(tp)]
    recs += [Record(dict(attributes), pos_score, 0, 1) for _ in range(fp)]
    recs += [Record(dict(attributes), neg_score, 0, 0) for _ in range(tn)]
    recs += [Record(dict(attributes), neg_score, 1, 0) for _ in range(fn)]
    return recs


@pytest.fixture
def make_records():
    return records_for


@pytest.fixture
def four_fifths_dataset():
    # gender A: 80/100 positive predictions, gender B: 40/100
    recs = records_for({"gender": "A"}, tp=60, fp=20, tn=10, fn=10)
    recs += records_for({"gender": "B"}, tp=30, fp=10, tn=40, fn=20)
    return Dataset(records=recs, protected_attributes=["gender"])


@pytest.fixture
def three_attribute_dataset():
    base = records_for({"gender": "A"}, tp=60, fp=20, tn=10, fn=10)
    base += records_for({"gender": "B"}, tp=30, fp=10, tn=40, fn=20)
    recs = []
    for i, r in enumerate(base):
        attrs = {"gender": r.attributes["gender"], "age": AGES[i % 3], "region": REGIONS[i % 2]}
        recs.append(Record(attrs, r.predicted_score, r.true_label, r.predicted_label))
    return Dataset(records=recs, protected_attributes=["gender", "age", "region"])
