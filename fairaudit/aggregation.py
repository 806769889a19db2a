"""
Stage 1 – Confusion aggregation.

Buckets records by their group value for one protected attribute and counts
confusion-matrix cells per group. Also accumulates the per-group score bins the
calibration metric needs, so metrics never touch individual records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix

from fairaudit.dataset import PREDICTED_LABEL, PREDICTED_SCORE, TRUE_LABEL, Dataset, GroupKey
from fairaudit.errors import InputValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfusionCounts:
    true_positive: int
    false_positive: int
    true_negative: int
    false_negative: int
    total: int
    insufficient_sample: bool = False

    @property
    def predicted_positive(self) -> int:
        return self.true_positive + self.false_positive

    @property
    def actual_positive(self) -> int:
        return self.true_positive + self.false_negative

    @property
    def actual_negative(self) -> int:
        return self.false_positive + self.true_negative


@dataclass(frozen=True, eq=False)
class CalibrationBins:
    counts: np.ndarray  # records per bin
    score_sums: np.ndarray  # sum of predicted scores per bin
    positives: np.ndarray  # records with a positive true label per bin

    @property
    def total(self) -> int:
        return int(self.counts.sum())


@dataclass(frozen=True)
class AttributeAggregate:
    attribute: str
    counts: Dict[GroupKey, ConfusionCounts]
    bins: Dict[GroupKey, CalibrationBins]


def _check_attribute(dataset: Dataset, attribute: str) -> None:
    if attribute not in dataset.protected_attributes:
        raise InputValidationError(
            f"Unknown protected attribute {attribute!r}; dataset declares {list(dataset.protected_attributes)}"
        )


def _groups(df: pd.DataFrame, attribute: str) -> list:
    # pd.unique keeps first-seen order, which fixes the output ordering.
    return [g.item() if isinstance(g, np.generic) else g for g in pd.unique(df[attribute])]


def bin_index(scores: np.ndarray, n_bins: int) -> np.ndarray:
    """Equal-width bins over [0, 1]; a score of exactly 1.0 falls in the last bin."""
    idx = np.floor(np.asarray(scores, dtype=float) * n_bins).astype(int)
    return np.clip(idx, 0, n_bins - 1)


def aggregate(dataset: Dataset, attribute: str, min_group_size: int = 30) -> Dict[GroupKey, ConfusionCounts]:
    _check_attribute(dataset, attribute)
    df = dataset.frame()
    results: Dict[GroupKey, ConfusionCounts] = {}
    for g in _groups(df, attribute):
        mask = (df[attribute] == g).to_numpy()
        y_true = df.loc[mask, TRUE_LABEL].to_numpy(dtype=bool)
        y_pred = df.loc[mask, PREDICTED_LABEL].to_numpy(dtype=bool)
        tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[False, True]).ravel()
        total = int(mask.sum())
        counts = ConfusionCounts(
            true_positive=int(tp),
            false_positive=int(fp),
            true_negative=int(tn),
            false_negative=int(fn),
            total=total,
            insufficient_sample=total < min_group_size,
        )
        if counts.insufficient_sample:
            logger.warning("Group %s=%r has %d records (< %d); flagged insufficient", attribute, g, total, min_group_size)
        results[GroupKey(attribute, g)] = counts
    return results


def aggregate_calibration_bins(dataset: Dataset, attribute: str, n_bins: int = 10) -> Dict[GroupKey, CalibrationBins]:
    _check_attribute(dataset, attribute)
    df = dataset.frame()
    results: Dict[GroupKey, CalibrationBins] = {}
    for g in _groups(df, attribute):
        mask = (df[attribute] == g).to_numpy()
        scores = df.loc[mask, PREDICTED_SCORE].to_numpy(dtype=float)
        labels = df.loc[mask, TRUE_LABEL].to_numpy(dtype=float)
        idx = bin_index(scores, n_bins)
        results[GroupKey(attribute, g)] = CalibrationBins(
            counts=np.bincount(idx, minlength=n_bins),
            score_sums=np.bincount(idx, weights=scores, minlength=n_bins),
            positives=np.bincount(idx, weights=labels, minlength=n_bins),
        )
    return results


def aggregate_attribute(dataset: Dataset, attribute: str, min_group_size: int = 30, n_bins: int = 10) -> AttributeAggregate:
    counts = aggregate(dataset, attribute, min_group_size=min_group_size)
    bins = aggregate_calibration_bins(dataset, attribute, n_bins=n_bins)
    logger.debug("Aggregated %s: %d groups", attribute, len(counts))
    return AttributeAggregate(attribute=attribute, counts=counts, bins=bins)
