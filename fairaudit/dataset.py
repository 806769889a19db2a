"""
Evaluated population: per-individual records plus the decision threshold.

A Dataset is plain data. `validate()` is called by the orchestrator before any
computation; `frame()` exposes the records as a pandas DataFrame for the
vectorized aggregation layer.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd

from fairaudit.config import _check_unit_interval
from fairaudit.errors import InputValidationError


PREDICTED_LABEL = "predicted_label"
PREDICTED_SCORE = "predicted_score"
TRUE_LABEL = "true_label"
RESERVED_COLUMNS = (PREDICTED_LABEL, PREDICTED_SCORE, TRUE_LABEL)


class GroupKey(NamedTuple):
    attribute: str
    group: Any


def _as_binary(value, name: str, index: int) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)) and value in (0, 1):
        return bool(value)
    raise InputValidationError(f"Record {index}: {name} must be boolean or 0/1, got {value!r}")


@dataclass(frozen=True)
class Record:
    attributes: Mapping[str, Any]
    predicted_score: float
    true_label: Any
    predicted_label: Optional[Any] = None


@dataclass
class Dataset:
    records: Sequence[Record]
    protected_attributes: Sequence[str]
    decision_threshold: float = 0.5
    _frame: Optional[pd.DataFrame] = field(default=None, init=False, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.records)

    def validate(self) -> None:
        if not self.records:
            raise InputValidationError("Dataset is empty")
        if not self.protected_attributes:
            raise InputValidationError("Dataset declares no protected attributes")
        clash = [a for a in self.protected_attributes if a in RESERVED_COLUMNS]
        if clash:
            raise InputValidationError(f"Protected attribute names clash with reserved columns: {clash}")
        _check_unit_interval("decision_threshold", self.decision_threshold)
        for i, rec in enumerate(self.records):
            missing = [a for a in self.protected_attributes if a not in rec.attributes or _is_missing(rec.attributes[a])]
            if missing:
                raise InputValidationError(f"Record {i} has no value for protected attribute(s) {missing}")
            score = rec.predicted_score
            try:
                score = float(score)
            except (TypeError, ValueError):
                raise InputValidationError(f"Record {i}: predicted_score must be a number, got {rec.predicted_score!r}")
            if math.isnan(score) or not 0.0 <= score <= 1.0:
                raise InputValidationError(f"Record {i}: predicted_score must lie in [0, 1], got {rec.predicted_score!r}")
            _as_binary(rec.true_label, "true_label", i)
            if rec.predicted_label is not None:
                _as_binary(rec.predicted_label, "predicted_label", i)

    def with_threshold(self, decision_threshold: float) -> "Dataset":
        if float(decision_threshold) == float(self.decision_threshold):
            return self
        return Dataset(records=self.records, protected_attributes=self.protected_attributes, decision_threshold=decision_threshold)

    def frame(self) -> pd.DataFrame:
        """Records as a DataFrame; predicted labels are derived from the threshold where omitted."""
        if self._frame is None:
            rows: List[Dict[str, Any]] = []
            for i, rec in enumerate(self.records):
                score = float(rec.predicted_score)
                if rec.predicted_label is None:
                    pred = score >= float(self.decision_threshold)
                else:
                    pred = _as_binary(rec.predicted_label, "predicted_label", i)
                row = {a: rec.attributes[a] for a in self.protected_attributes}
                row[PREDICTED_LABEL] = bool(pred)
                row[PREDICTED_SCORE] = score
                row[TRUE_LABEL] = _as_binary(rec.true_label, "true_label", i)
                rows.append(row)
            self._frame = pd.DataFrame(rows, columns=list(self.protected_attributes) + list(RESERVED_COLUMNS))
        return self._frame

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        protected_attributes: Sequence[str],
        score_col: str,
        true_col: str,
        pred_col: Optional[str] = None,
        decision_threshold: float = 0.5,
    ) -> "Dataset":
        needed = list(protected_attributes) + [score_col, true_col] + ([pred_col] if pred_col else [])
        absent = [c for c in needed if c not in df.columns]
        if absent:
            raise InputValidationError(f"Columns not found in frame: {absent}")
        records = []
        for row in df.to_dict(orient="records"):
            records.append(
                Record(
                    attributes={a: row[a] for a in protected_attributes},
                    predicted_score=row[score_col],
                    true_label=row[true_col],
                    predicted_label=row[pred_col] if pred_col else None,
                )
            )
        return cls(records=records, protected_attributes=list(protected_attributes), decision_threshold=decision_threshold)

    @classmethod
    def from_model(
        cls,
        model,
        X: pd.DataFrame,
        y_true,
        sensitive: pd.DataFrame,
        protected_attributes: Optional[Sequence[str]] = None,
        decision_threshold: float = 0.5,
    ) -> "Dataset":
        """
        Score a fitted estimator and wrap the outputs as a Dataset.
        Uses predict_proba column 1 when available, else a logistic squash of decision_function.
        """
        if hasattr(model, "predict_proba"):
            proba = model.predict_proba(X)
            scores = proba[:, 1] if getattr(proba, "ndim", 1) > 1 else proba
        elif hasattr(model, "decision_function"):
            scores = 1.0 / (1.0 + np.exp(-np.asarray(model.decision_function(X), dtype=float)))
        else:
            raise InputValidationError("Model must expose predict_proba or decision_function")
        attrs = list(protected_attributes) if protected_attributes else list(sensitive.columns)
        y = np.asarray(y_true)
        if not (len(scores) == len(y) == len(sensitive)):
            raise InputValidationError(f"Length mismatch: scores={len(scores)}, y_true={len(y)}, sensitive={len(sensitive)}")
        frame = sensitive[attrs].reset_index(drop=True).copy()
        frame[PREDICTED_SCORE] = np.clip(np.asarray(scores, dtype=float), 0.0, 1.0)
        frame[TRUE_LABEL] = y
        return cls.from_frame(frame, attrs, score_col=PREDICTED_SCORE, true_col=TRUE_LABEL, decision_threshold=decision_threshold)


def _is_missing(value) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False
