"""
Analysis configuration.

Thresholds, bin counts and minimum group sizes are explicit configuration so
deployments can tune policy without code changes. Values can come from keyword
arguments, a plain mapping (camelCase keys as sent by the dashboard) or
environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from fairaudit.errors import InputValidationError


DEFAULT_MIN_GROUP_SIZE = 30
DEFAULT_BINS = 10
DEFAULT_SUCCESS_THRESHOLD = 0.8
DEFAULT_WARNING_THRESHOLD = 0.7

ENV_PREFIX = "FAIRAUDIT_"


def _check_unit_interval(name: str, value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InputValidationError(f"{name} must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise InputValidationError(f"{name} must lie in [0, 1], got {value}")
    return value


@dataclass(frozen=True)
class SeverityThresholds:
    success: float = DEFAULT_SUCCESS_THRESHOLD
    warning: float = DEFAULT_WARNING_THRESHOLD

    def __post_init__(self):
        success = _check_unit_interval("thresholds.success", self.success)
        warning = _check_unit_interval("thresholds.warning", self.warning)
        if warning > success:
            raise InputValidationError(f"thresholds.warning ({warning}) must not exceed thresholds.success ({success})")
        object.__setattr__(self, "success", success)
        object.__setattr__(self, "warning", warning)


@dataclass(frozen=True)
class AnalysisConfig:
    protected_attributes: Sequence[str]
    # None keeps the threshold the dataset was built with.
    decision_threshold: Optional[float] = None
    min_group_size: int = DEFAULT_MIN_GROUP_SIZE
    bins: int = DEFAULT_BINS
    thresholds: SeverityThresholds = field(default_factory=SeverityThresholds)
    # None lets the executor pick; 1 forces sequential, deterministic scheduling.
    max_workers: Optional[int] = None

    def __post_init__(self):
        attrs = self.protected_attributes
        if isinstance(attrs, str):
            attrs = [attrs]
        attrs = tuple(str(a) for a in (attrs or ()))
        if not attrs:
            raise InputValidationError("At least one protected attribute must be configured")
        if len(set(attrs)) != len(attrs):
            raise InputValidationError(f"Duplicate protected attributes in {list(attrs)}")
        object.__setattr__(self, "protected_attributes", attrs)
        if self.decision_threshold is not None:
            object.__setattr__(self, "decision_threshold", _check_unit_interval("decision_threshold", self.decision_threshold))
        for name in ("min_group_size", "bins"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InputValidationError(f"{name} must be a positive integer, got {value!r}")
        if self.max_workers is not None and (not isinstance(self.max_workers, int) or self.max_workers < 1):
            raise InputValidationError(f"max_workers must be a positive integer or None, got {self.max_workers!r}")
        if not isinstance(self.thresholds, SeverityThresholds):
            raise InputValidationError("thresholds must be a SeverityThresholds instance")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        """
        Build a config from a plain mapping. Accepts both the dashboard's camelCase
        keys (protectedAttributes, decisionThreshold, minGroupSize) and snake_case.
        """

        def pick(*keys, default=None):
            for k in keys:
                if k in data:
                    return data[k]
            return default

        raw_thresholds = pick("thresholds", default={}) or {}
        if isinstance(raw_thresholds, SeverityThresholds):
            thresholds = raw_thresholds
        else:
            thresholds = SeverityThresholds(
                success=raw_thresholds.get("success", DEFAULT_SUCCESS_THRESHOLD),
                warning=raw_thresholds.get("warning", DEFAULT_WARNING_THRESHOLD),
            )
        return cls(
            protected_attributes=pick("protectedAttributes", "protected_attributes", default=()),
            decision_threshold=pick("decisionThreshold", "decision_threshold", default=None),
            min_group_size=pick("minGroupSize", "min_group_size", default=DEFAULT_MIN_GROUP_SIZE),
            bins=pick("bins", default=DEFAULT_BINS),
            thresholds=thresholds,
            max_workers=pick("maxWorkers", "max_workers"),
        )

    @classmethod
    def from_env(cls, protected_attributes: Sequence[str], environ: Optional[Mapping[str, str]] = None) -> "AnalysisConfig":
        env = os.environ if environ is None else environ

        def read(name: str, cast, default):
            raw = env.get(ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return cast(raw.strip())
            except ValueError:
                raise InputValidationError(f"Environment variable {ENV_PREFIX + name}={raw!r} is not a valid {cast.__name__}")

        return cls(
            protected_attributes=protected_attributes,
            decision_threshold=read("DECISION_THRESHOLD", float, None),
            min_group_size=read("MIN_GROUP_SIZE", int, DEFAULT_MIN_GROUP_SIZE),
            bins=read("BINS", int, DEFAULT_BINS),
            thresholds=SeverityThresholds(
                success=read("SUCCESS_THRESHOLD", float, DEFAULT_SUCCESS_THRESHOLD),
                warning=read("WARNING_THRESHOLD", float, DEFAULT_WARNING_THRESHOLD),
            ),
            max_workers=read("MAX_WORKERS", int, None),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protectedAttributes": list(self.protected_attributes),
            "decisionThreshold": self.decision_threshold,
            "minGroupSize": self.min_group_size,
            "bins": self.bins,
            "thresholds": {"success": self.thresholds.success, "warning": self.thresholds.warning},
        }
