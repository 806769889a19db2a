"""
Error taxonomy for the fairness engine.

- InputValidationError: malformed input; fatal, raised before any computation.
- Insufficient: a value object used in place of a number when a statistic
  cannot be computed (small group, undefined rate). Never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


class InputValidationError(ValueError):
    """Raised for empty datasets, unknown attributes, bad thresholds or inconsistent records."""


@dataclass(frozen=True)
class Insufficient:
    reason: str = "insufficient sample"

    def __repr__(self) -> str:
        return f"Insufficient({self.reason!r})"


MetricValue = Union[float, Insufficient]


def is_insufficient(value) -> bool:
    return isinstance(value, Insufficient)
