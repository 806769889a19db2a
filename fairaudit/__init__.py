"""
Fairness audit engine.

Layered pipeline: dataset validation, confusion aggregation, metric scoring,
severity classification and remediation recommendations, coordinated by
`orchestrator.run_analysis`.
"""

from fairaudit.config import AnalysisConfig, SeverityThresholds
from fairaudit.dataset import Dataset, GroupKey, Record
from fairaudit.errors import InputValidationError, Insufficient
from fairaudit.orchestrator import AnalysisOrchestrator, AnalysisResult, AnalysisState, run_analysis

__all__ = [
    "AnalysisConfig",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "AnalysisState",
    "Dataset",
    "GroupKey",
    "InputValidationError",
    "Insufficient",
    "Record",
    "SeverityThresholds",
    "run_analysis",
]
