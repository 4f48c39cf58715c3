"""Merge eligibility scoring."""

from .evaluator import EligibilityEvaluator, EligibilityResult
from .policy import CriterionWeights, EligibilityPolicy, PolicyLoadError, load_policy

__all__ = [
    "CriterionWeights",
    "EligibilityEvaluator",
    "EligibilityPolicy",
    "EligibilityResult",
    "PolicyLoadError",
    "load_policy",
]
