"""Eligibility weights and their YAML loader."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


class PolicyLoadError(RuntimeError):
    """Raised when a policy file cannot be parsed."""


class CriterionWeights(BaseModel):
    """Points awarded by each criterion; each is all-or-nothing."""

    ci_passed: int = Field(default=40, ge=0, description="Run concluded successfully.")
    pr_mergeable: int = Field(default=20, ge=0, description="Host reports no conflicts.")
    checks_passed: int = Field(default=25, ge=0, description="Every status check is green.")
    reviews_approved: int = Field(
        default=15,
        ge=0,
        description="Reviews approved, or awarded outright when reviews are not required.",
    )
    default_branch_push: int = Field(
        default=10,
        ge=0,
        description="Direct push to the default branch when there is no pull request.",
    )


class EligibilityPolicy(BaseModel):
    """Scoring configuration for automatic merges."""

    weights: CriterionWeights = Field(default_factory=CriterionWeights)
    threshold: int = Field(default=80, ge=0, le=100)
    require_reviews: bool = True
    passing_check_conclusions: frozenset[str] = Field(
        default=frozenset({"SUCCESS"}),
        description="Check conclusions (or commit status states) that count as green.",
    )

    @field_validator("passing_check_conclusions", mode="before")
    @classmethod
    def _normalize_conclusions(cls, value):
        if value is None:
            return frozenset({"SUCCESS"})
        if isinstance(value, str):
            value = [value]
        return frozenset(str(item).strip().upper() for item in value if str(item).strip())


def load_policy(path: Path) -> EligibilityPolicy:
    """Read an eligibility policy from a YAML file; an empty file yields defaults."""

    path = Path(path)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise PolicyLoadError(f"Cannot read policy file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise PolicyLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

    if document is None:
        return EligibilityPolicy()
    try:
        return EligibilityPolicy.model_validate(document)
    except ValidationError as exc:
        raise PolicyLoadError(f"Policy validation error in {path}: {exc}") from exc


__all__ = ["CriterionWeights", "EligibilityPolicy", "PolicyLoadError", "load_policy"]
