"""Adaptive CI run monitor and merge-eligibility engine."""

__version__ = "0.1.0"

__all__ = ["__version__"]
