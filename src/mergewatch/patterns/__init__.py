"""Learned run patterns and their persistence."""

from .models import FailureRecord, GlobalDefaults, LearnedPattern, PatternSnapshot
from .store import PatternStore

__all__ = [
    "FailureRecord",
    "GlobalDefaults",
    "LearnedPattern",
    "PatternSnapshot",
    "PatternStore",
]
