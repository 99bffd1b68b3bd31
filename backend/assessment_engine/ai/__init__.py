"""
Team Assessment Engine - AI Module
Model-backed helpers for free-response grading suggestions.
"""
from assessment_engine.ai.agents import (
    FreeResponseGraderAgent,
    FreeResponseScorer,
    ScorerSuggestion,
    free_response_grader,
)

__all__ = [
    "FreeResponseGraderAgent",
    "FreeResponseScorer",
    "ScorerSuggestion",
    "free_response_grader",
]
