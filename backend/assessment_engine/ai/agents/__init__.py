# AI Agents Package
from assessment_engine.ai.agents.base import BaseAgent, AgentContext, AgentResult, AgentState
from assessment_engine.ai.agents.grader import (
    FreeResponseGraderAgent,
    FreeResponseScorer,
    ScorerSuggestion,
    free_response_grader,
)

__all__ = [
    # Base
    "BaseAgent",
    "AgentContext",
    "AgentResult",
    "AgentState",

    # Grading
    "FreeResponseGraderAgent",
    "FreeResponseScorer",
    "ScorerSuggestion",
    "free_response_grader",
]
