"""
Team Assessment Engine - Guardrails
Prompt-injection screening for learner text sent to the grading model.
"""
import re
from dataclasses import dataclass, field
from enum import Enum


class GuardrailResult(Enum):
    """Result of guardrail check."""
    PASS = "pass"
    WARN = "warn"
    BLOCK = "block"


@dataclass
class GuardrailResponse:
    """Response from guardrail check."""
    result: GuardrailResult
    message: str
    violations: list[str] = field(default_factory=list)


class InputGuardrails:
    """
    Screens untrusted learner responses before they reach the grader.

    A hit does not stop grading: the response is still scored as data, and
    the suggestion is flagged so a human reviewer looks twice.
    """

    INJECTION_PATTERNS = [
        r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rubric)",
        r"disregard\s+(the\s+)?(rubric|instructions?)",
        r"you\s+are\s+now\s+in\s+(developer|admin|jailbreak)\s+mode",
        r"system\s*:\s*",
        r"<\|.*?\|>",  # Special tokens
        r"\bDAN\b",
        r"pretend\s+you\s+are\s+(not|an?\s+ai)",
        r"(award|give|assign)\s+(me\s+|this\s+(answer|response)\s+)?(full|maximum|max|all)\s+(points|marks|credit|score)",
        r"\"suggested_points\"\s*:",
    ]

    @classmethod
    def check_injection(cls, text: str) -> GuardrailResponse:
        """Check for potential prompt injection attempts."""
        for pattern in cls.INJECTION_PATTERNS:
            if re.search(pattern, text, re.IGNORECASE):
                return GuardrailResponse(
                    result=GuardrailResult.WARN,
                    message="Potential prompt manipulation detected.",
                    violations=["prompt_injection"],
                )

        return GuardrailResponse(
            result=GuardrailResult.PASS,
            message="No injection detected.",
        )


def injection_suspected(text: str | None) -> bool:
    """True if the text looks like an attempt to steer the grader."""
    if not text:
        return False
    return InputGuardrails.check_injection(text).result != GuardrailResult.PASS
