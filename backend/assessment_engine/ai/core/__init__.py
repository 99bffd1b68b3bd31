# AI Core Module - LLM access, telemetry and guardrails

from assessment_engine.ai.core.llm import LLMClient, LLMResponse, get_llm_client, parse_json_object
from assessment_engine.ai.core.telemetry import agent_span, get_tracer, init_telemetry
from assessment_engine.ai.core.guardrails import InputGuardrails, injection_suspected

__all__ = [
    # LLM
    "LLMClient",
    "LLMResponse",
    "get_llm_client",
    "parse_json_object",

    # Telemetry
    "agent_span",
    "get_tracer",
    "init_telemetry",

    # Guardrails
    "InputGuardrails",
    "injection_suspected",
]
