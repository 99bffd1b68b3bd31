"""
Team Assessment Engine - LLM Client
Centralized chat-model access with telemetry.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from langchain_core.messages import HumanMessage, SystemMessage

from assessment_engine.ai.core.telemetry import get_tracer, trace_llm_call
from assessment_engine.core.config import settings


@dataclass
class LLMResponse:
    """Standardized response from LLM client."""
    content: str
    model: str
    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0
    raw_response: Any = None


class LLMClient:
    """
    LLM client shared by the grading agents.

    Supports OpenAI and Anthropic chat models through LangChain; the model
    is constructed on first use so importing the module needs no API key.
    """

    def __init__(
        self,
        provider: str = None,
        model: str = None,
        temperature: float = None,
        timeout: int = None,
    ):
        """
        Initialize the LLM client.

        Args:
            provider: LLM provider ('openai' or 'anthropic'). Defaults to settings.
            model: Model name. Defaults to settings.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.
        """
        self.provider = provider or settings.LLM_PROVIDER
        self.model = model or (
            settings.OPENAI_MODEL if self.provider == "openai"
            else settings.ANTHROPIC_MODEL
        )
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS

        self._llm = None

    @property
    def llm(self):
        """Lazy-load the LLM instance."""
        if self._llm is None:
            if self.provider == "openai":
                from langchain_openai import ChatOpenAI
                self._llm = ChatOpenAI(
                    model=self.model,
                    api_key=settings.OPENAI_API_KEY,
                    temperature=self.temperature,
                    timeout=self.timeout,
                )
            else:
                from langchain_anthropic import ChatAnthropic
                self._llm = ChatAnthropic(
                    model=self.model,
                    api_key=settings.ANTHROPIC_API_KEY,
                    temperature=self.temperature,
                    timeout=self.timeout,
                )
        return self._llm

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        agent_name: str = "LLMClient",
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt.
            system_prompt: Optional system prompt, formatted with ``context``.
            context: Optional context variables for prompt formatting.
            agent_name: Name of the calling agent (for telemetry).

        Returns:
            LLMResponse with content and metadata.
        """
        tracer = get_tracer()

        with tracer.start_as_current_span("llm.generate") as span:
            span.set_attribute("llm.model", self.model)
            span.set_attribute("llm.provider", self.provider)
            span.set_attribute("agent.name", agent_name)

            messages = []
            if system_prompt:
                if context:
                    system_prompt = system_prompt.format(**context)
                messages.append(SystemMessage(content=system_prompt))
            messages.append(HumanMessage(content=prompt))

            span.set_attribute("llm.prompt_length", len(prompt))

            response = await self.llm.ainvoke(messages)
            content = response.content if isinstance(response.content, str) else str(response.content)

            # Extract token usage if available
            tokens_prompt = 0
            tokens_completion = 0
            if hasattr(response, "response_metadata"):
                usage = response.response_metadata.get("token_usage", {})
                tokens_prompt = usage.get("prompt_tokens", 0)
                tokens_completion = usage.get("completion_tokens", 0)

            tokens_total = tokens_prompt + tokens_completion
            trace_llm_call(
                model=self.model,
                prompt_tokens=tokens_prompt,
                completion_tokens=tokens_completion,
                total_tokens=tokens_total,
            )
            span.set_attribute("llm.response_length", len(content))

            return LLMResponse(
                content=content,
                model=self.model,
                tokens_prompt=tokens_prompt,
                tokens_completion=tokens_completion,
                tokens_total=tokens_total,
                raw_response=response,
            )

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        agent_name: str = "LLMClient",
    ) -> Dict[str, Any]:
        """
        Generate a JSON response from the LLM.
        Parses the response and returns a dictionary.

        Raises:
            ValueError: If the response is not a JSON object
        """
        response = await self.generate(
            prompt=prompt,
            system_prompt=system_prompt,
            context=context,
            agent_name=agent_name,
        )
        return parse_json_object(response.content)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a model reply as a JSON object, tolerating markdown code fences."""
    content = content.strip()

    # Strip markdown code blocks if present
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object")
    return parsed


# Default client instance
_default_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the default LLM client instance."""
    global _default_client
    if _default_client is None:
        _default_client = LLMClient()
    return _default_client
