"""
Team Assessment Engine - Base Agent
Abstract base class for the engine's AI agents.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from assessment_engine.ai.core.llm import LLMClient, get_llm_client
from assessment_engine.ai.core.telemetry import get_tracer


class AgentState(Enum):
    """Agent execution states."""
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class AgentContext:
    """Context passed to agent during execution."""
    user_input: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentResult:
    """Result from agent execution."""
    success: bool
    output: Any
    state: AgentState
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class BaseAgent(ABC):
    """
    Abstract base class for AI Agents.

    Each agent follows the Plan-Execute pattern:
    1. plan() - Validate input and decide what to ask
    2. execute() - Call the model and interpret its answer

    Agents keep no memory between runs; every call is self-contained.
    """

    # Agent metadata (override in subclasses)
    name: str = "BaseAgent"
    description: str = "Base agent class"
    version: str = "1.0.0"

    def __init__(self, llm_client: Optional[LLMClient] = None):
        """
        Initialize the agent.

        Args:
            llm_client: Custom LLM client (uses the shared default client if not provided).
        """
        self.llm = llm_client or get_llm_client()
        self._state = AgentState.IDLE

    @property
    def state(self) -> AgentState:
        """Get current agent state."""
        return self._state

    @abstractmethod
    async def plan(self, context: AgentContext) -> Dict[str, Any]:
        """
        Planning phase: Determine what actions to take.

        Returns:
            A plan dictionary with actions to execute.
        """

    @abstractmethod
    async def execute(self, context: AgentContext, plan: Dict[str, Any]) -> AgentResult:
        """
        Execution phase: Perform the planned actions.

        Returns:
            AgentResult with the execution outcome.
        """

    async def run(
        self,
        user_input: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AgentResult:
        """
        Run the plan-execute cycle.

        Failures never raise out of here; they come back as an unsuccessful
        AgentResult carrying the error text.
        """
        tracer = get_tracer()

        with tracer.start_as_current_span(f"{self.name}.run") as span:
            span.set_attribute("agent.name", self.name)
            span.set_attribute("agent.version", self.version)

            try:
                context = AgentContext(user_input=user_input, metadata=metadata or {})

                self._state = AgentState.PLANNING
                with tracer.start_as_current_span(f"{self.name}.plan"):
                    plan = await self.plan(context)

                self._state = AgentState.EXECUTING
                with tracer.start_as_current_span(f"{self.name}.execute"):
                    result = await self.execute(context, plan)

                span.add_event("execution_completed", {"success": result.success})
                self._state = AgentState.COMPLETED if result.success else AgentState.ERROR
                return result

            except Exception as e:
                self._state = AgentState.ERROR
                span.record_exception(e)

                return AgentResult(
                    success=False,
                    output=None,
                    state=AgentState.ERROR,
                    error=str(e),
                )

    def __repr__(self) -> str:
        return f"<{self.name} v{self.version} state={self.state.value}>"
