"""Core business logic components.

This module exports the main business logic classes:
- Agent: Main orchestrator that coordinates all components
- EvaluationScheduler: Per-channel debounce of autonomous evaluations
- DominanceThrottle: Keeps the agent from crowding out people
- ContextWindower: Selects the slice of history forming the conversation
- DecisionOracle: Asks the model whether to speak
- DispatchQueue: Serializes every outbound reply
- GenerationEngine: Produces replies with a bounded tool loop
"""

from ai_chat_agent.core.agent import Agent, StartupError, create_agent
from ai_chat_agent.core.decision import DecisionOracle
from ai_chat_agent.core.dispatch import DispatchQueue
from ai_chat_agent.core.enrichment import EnrichmentCache, EnrichmentService
from ai_chat_agent.core.generation import GenerationEngine, GenerationResult
from ai_chat_agent.core.scheduler import ChannelEvaluationState, EvaluationScheduler
from ai_chat_agent.core.throttle import DominanceThrottle, ThrottleOutcome
from ai_chat_agent.core.tools import ToolExecutor
from ai_chat_agent.core.windower import ContextWindower, build_context_window, dominance_ratio

__all__ = [
    "Agent",
    "ChannelEvaluationState",
    "ContextWindower",
    "DecisionOracle",
    "DispatchQueue",
    "DominanceThrottle",
    "EnrichmentCache",
    "EnrichmentService",
    "EvaluationScheduler",
    "GenerationEngine",
    "GenerationResult",
    "StartupError",
    "ThrottleOutcome",
    "ToolExecutor",
    "build_context_window",
    "create_agent",
    "dominance_ratio",
]
