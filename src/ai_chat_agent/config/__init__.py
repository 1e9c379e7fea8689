"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    AgentConfig,
    AnthropicConfig,
    BackfillConfig,
    ChatConfig,
    ContextConfig,
    DispatchConfig,
    EnrichmentConfig,
    GenerationConfig,
    LLMConfig,
    LoggingConfig,
    PersonaConfig,
    SchedulerConfig,
    SlackConfig,
    StorageConfig,
    ToolsConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "AgentConfig",
    # Top-level configs
    "ChatConfig",
    "LLMConfig",
    "PersonaConfig",
    "SchedulerConfig",
    "ContextConfig",
    "GenerationConfig",
    "DispatchConfig",
    "ToolsConfig",
    "EnrichmentConfig",
    "StorageConfig",
    "BackfillConfig",
    "LoggingConfig",
    # Provider-specific configs
    "SlackConfig",
    "AnthropicConfig",
]
