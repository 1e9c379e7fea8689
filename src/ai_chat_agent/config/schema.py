"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = """\
You are Isaac, a sarcastic, cynical and highly intelligent robot who hangs out \
in group chat channels making dry comments. You answer tersely, in one or two \
sentences, and never repeat back what was said to you. You rarely use emojis \
and never describe your own actions. Stay in character and keep replies short."""

DEFAULT_APOLOGY = (
    "(OOC: Sorry, I appear to be having connectivity issues, please try your message again.)"
)

DEFAULT_FALLBACK = "I had a thought, but it seems to have escaped me."


class SlackConfig(BaseModel):
    """Slack-specific configuration."""

    bot_token: str
    app_token: str
    channels: list[str] = []

    @field_validator("bot_token")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        """Validate Slack bot token format."""
        if not v.startswith("xoxb-"):
            raise ValueError("Bot token must start with xoxb-")
        return v

    @field_validator("app_token")
    @classmethod
    def validate_app_token(cls, v: str) -> str:
        """Validate Slack app token format."""
        if not v.startswith("xapp-"):
            raise ValueError("App token must start with xapp-")
        return v


class AnthropicConfig(BaseModel):
    """Anthropic-specific configuration."""

    api_key: str
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = Field(1024, ge=1)
    temperature: float = Field(0.8, ge=0.0, le=1.0)
    decision_max_tokens: int = Field(300, ge=1)
    decision_temperature: float = Field(0.7, ge=0.0, le=1.0)
    vision_max_tokens: int = Field(300, ge=1)
    timeout: float = Field(60.0, gt=0)


class PersonaConfig(BaseModel):
    """Who the agent is and how it talks."""

    name: str = "Isaac"
    aliases: list[str] = []
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    apology_message: str = DEFAULT_APOLOGY
    fallback_message: str = DEFAULT_FALLBACK

    @property
    def names(self) -> list[str]:
        """Every name the agent answers to."""
        return [self.name, *self.aliases]


class SchedulerConfig(BaseModel):
    """Debounce and dominance-throttle configuration."""

    debounce_seconds: float = Field(30.0, gt=0)
    mention_debounce_seconds: float = Field(8.0, gt=0)
    hard_ratio_ceiling: float = Field(0.40, ge=0.0, le=1.0)
    soft_ratio_ceiling: float = Field(0.15, ge=0.0, le=1.0)
    max_skip_probability: float = Field(0.9, ge=0.0, le=1.0)
    dominance_window_messages: int = Field(20, ge=1)
    dominance_window_minutes: float = Field(30.0, gt=0)
    history_fetch_limit: int = Field(50, ge=1, le=1000)

    @model_validator(mode="after")
    def check_ordering(self) -> "SchedulerConfig":
        """Ensure the soft ceiling and mention debounce are the lower bounds."""
        if self.soft_ratio_ceiling >= self.hard_ratio_ceiling:
            raise ValueError("soft_ratio_ceiling must be lower than hard_ratio_ceiling")
        if self.mention_debounce_seconds > self.debounce_seconds:
            raise ValueError("mention_debounce_seconds must not exceed debounce_seconds")
        return self


class ContextConfig(BaseModel):
    """Context window configuration."""

    max_age_minutes: float = Field(30.0, gt=0)
    max_gap_minutes: float = Field(30.0, gt=0)
    context_before: int = Field(10, ge=0)


class GenerationConfig(BaseModel):
    """Reply generation configuration."""

    max_tool_iterations: int = Field(10, ge=0, le=50)
    reply_character_limit: int = Field(2000, ge=1)
    tool_preview_chars: int = Field(500, ge=20)


class DispatchConfig(BaseModel):
    """Dispatch queue pacing."""

    inter_job_delay_ms: int = Field(1000, ge=0)


class ToolsConfig(BaseModel):
    """Configuration for tools available during generation."""

    python_enabled: bool = True
    python_executable: str | None = None
    python_timeout: float = Field(5.0, gt=0, le=60)
    fetch_timeout: float = Field(10.0, gt=0, le=120)
    max_fetch_chars: int = Field(50000, ge=1000)
    search_timeout: float = Field(30.0, gt=0, le=120)
    tool_timeout: float = Field(90.0, gt=0, le=600)
    kagi_api_key: str | None = None


class EnrichmentConfig(BaseModel):
    """Image description and link summary configuration."""

    vision_enabled: bool = False
    url_summaries_enabled: bool = True
    max_urls_per_message: int = Field(3, ge=0, le=20)
    skip_domains: list[str] = [
        "cdn.discordapp.com",
        "media.discordapp.net",
        "tenor.com",
        "tenor.co",
        "giphy.com",
        "files.slack.com",
    ]
    summary_type: Literal["summary", "takeaway"] = "takeaway"
    summary_engine: str = "cecil"
    cache_size: int = Field(1024, ge=1)
    cache_ttl: int = Field(3600, ge=0)


class StorageConfig(BaseModel):
    """Message store configuration."""

    url: str = "sqlite:///data/ai-chat-agent.db"
    max_messages_per_channel: int = Field(1000, ge=10)
    echo: bool = False


class BackfillConfig(BaseModel):
    """Startup backfill configuration."""

    enabled: bool = True
    message_limit: int = Field(20, ge=1, le=200)


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("/var/log/ai-chat-agent/agent.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    file: FileLoggingConfig = FileLoggingConfig()


class ChatConfig(BaseModel):
    """Chat provider configuration."""

    provider: Literal["slack"]
    slack: SlackConfig | None = None


class LLMConfig(BaseModel):
    """LLM provider configuration."""

    provider: Literal["anthropic"]
    anthropic: AnthropicConfig | None = None


class AgentConfig(BaseSettings):
    """Root configuration for AI Chat Agent."""

    chat: ChatConfig
    llm: LLMConfig
    persona: PersonaConfig = PersonaConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    context: ContextConfig = ContextConfig()
    generation: GenerationConfig = GenerationConfig()
    dispatch: DispatchConfig = DispatchConfig()
    tools: ToolsConfig = ToolsConfig()
    enrichment: EnrichmentConfig = EnrichmentConfig()
    storage: StorageConfig = StorageConfig()
    backfill: BackfillConfig = BackfillConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
    )
