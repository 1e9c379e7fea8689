"""Concrete implementations of provider interfaces."""

from .chat.slack import SlackAdapter
from .llm.anthropic import AnthropicAdapter
from .storage.sqlite import SqlMessageStore
from .web.fetch import PageFetcher
from .web.kagi import KagiClient
from .web.python import PythonCodeRunner

__all__ = [
    "AnthropicAdapter",
    "KagiClient",
    "PageFetcher",
    "PythonCodeRunner",
    "SlackAdapter",
    "SqlMessageStore",
]
