"""Protocol definitions for pluggable adapters."""

from .chat import ChatProvider
from .llm import ImageDescriber, ResponseFormat, TextGenerator, Turn
from .services import CodeRunner, UrlSummarizer, WebFetcher, WebSearcher
from .store import MessageStore

__all__ = [
    "ChatProvider",
    "CodeRunner",
    "ImageDescriber",
    "MessageStore",
    "ResponseFormat",
    "TextGenerator",
    "Turn",
    "UrlSummarizer",
    "WebFetcher",
    "WebSearcher",
]
