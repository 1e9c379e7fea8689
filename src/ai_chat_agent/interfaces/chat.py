"""Abstract interface for chat platform integrations."""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.message import Message


class ChatProvider(Protocol):
    """Abstract interface for chat platform integrations.

    This protocol defines the contract that chat transport adapters
    (Slack, Discord, etc.) must implement.
    """

    @property
    def agent_user_id(self) -> str | None:
        """The platform user id of the agent itself, known after connect()."""
        ...

    async def connect(self) -> None:
        """
        Establish connection to the chat platform.

        Raises:
            ConnectionError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """
        Gracefully close the connection.
        """
        ...

    def listen(self) -> AsyncIterator[Message]:
        """
        Yield incoming messages from monitored channels.

        Messages authored by the agent itself are not yielded; the agent
        records its own messages when it sends them.

        Yields:
            Message: Each incoming message from monitored channels

        Example:
            async for message in provider.listen():
                await agent.handle_inbound_message(message)
        """
        ...

    async def send_message(
        self,
        channel_id: str,
        text: str,
        reply_to: str | None = None,
    ) -> str:
        """
        Post a message to a channel.

        Args:
            channel_id: Target channel identifier
            text: Message text
            reply_to: Message to reply to, or None for a standalone post

        Returns:
            Message ID of the sent message

        Raises:
            SendError: If message delivery fails
        """
        ...

    async def fetch_recent(self, channel_id: str, limit: int) -> list[Message]:
        """
        Fetch the most recent messages of a channel, newest first.

        Only used for startup backfill, never on the hot path.

        Args:
            channel_id: Channel to read
            limit: Maximum number of messages

        Returns:
            Messages ordered newest first
        """
        ...

    async def monitored_channels(self) -> list[str]:
        """
        Return the ids of the channels the agent participates in.
        """
        ...
