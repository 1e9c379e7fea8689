"""Slack chat adapter using slack-bolt.

This module implements the ChatProvider protocol for Slack using the
slack-bolt library with Socket Mode for real-time events.

Features:
- Socket Mode connection for real-time message delivery
- Channel filtering based on configuration
- Thread replies mapped onto reply targets
- Image attachments exposed for enrichment
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from cachetools import TTLCache
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.app.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from ...config.schema import SlackConfig
from ...models.message import Message

if TYPE_CHECKING:
    from slack_bolt.context.async_context import AsyncBoltContext


log = structlog.get_logger()

# Subtypes that do not represent a new human message
IGNORED_SUBTYPES = frozenset(
    {
        "message_changed",
        "message_deleted",
        "channel_join",
        "channel_leave",
        "channel_topic",
        "channel_purpose",
        "channel_name",
    }
)


class SlackAdapterError(Exception):
    """Base exception for Slack adapter errors."""


class ConnectionError(SlackAdapterError):
    """Raised when connection to Slack fails."""


class SendError(SlackAdapterError):
    """Raised when sending a message fails."""


def _parse_ts(ts: str) -> datetime:
    try:
        return datetime.fromtimestamp(float(ts), tz=UTC)
    except (ValueError, TypeError):
        return datetime.now(UTC)


def _image_urls(event: dict[str, Any]) -> tuple[str, ...]:
    files: list[dict[str, Any]] = event.get("files") or []
    return tuple(
        f["url_private"]
        for f in files
        if str(f.get("mimetype", "")).startswith("image/") and f.get("url_private")
    )


class SlackAdapter:
    """Slack chat adapter implementing the ChatProvider protocol.

    Example:
        config = SlackConfig(
            bot_token="xoxb-...",
            app_token="xapp-...",
            channels=["#general"],
        )
        adapter = SlackAdapter(config)

        await adapter.connect()
        async for message in adapter.listen():
            print(f"Received: {message.text}")
        await adapter.disconnect()
    """

    def __init__(self, config: SlackConfig) -> None:
        """Initialize the Slack adapter.

        Args:
            config: Slack-specific configuration.
        """
        self._config = config
        self._connected = False

        self._app = AsyncApp(token=config.bot_token)
        self._client: AsyncWebClient = self._app.client
        self._socket_handler: AsyncSocketModeHandler | None = None

        self._message_queue: asyncio.Queue[Message] = asyncio.Queue()
        self._monitored_channel_ids: set[str] = set()
        self._disconnect_event = asyncio.Event()

        self._agent_user_id: str | None = None
        self._agent_bot_id: str | None = None

        self._user_names: TTLCache[str, str] = TTLCache(maxsize=1000, ttl=3600)
        # Message ts -> thread root ts, so replies always target the root
        self._thread_roots: TTLCache[str, str] = TTLCache(maxsize=5000, ttl=86400)

        self._register_handlers()

    @property
    def agent_user_id(self) -> str | None:
        return self._agent_user_id

    def _register_handlers(self) -> None:
        """Register event handlers with the Slack app."""

        @self._app.event("message")
        async def handle_message(
            event: dict[str, Any],
            context: AsyncBoltContext,
        ) -> None:
            await self._process_message_event(event)

    def _is_own(self, event: dict[str, Any]) -> bool:
        if self._agent_user_id and event.get("user") == self._agent_user_id:
            return True
        return bool(self._agent_bot_id) and event.get("bot_id") == self._agent_bot_id

    async def _to_message(self, event: dict[str, Any], channel_id: str) -> Message:
        ts = event.get("ts", "")
        thread_ts = event.get("thread_ts")
        reply_to = thread_ts if thread_ts and thread_ts != ts else None
        if reply_to:
            self._thread_roots[ts] = reply_to

        is_agent = self._is_own(event)
        user_id = event.get("user") or event.get("bot_id") or ""
        if event.get("bot_id") and not event.get("user"):
            user_name = event.get("username") or event.get("bot_profile", {}).get("name") or user_id
        else:
            user_name = await self._get_user_name(user_id)

        return Message(
            message_id=ts,
            channel_id=channel_id,
            author_id=user_id,
            author_name=user_name,
            text=event.get("text", ""),
            created_at=_parse_ts(ts),
            is_agent=is_agent,
            reply_to_id=reply_to,
            image_urls=_image_urls(event),
        )

    async def _process_message_event(self, event: dict[str, Any]) -> None:
        """Convert a message event and queue it if relevant."""
        if event.get("subtype") in IGNORED_SUBTYPES:
            return

        if self._is_own(event):
            return

        channel_id = event.get("channel", "")
        if self._monitored_channel_ids and channel_id not in self._monitored_channel_ids:
            return

        message = await self._to_message(event, channel_id)
        await self._message_queue.put(message)
        log.debug(
            "message_queued",
            channel_id=channel_id,
            message_id=message.message_id,
            user=message.author_name,
        )

    async def _get_user_name(self, user_id: str) -> str:
        """Get display name for a user, falling back to the id."""
        if not user_id:
            return "unknown"

        cached = self._user_names.get(user_id)
        if cached is not None:
            return cached

        try:
            result = await self._client.users_info(user=user_id)
            user: dict[str, Any] = result.get("user", {})
            name = (
                user.get("profile", {}).get("display_name")
                or user.get("profile", {}).get("real_name")
                or user.get("name")
                or user_id
            )
        except SlackApiError:
            return user_id

        self._user_names[user_id] = name
        return name

    async def _resolve_channel_ids(self) -> None:
        """Resolve configured channel names to IDs."""
        self._monitored_channel_ids = set()
        if not self._config.channels:
            return

        try:
            result = await self._client.conversations_list(
                types="public_channel,private_channel", limit=1000
            )
        except SlackApiError as e:
            log.warning("channel_resolution_failed", error=str(e))
            return

        channels_list: list[dict[str, Any]] = result.get("channels", [])
        for channel in self._config.channels:
            channel_name = channel.lstrip("#")
            for ch_dict in channels_list:
                if ch_dict.get("name") == channel_name or ch_dict.get("id") == channel:
                    self._monitored_channel_ids.add(ch_dict["id"])
                    log.debug("channel_resolved", name=channel, id=ch_dict["id"])
                    break
            else:
                log.warning("channel_not_found", channel=channel)

    async def connect(self) -> None:
        """Establish connection to Slack using Socket Mode.

        Raises:
            ConnectionError: If connection fails.
        """
        if self._connected:
            return

        try:
            auth = await self._client.auth_test()
            self._agent_user_id = auth.get("user_id")
            self._agent_bot_id = auth.get("bot_id")

            await self._resolve_channel_ids()

            self._socket_handler = AsyncSocketModeHandler(
                app=self._app,
                app_token=self._config.app_token,
            )
            await self._socket_handler.connect_async()  # type: ignore[no-untyped-call]

            self._connected = True
            self._disconnect_event.clear()

            log.info(
                "slack_connected",
                agent_user_id=self._agent_user_id,
                monitored_channels=len(self._monitored_channel_ids),
            )

        except Exception as e:
            log.error("slack_connection_failed", error=str(e))
            raise ConnectionError(f"Failed to connect to Slack: {e}") from e

    async def disconnect(self) -> None:
        """Gracefully close the Slack connection."""
        if not self._connected:
            return

        self._disconnect_event.set()

        if self._socket_handler:
            try:
                await self._socket_handler.close_async()  # type: ignore[no-untyped-call]
            except Exception as e:
                log.warning("disconnect_error", error=str(e))

        self._connected = False
        log.info("slack_disconnected")

    async def listen(self) -> AsyncIterator[Message]:
        """Yield incoming messages from monitored channels.

        Yields:
            Message: Each incoming message from monitored channels.
        """
        if not self._connected:
            raise SlackAdapterError("Not connected. Call connect() first.")

        while not self._disconnect_event.is_set():
            try:
                message = await asyncio.wait_for(
                    self._message_queue.get(),
                    timeout=1.0,
                )
                yield message
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    async def send_message(
        self,
        channel_id: str,
        text: str,
        reply_to: str | None = None,
    ) -> str:
        """Post a message, threading it under ``reply_to`` when given.

        Returns:
            Message ID (ts) of the sent message.

        Raises:
            SendError: If message delivery fails.
        """
        kwargs: dict[str, Any] = {
            "channel": channel_id,
            "text": text,
        }
        if reply_to:
            kwargs["thread_ts"] = self._thread_roots.get(reply_to, reply_to)

        try:
            result = await self._client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            log.error("send_message_failed", channel_id=channel_id, error=str(e))
            raise SendError(f"Failed to send message: {e}") from e

        message_ts: str = result.get("ts", "")
        if reply_to:
            self._thread_roots[message_ts] = kwargs["thread_ts"]

        log.debug(
            "message_sent",
            channel_id=channel_id,
            message_ts=message_ts,
            thread_ts=kwargs.get("thread_ts"),
        )
        return message_ts

    async def fetch_recent(self, channel_id: str, limit: int) -> list[Message]:
        """Fetch recent top-level channel messages, newest first."""
        try:
            result = await self._client.conversations_history(channel=channel_id, limit=limit)
        except SlackApiError as e:
            log.warning("fetch_recent_failed", channel_id=channel_id, error=str(e))
            return []

        messages = []
        for event in result.get("messages", []):
            if event.get("subtype") in IGNORED_SUBTYPES:
                continue
            messages.append(await self._to_message(event, channel_id))
        return messages

    async def monitored_channels(self) -> list[str]:
        """Configured channels, or every channel the bot is a member of."""
        if self._monitored_channel_ids:
            return sorted(self._monitored_channel_ids)

        try:
            result = await self._client.users_conversations(
                types="public_channel,private_channel", limit=1000
            )
        except SlackApiError as e:
            log.warning("list_channels_failed", error=str(e))
            return []
        return [ch["id"] for ch in result.get("channels", []) if ch.get("id")]
