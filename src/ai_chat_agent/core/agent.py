"""Main Agent orchestrator that coordinates all components.

This module implements the Agent class that serves as the main entry point
for the AI Chat Agent. It:
- Manages adapter lifecycle (connect, backfill, disconnect)
- Records inbound messages and routes them to the evaluation scheduler
- Generates, sends, and records replies for dispatched jobs
- Handles graceful shutdown on signals (SIGTERM, SIGINT)
"""

from __future__ import annotations

import asyncio
import contextlib
import random
import signal
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from ai_chat_agent.config.schema import AgentConfig
from ai_chat_agent.core.addressing import is_direct_trigger
from ai_chat_agent.core.decision import DecisionOracle
from ai_chat_agent.core.dispatch import DispatchQueue
from ai_chat_agent.core.enrichment import EnrichmentService
from ai_chat_agent.core.generation import GenerationEngine
from ai_chat_agent.core.scheduler import EvaluationScheduler
from ai_chat_agent.core.throttle import DominanceThrottle
from ai_chat_agent.core.tools import ToolExecutor
from ai_chat_agent.core.windower import ContextWindower
from ai_chat_agent.models.job import AutonomousJob, DirectJob, DispatchJob
from ai_chat_agent.models.message import Message
from ai_chat_agent.utils.async_helpers import AgentError, StorageError, TaskGroup

if TYPE_CHECKING:
    from ai_chat_agent.adapters.llm.anthropic import AnthropicAdapter
    from ai_chat_agent.core.generation import GenerationResult
    from ai_chat_agent.interfaces.chat import ChatProvider
    from ai_chat_agent.interfaces.llm import ImageDescriber, TextGenerator
    from ai_chat_agent.interfaces.services import UrlSummarizer
    from ai_chat_agent.interfaces.store import MessageStore

log = structlog.get_logger()

# Author id recorded for agent messages before the transport reports one
FALLBACK_AGENT_ID = "agent"


class StartupError(AgentError):
    """Failed to start the agent."""


class Agent:
    """Main orchestrator that coordinates all components.

    Responsibilities:
    - Store every inbound message and hand it to the evaluation scheduler
    - Kick off enrichment of stored messages in the background
    - Process dispatched jobs: build context, generate, send, record
    - Handle graceful startup and shutdown

    Example:
        agent = Agent(config, chat, generator, store)
        await agent.start()  # Blocks until shutdown signal
    """

    DEFAULT_SHUTDOWN_TIMEOUT = 30

    def __init__(
        self,
        config: AgentConfig,
        chat: ChatProvider,
        generator: TextGenerator,
        store: MessageStore,
        tools: ToolExecutor | None = None,
        describer: ImageDescriber | None = None,
        summarizer: UrlSummarizer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the Agent.

        Args:
            config: Application configuration
            chat: Chat provider adapter
            generator: Text generation adapter used for decisions and replies
            store: Message store
            tools: Tool executor for the generation loop
            describer: Image describer for enrichment
            summarizer: URL summarizer for enrichment
            rng: Random source for the dominance throttle
        """
        self._config = config
        self._chat = chat
        self._generator = generator
        self._store = store
        persona = config.persona
        llm = config.llm.anthropic

        self._windower = ContextWindower(
            store, config.context, fetch_limit=config.scheduler.history_fetch_limit
        )
        self._oracle = DecisionOracle(
            generator,
            store,
            persona_name=persona.name,
            soft_ratio_ceiling=config.scheduler.soft_ratio_ceiling,
            max_tokens=llm.decision_max_tokens if llm else 300,
            temperature=llm.decision_temperature if llm else 0.7,
        )
        self._engine = GenerationEngine(
            generator,
            tools or ToolExecutor(),
            persona_prompt=persona.system_prompt,
            persona_name=persona.name,
            fallback_message=persona.fallback_message,
            max_tool_iterations=config.generation.max_tool_iterations,
            reply_character_limit=config.generation.reply_character_limit,
            preview_chars=config.generation.tool_preview_chars,
        )
        self._queue = DispatchQueue(
            self.process_job,
            self.apologize,
            inter_job_delay=config.dispatch.inter_job_delay_ms / 1000,
        )
        self._scheduler = EvaluationScheduler(
            config.scheduler,
            self._windower,
            DominanceThrottle(config.scheduler, rng),
            self._oracle,
            self._queue.enqueue,
            persona_names=persona.names,
        )
        self._enrichment = EnrichmentService(store, config.enrichment, describer, summarizer)
        self._background = TaskGroup()

        # Lifecycle state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

        # Statistics
        self._messages_received = 0
        self._direct_replies = 0
        self._autonomous_replies = 0

    @property
    def is_running(self) -> bool:
        """Return True if the agent is currently running."""
        return self._running

    @property
    def scheduler(self) -> EvaluationScheduler:
        return self._scheduler

    @property
    def queue(self) -> DispatchQueue:
        return self._queue

    @property
    def enrichment(self) -> EnrichmentService:
        return self._enrichment

    @property
    def stats(self) -> dict[str, int]:
        """Return processing statistics."""
        return {
            "messages_received": self._messages_received,
            "direct_replies": self._direct_replies,
            "autonomous_replies": self._autonomous_replies,
            "pending_timers": self._scheduler.pending_timers,
            "background_tasks": len(self._background),
            **{f"dispatch_{key}": value for key, value in self._queue.stats.items()},
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the agent and process messages until shutdown.

        This method:
        1. Connects to the chat provider
        2. Sets up signal handlers
        3. Backfills recent history and prunes old messages
        4. Listens for messages until shutdown is triggered

        Raises:
            StartupError: If startup fails
        """
        if self._running:
            log.warning("agent_already_running")
            return

        log.info(
            "agent_starting",
            config=self._config.model_dump(include={"scheduler", "context", "generation"}),
        )

        try:
            self._shutdown_event = asyncio.Event()

            log.info("connecting_to_chat_provider")
            await self._chat.connect()
            log.info("chat_provider_connected", agent_user_id=self._chat.agent_user_id)

            self._setup_signal_handlers()
            self._running = True

            await self.backfill()
            self.prune()
            log.info("agent_started")

            await self._listen_for_messages()

        except Exception as e:
            log.exception("agent_startup_failed", error=str(e))
            await self._cleanup()
            self._running = False
            raise StartupError(f"Failed to start agent: {e}") from e

    async def stop(self) -> None:
        """Gracefully stop the agent.

        Cancels every pending evaluation, stops the dispatch queue after the
        job in flight, then disconnects from the chat provider.
        """
        if not self._running:
            log.warning("agent_not_running")
            return

        log.info("agent_stopping", **self.stats)

        if self._shutdown_event:
            self._shutdown_event.set()

        await self.shutdown()
        await self._cleanup()

        self._running = False
        log.info("agent_stopped", **self.stats)

    async def shutdown(self) -> None:
        """Cancel all live timers and drain no further jobs."""
        await self._scheduler.shutdown()
        await self._queue.close(timeout=self.DEFAULT_SHUTDOWN_TIMEOUT)
        await self._background.cancel_all()

    # ------------------------------------------------------------------
    # Inbound path
    # ------------------------------------------------------------------

    async def handle_inbound_message(self, message: Message) -> None:
        """Record an inbound message and schedule whatever follows from it.

        Args:
            message: Message delivered by the transport
        """
        agent_user_id = self._chat.agent_user_id
        if message.is_agent or (agent_user_id and message.author_id == agent_user_id):
            self._store_message(replace(message, is_agent=True))
            return

        self._messages_received += 1
        self._store_message(message)

        if self._enrichment.needs_enrichment(message):
            self._background.spawn(
                self._enrichment.enrich(message),
                name=f"enrich:{message.message_id}",
            )

        replied_to = self._lookup(message.reply_to_id) if message.reply_to_id else None
        direct = is_direct_trigger(message, agent_user_id, replied_to)

        log.debug(
            "message_received",
            channel_id=message.channel_id,
            message_id=message.message_id,
            direct=direct,
        )
        self._scheduler.on_message(message, direct=direct)

    async def _listen_for_messages(self) -> None:
        log.info("starting_message_listener")

        try:
            async for message in self._chat.listen():
                if self._shutdown_event and self._shutdown_event.is_set():
                    log.info("shutdown_signal_received_stopping_listener")
                    break
                try:
                    await self.handle_inbound_message(message)
                except Exception as e:
                    log.exception(
                        "message_handling_error",
                        message_id=message.message_id,
                        error=str(e),
                    )
        except asyncio.CancelledError:
            log.info("message_listener_cancelled")

    # ------------------------------------------------------------------
    # Dispatch path
    # ------------------------------------------------------------------

    async def process_job(self, job: DispatchJob) -> None:
        """Generate, send, and record the reply for one job.

        Raises:
            Any error from generation or sending; the dispatch queue
            isolates it and apologizes for direct jobs.
        """
        channel_id = job.channel_id
        window = self._windower.window(channel_id)
        reply_to: Message | None = None

        if isinstance(job, DirectJob):
            reply_to = job.message
            if all(m.message_id != reply_to.message_id for m in window):
                window.append(reply_to)
        else:
            reply_to = self._reply_target(job, window)

        result = await self._engine.generate(
            window,
            agent_user_id=self._chat.agent_user_id,
            reply_to=reply_to,
        )

        sent_id = await self._chat.send_message(
            channel_id,
            result.text,
            reply_to=reply_to.message_id if reply_to else None,
        )

        if isinstance(job, DirectJob):
            self._direct_replies += 1
        else:
            self._autonomous_replies += 1

        log.info(
            "reply_sent",
            channel_id=channel_id,
            message_id=sent_id,
            job_type=job.response_type.value,
            reply_to=reply_to.message_id if reply_to else None,
            oracle_calls=result.oracle_calls,
            tool_iterations=result.tool_iterations,
            chars=len(result.text),
        )

        self._record_reply(job, sent_id, result, reply_to)
        self._scheduler.cancel(channel_id)

    async def apologize(self, job: DirectJob) -> None:
        """Send the in-character apology for a failed direct job."""
        await self._chat.send_message(
            job.channel_id,
            self._config.persona.apology_message,
            reply_to=job.message.message_id,
        )

    def _reply_target(self, job: AutonomousJob, window: list[Message]) -> Message | None:
        """Resolve the decision's reply target; stale targets become standalone posts."""
        target_id = job.reply_to_message_id
        if not target_id:
            return None
        for message in window:
            if message.message_id == target_id:
                return message
        log.info(
            "reply_target_outside_window",
            channel_id=job.channel_id,
            target=target_id,
            decision_id=job.decision_id,
        )
        return None

    def _record_reply(
        self,
        job: DispatchJob,
        sent_id: str,
        result: GenerationResult,
        reply_to: Message | None,
    ) -> None:
        """Write the sent reply and its audit trail; failures are logged only."""
        agent_message = Message(
            message_id=sent_id,
            channel_id=job.channel_id,
            author_id=self._chat.agent_user_id or FALLBACK_AGENT_ID,
            author_name=self._config.persona.name,
            text=result.text,
            created_at=datetime.now(UTC),
            is_agent=True,
            reply_to_id=reply_to.message_id if reply_to else None,
        )
        self._store_message(agent_message)

        decision_id = job.decision_id if isinstance(job, AutonomousJob) else None
        try:
            response_id = self._store.log_response(
                channel_id=job.channel_id,
                message_id=sent_id,
                response_type=job.response_type,
                content=result.text,
                trigger_message_id=job.message.message_id if isinstance(job, DirectJob) else None,
                decision_id=decision_id,
                tool_iterations=result.tool_iterations,
            )
            self._store.store_prompt(
                prompt_type="response",
                system_prompt=result.system_prompt,
                turns=[dict(turn) for turn in result.turns],
                model=self._engine.model_name,
                response_id=response_id,
            )
            if decision_id is not None:
                self._store.mark_decision_sent(decision_id)
        except StorageError as e:
            log.error("reply_record_failed", channel_id=job.channel_id, error=str(e))

    # ------------------------------------------------------------------
    # Store helpers and maintenance
    # ------------------------------------------------------------------

    def _store_message(self, message: Message) -> None:
        try:
            self._store.upsert_message(message)
        except StorageError as e:
            log.error("message_store_failed", message_id=message.message_id, error=str(e))

    def _lookup(self, message_id: str) -> Message | None:
        try:
            return self._store.get_message(message_id)
        except StorageError as e:
            log.warning("message_lookup_failed", message_id=message_id, error=str(e))
            return None

    async def backfill(self) -> int:
        """Store recent history of every monitored channel.

        Messages already stored are skipped. Channels are processed one at a
        time and a failing channel does not stop the others.

        Returns:
            Number of newly stored messages
        """
        if not self._config.backfill.enabled:
            return 0

        stored = 0
        for channel_id in await self._chat.monitored_channels():
            try:
                recent = await self._chat.fetch_recent(
                    channel_id, self._config.backfill.message_limit
                )
                for message in reversed(recent):
                    if self._store.message_exists(message.message_id):
                        continue
                    self._store.upsert_message(replace(message, is_backfilled=True))
                    stored += 1
            except Exception as e:
                log.warning("backfill_channel_failed", channel_id=channel_id, error=str(e))
                continue

        log.info("backfill_complete", messages=stored)
        return stored

    def prune(self) -> int:
        """Trim every channel to the configured number of stored messages."""
        removed = 0
        keep = self._config.storage.max_messages_per_channel
        try:
            channel_ids = self._store.list_channels()
        except StorageError as e:
            log.warning("prune_failed", error=str(e))
            return 0
        for channel_id in channel_ids:
            try:
                removed += self._store.prune_messages(channel_id, keep)
            except StorageError as e:
                log.warning("prune_failed", channel_id=channel_id, error=str(e))
        if removed:
            log.info("messages_pruned", removed=removed)
        return removed

    async def _cleanup(self) -> None:
        log.debug("cleaning_up_resources")
        try:
            await self._chat.disconnect()
            log.info("chat_provider_disconnected")
        except Exception as e:
            log.warning("chat_disconnect_error", error=str(e))

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(
                    sig,
                    lambda s: asyncio.create_task(self._handle_signal(s)),
                    sig,
                )
                log.debug("signal_handler_registered", signal=sig.name)

    async def _handle_signal(self, sig: signal.Signals) -> None:
        log.info("received_signal", signal=sig.name)
        await self.stop()


async def create_agent(config: AgentConfig) -> Agent:
    """Factory function to create an Agent with all dependencies.

    Args:
        config: Application configuration

    Returns:
        Configured Agent instance

    Raises:
        ValueError: If configuration is invalid
        StartupError: If the message store cannot be initialized
    """
    chat = await _create_chat_adapter(config)
    generator = await _create_llm_adapter(config)
    store = _create_store(config)
    tools = _create_tool_executor(config)

    summarizer = None
    if config.enrichment.url_summaries_enabled and not config.tools.kagi_api_key:
        log.info("url_summaries_disabled_no_api_key")
    elif config.enrichment.url_summaries_enabled:
        from ai_chat_agent.adapters.web.kagi import KagiClient

        summarizer = KagiClient(
            config.tools.kagi_api_key,
            timeout=config.tools.search_timeout,
            summary_type=config.enrichment.summary_type,
            summary_engine=config.enrichment.summary_engine,
        )

    describer = generator if config.enrichment.vision_enabled else None

    return Agent(
        config,
        chat,
        generator,
        store,
        tools=tools,
        describer=describer,
        summarizer=summarizer,
    )


async def _create_chat_adapter(config: AgentConfig) -> ChatProvider:
    """Create a chat adapter based on configuration.

    Raises:
        ValueError: If provider is not supported
    """
    provider = config.chat.provider

    if provider == "slack":
        if not config.chat.slack:
            raise ValueError("Slack configuration required when provider is 'slack'")
        from ai_chat_agent.adapters.chat.slack import SlackAdapter

        return SlackAdapter(config.chat.slack)

    raise ValueError(f"Unsupported chat provider: {provider}")


async def _create_llm_adapter(config: AgentConfig) -> AnthropicAdapter:
    """Create the text generation adapter based on configuration.

    Raises:
        ValueError: If provider is not supported
    """
    provider = config.llm.provider

    if provider == "anthropic":
        if not config.llm.anthropic:
            raise ValueError("Anthropic configuration required when provider is 'anthropic'")
        from ai_chat_agent.adapters.llm.anthropic import AnthropicAdapter

        image_headers = None
        if config.chat.slack is not None:
            # Slack file URLs need the bot token
            image_headers = {"Authorization": f"Bearer {config.chat.slack.bot_token}"}
        return AnthropicAdapter(config.llm.anthropic, image_headers=image_headers)

    raise ValueError(f"Unsupported LLM provider: {provider}")


def _create_store(config: AgentConfig) -> MessageStore:
    from ai_chat_agent.adapters.storage.sqlite import SqlMessageStore

    try:
        return SqlMessageStore(config.storage.url, echo=config.storage.echo)
    except StorageError as e:
        raise StartupError(f"Cannot initialize message store: {e}") from e


def _create_tool_executor(config: AgentConfig) -> ToolExecutor:
    from ai_chat_agent.adapters.web.fetch import PageFetcher
    from ai_chat_agent.adapters.web.python import PythonCodeRunner

    tools = config.tools
    searcher = None
    if tools.kagi_api_key:
        from ai_chat_agent.adapters.web.kagi import KagiClient

        searcher = KagiClient(tools.kagi_api_key, timeout=tools.search_timeout)

    runner = None
    if tools.python_enabled:
        runner = PythonCodeRunner(python_path=tools.python_executable, timeout=tools.python_timeout)

    return ToolExecutor(
        code_runner=runner,
        searcher=searcher,
        fetcher=PageFetcher(timeout=tools.fetch_timeout, max_chars=tools.max_fetch_chars),
        timeout=tools.tool_timeout,
    )
