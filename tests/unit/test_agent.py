"""Tests for Agent orchestrator functionality."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ai_chat_agent.adapters.storage.sqlite import SqlMessageStore
from ai_chat_agent.config.schema import AgentConfig
from ai_chat_agent.core.agent import Agent, StartupError, create_agent
from ai_chat_agent.models.decision import Decision
from ai_chat_agent.models.job import AutonomousJob, DirectJob
from ai_chat_agent.models.message import Message
from ai_chat_agent.utils.async_helpers import OracleError, StorageError

MessageFactory = Callable[..., Message]
GeneratorFactory = Callable[..., Any]

AGENT_ID = "UAGENT"


def reply(message: str) -> str:
    return f'{{"message": "{message}"}}'


@pytest.fixture
def chat() -> MagicMock:
    """Chat provider double that hands out sequential reply ids."""
    mock = MagicMock()
    mock.agent_user_id = AGENT_ID
    mock.connect = AsyncMock()
    mock.disconnect = AsyncMock()
    mock.send_message = AsyncMock(side_effect=[f"r{i}" for i in range(1, 10)])
    mock.monitored_channels = AsyncMock(return_value=["C1"])
    mock.fetch_recent = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def fresh(make_message: MessageFactory) -> MessageFactory:
    """Messages stamped with the current time so they fall inside the window."""

    def _make(*args: Any, **kwargs: Any) -> Message:
        kwargs.setdefault("created_at", datetime.now(UTC))
        return make_message(*args, **kwargs)

    return _make


def _agent(
    config: AgentConfig, chat: MagicMock, generator: Any, store: SqlMessageStore
) -> Agent:
    return Agent(config, chat, generator, store)


class TestProcessJob:
    """Tests for generating and recording replies."""

    async def test_direct_job_replies_to_trigger(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a direct job answers the triggering message and records it."""
        trigger = fresh(f"<@{AGENT_ID}> what time is it?")
        store.upsert_message(trigger)
        agent = _agent(agent_config, chat, make_generator([reply("Time to get a watch.")]), store)

        await agent.process_job(DirectJob(message=trigger))

        chat.send_message.assert_awaited_once_with(
            "C1", "Time to get a watch.", reply_to=trigger.message_id
        )
        sent = store.get_message("r1")
        assert sent is not None
        assert sent.is_agent is True
        assert sent.author_id == AGENT_ID
        assert sent.reply_to_id == trigger.message_id
        stats = store.get_stats()
        assert stats["responses_direct"] == 1
        assert stats["prompts"] == 1
        assert agent.stats["direct_replies"] == 1

    async def test_direct_trigger_added_when_not_in_window(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that the trigger reaches the prompt even if the store lacks it."""
        trigger = fresh("are you there?", message_id="m-missing")
        generator = make_generator([reply("Sadly.")])
        agent = _agent(agent_config, chat, generator, store)

        await agent.process_job(DirectJob(message=trigger))

        prompt_text = "\n".join(t["content"] for t in generator.calls[0]["turns"])
        assert "are you there?" in prompt_text

    async def test_autonomous_job_uses_target_in_window(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that an autonomous reply threads onto its target and marks the decision."""
        target = fresh("robots can't be funny")
        store.upsert_message(target)
        decision_id = store.log_decision(
            Decision(
                channel_id="C1",
                evaluated_at=datetime.now(UTC),
                messages_evaluated=1,
                should_respond=True,
                reason="provoked",
                evaluated_message_ids=(target.message_id,),
                reply_to_message_id=target.message_id,
            )
        )
        agent = _agent(agent_config, chat, make_generator([reply("Neither can you.")]), store)

        await agent.process_job(
            AutonomousJob(
                channel_id="C1",
                decision_id=decision_id,
                reply_to_message_id=target.message_id,
            )
        )

        chat.send_message.assert_awaited_once_with(
            "C1", "Neither can you.", reply_to=target.message_id
        )
        decision = store.get_decision(decision_id)
        assert decision is not None
        assert decision.response_sent is True
        assert store.get_stats()["responses_autonomous"] == 1

    async def test_stale_target_becomes_standalone_post(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a target outside the window is dropped, not fetched."""
        store.upsert_message(fresh("anyone around"))
        agent = _agent(agent_config, chat, make_generator([reply("Unfortunately.")]), store)

        await agent.process_job(
            AutonomousJob(channel_id="C1", decision_id=None, reply_to_message_id="gone")
        )

        chat.send_message.assert_awaited_once_with("C1", "Unfortunately.", reply_to=None)

    async def test_record_failure_does_not_raise(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a store failure after sending is logged only."""
        store = MagicMock()
        store.get_recent_messages.return_value = []
        store.upsert_message.side_effect = StorageError("disk full")
        store.log_response.side_effect = StorageError("disk full")
        agent = Agent(agent_config, chat, make_generator([reply("Noted.")]), store)

        await agent.process_job(DirectJob(message=fresh("hey Isaac")))

        chat.send_message.assert_awaited_once()


class TestInboundMessages:
    """Tests for handle_inbound_message and the dispatch path."""

    async def test_mention_replies_through_queue(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a mention is stored, queued and answered."""
        agent = _agent(agent_config, chat, make_generator([reply("What now?")]), store)
        message = fresh(f"<@{AGENT_ID}> ping")

        await agent.handle_inbound_message(message)
        await agent.queue.join()

        assert store.message_exists(message.message_id)
        chat.send_message.assert_awaited_once_with("C1", "What now?", reply_to=message.message_id)
        await agent.shutdown()

    async def test_reply_to_agent_is_direct(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that replying to one of the agent's messages triggers a direct reply."""
        earlier = fresh("I am always right.", is_agent=True)
        store.upsert_message(earlier)
        agent = _agent(agent_config, chat, make_generator([reply("Still right.")]), store)

        message = fresh("no you're not", reply_to_id=earlier.message_id)
        await agent.handle_inbound_message(message)
        await agent.queue.join()

        chat.send_message.assert_awaited_once_with(
            "C1", "Still right.", reply_to=message.message_id
        )
        await agent.shutdown()

    async def test_direct_failure_sends_apology(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a failed direct reply is answered with the apology."""
        agent = _agent(agent_config, chat, make_generator([OracleError("overloaded")]), store)
        message = fresh(f"<@{AGENT_ID}> hello?")

        await agent.handle_inbound_message(message)
        await agent.queue.join()

        chat.send_message.assert_awaited_once_with(
            "C1", agent_config.persona.apology_message, reply_to=message.message_id
        )
        assert agent.queue.stats["failed"] == 1
        await agent.shutdown()

    async def test_autonomous_failure_is_silent(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a failed autonomous reply sends nothing."""
        agent = _agent(agent_config, chat, make_generator([OracleError("overloaded")]), store)

        agent.queue.enqueue(AutonomousJob(channel_id="C1", decision_id=None))
        await agent.queue.join()

        chat.send_message.assert_not_awaited()
        await agent.shutdown()

    async def test_ordinary_message_arms_timer(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a message not addressed to the agent schedules an evaluation."""
        agent = _agent(agent_config, chat, make_generator(), store)

        await agent.handle_inbound_message(fresh("lunch anyone?"))

        assert agent.scheduler.has_pending_timer("C1")
        assert len(agent.queue) == 0
        assert agent.stats["messages_received"] == 1
        await agent.shutdown()
        assert agent.scheduler.pending_timers == 0

    async def test_own_messages_are_stored_not_scheduled(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that the agent's own messages are recorded but never trigger anything."""
        agent = _agent(agent_config, chat, make_generator(), store)
        own = Message(
            message_id="self1",
            channel_id="C1",
            author_id=AGENT_ID,
            author_name="Isaac",
            text="Echo.",
            created_at=datetime.now(UTC),
        )

        await agent.handle_inbound_message(own)

        stored = store.get_message("self1")
        assert stored is not None
        assert stored.is_agent is True
        assert not agent.scheduler.has_pending_timer("C1")
        assert agent.stats["messages_received"] == 0


class TestMaintenance:
    """Tests for backfill and pruning."""

    async def test_backfill_stores_new_messages(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        make_message: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that backfill stores unseen history and skips what is known."""
        known = make_message("seen live", minutes_ago=2)
        unseen = make_message("missed", minutes_ago=1)
        store.upsert_message(known)
        chat.monitored_channels.return_value = ["C1", "C2"]

        async def fetch_recent(channel_id: str, limit: int) -> list[Message]:
            if channel_id == "C2":
                raise ConnectionError("not_in_channel")
            return [unseen, known]

        chat.fetch_recent.side_effect = fetch_recent
        agent = _agent(agent_config, chat, make_generator(), store)

        assert await agent.backfill() == 1

        stored = store.get_message(unseen.message_id)
        assert stored is not None
        assert stored.is_backfilled is True
        live = store.get_message(known.message_id)
        assert live is not None
        assert live.is_backfilled is False

    async def test_backfill_disabled(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a disabled backfill does nothing."""
        config = agent_config.model_copy(
            update={"backfill": agent_config.backfill.model_copy(update={"enabled": False})}
        )
        agent = _agent(config, chat, make_generator(), store)

        assert await agent.backfill() == 0
        chat.monitored_channels.assert_not_awaited()

    def test_prune(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        make_message: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that pruning trims channels to the configured size."""
        for minutes in range(12):
            store.upsert_message(make_message(minutes_ago=minutes))
        config = agent_config.model_copy(
            update={
                "storage": agent_config.storage.model_copy(
                    update={"max_messages_per_channel": 10}
                )
            }
        )
        agent = _agent(config, chat, make_generator(), store)

        assert agent.prune() == 2
        assert len(store.get_recent_messages("C1", 50)) == 10


class TestLifecycle:
    """Tests for start and stop."""

    async def test_start_connects_and_listens(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        fresh: MessageFactory,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that start connects, listens and hands messages over."""
        message = fresh("morning")

        async def listen() -> AsyncIterator[Message]:
            yield message

        chat.listen = listen
        agent = _agent(agent_config, chat, make_generator(), store)

        with patch.object(agent, "_setup_signal_handlers"):
            await agent.start()

        chat.connect.assert_awaited_once()
        assert store.message_exists(message.message_id)
        assert agent.is_running is True
        await agent.stop()
        assert agent.is_running is False
        chat.disconnect.assert_awaited_once()

    async def test_start_failure_raises_startup_error(
        self,
        agent_config: AgentConfig,
        chat: MagicMock,
        store: SqlMessageStore,
        make_generator: GeneratorFactory,
    ) -> None:
        """Test that a connection failure is reported as a StartupError."""
        chat.connect.side_effect = ConnectionError("invalid_auth")
        agent = _agent(agent_config, chat, make_generator(), store)

        with pytest.raises(StartupError, match="invalid_auth"):
            await agent.start()

        assert agent.is_running is False
        chat.disconnect.assert_awaited_once()


class TestCreateAgent:
    """Tests for the create_agent factory."""

    async def test_summaries_disabled_without_key(self, agent_config: AgentConfig) -> None:
        """Test that link summaries are switched off when no Kagi key is set."""
        with patch(
            "ai_chat_agent.core.agent._create_chat_adapter",
            AsyncMock(return_value=MagicMock()),
        ):
            agent = await create_agent(agent_config)

        assert agent.enrichment.needs_enrichment(
            Message(
                message_id="m1",
                channel_id="C1",
                author_id="UALICE",
                author_name="alice",
                text="https://example.com/article",
                created_at=datetime.now(UTC),
            )
        ) is False
