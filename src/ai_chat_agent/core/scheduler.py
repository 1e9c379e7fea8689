"""Per-channel debounce scheduling of autonomous evaluations."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from ..models.job import AutonomousJob, DirectJob, DispatchJob
from ..utils.async_helpers import TaskGroup
from ..utils.logging import bind_context
from .addressing import addresses_by_name, build_name_pattern
from .throttle import ThrottleOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..config.schema import SchedulerConfig
    from ..models.message import Message
    from .decision import DecisionOracle
    from .throttle import DominanceThrottle
    from .windower import ContextWindower

log = structlog.get_logger()


@dataclass
class ChannelEvaluationState:
    """In-memory evaluation state of one channel.

    ``epoch`` is bumped whenever pending autonomous work for the channel is
    superseded (a newer message, a direct trigger or a sent reply); an
    evaluation that started in an older epoch never enqueues a job.
    """

    channel_id: str
    last_evaluated_at: datetime | None = None
    messages_since_evaluation: int = 0
    timer: asyncio.TimerHandle | None = None
    epoch: int = 0

    def cancel_timer(self) -> bool:
        """Cancel the armed timer, if any. Returns True if one was cancelled."""
        if self.timer is None:
            return False
        self.timer.cancel()
        self.timer = None
        return True


class EvaluationScheduler:
    """Decides per channel when to ask the decision oracle whether to speak.

    Every non-trigger message re-arms the channel's single debounce timer, so
    evaluation only happens once the conversation settles. Direct triggers
    skip debouncing and the dominance throttle and are queued immediately.

    The only mutators of channel state are ``on_message``, the timer
    callback, and ``cancel``.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        windower: ContextWindower,
        throttle: DominanceThrottle,
        oracle: DecisionOracle,
        enqueue: Callable[[DispatchJob], None],
        persona_names: Sequence[str] = (),
    ) -> None:
        self._config = config
        self._windower = windower
        self._throttle = throttle
        self._oracle = oracle
        self._enqueue = enqueue
        self._name_pattern = build_name_pattern(persona_names)
        self._states: dict[str, ChannelEvaluationState] = {}
        self._evaluations = TaskGroup()
        self._closed = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, channel_id: str) -> ChannelEvaluationState | None:
        """Return the evaluation state of a channel, if it has any."""
        return self._states.get(channel_id)

    def has_pending_timer(self, channel_id: str) -> bool:
        state = self._states.get(channel_id)
        return state is not None and state.timer is not None

    @property
    def pending_timers(self) -> int:
        return sum(1 for s in self._states.values() if s.timer is not None)

    @property
    def running_evaluations(self) -> int:
        return len(self._evaluations)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def on_message(self, message: Message, *, direct: bool = False) -> None:
        """Account for an inbound message and schedule what follows.

        Args:
            message: The stored inbound message
            direct: Whether the message addresses the agent directly
        """
        if self._closed:
            return

        state = self._state_for(message.channel_id)
        state.messages_since_evaluation += 1

        if direct:
            cancelled = state.cancel_timer()
            state.epoch += 1
            log.info(
                "direct_trigger_queued",
                channel_id=message.channel_id,
                message_id=message.message_id,
                cancelled_timer=cancelled,
            )
            self._enqueue(DirectJob(message=message))
            return

        if addresses_by_name(message.text, self._name_pattern):
            delay = self._config.mention_debounce_seconds
        else:
            delay = self._config.debounce_seconds

        state.epoch += 1
        self._arm(state, delay)

    def cancel(self, channel_id: str) -> None:
        """Drop pending autonomous work for a channel after a reply was sent."""
        state = self._states.get(channel_id)
        if state is None:
            return
        state.cancel_timer()
        state.epoch += 1
        state.messages_since_evaluation = 0
        log.debug("channel_evaluation_cancelled", channel_id=channel_id)

    async def shutdown(self) -> None:
        """Cancel every live timer and any evaluation in progress."""
        self._closed = True
        for state in self._states.values():
            state.cancel_timer()
        await self._evaluations.cancel_all()
        log.info("scheduler_shutdown", channels=len(self._states))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _state_for(self, channel_id: str) -> ChannelEvaluationState:
        state = self._states.get(channel_id)
        if state is None:
            state = ChannelEvaluationState(channel_id=channel_id)
            self._states[channel_id] = state
        return state

    def _arm(self, state: ChannelEvaluationState, delay: float) -> None:
        state.cancel_timer()
        loop = asyncio.get_running_loop()
        state.timer = loop.call_later(delay, self._on_timer_fired, state.channel_id)
        log.debug(
            "evaluation_timer_armed",
            channel_id=state.channel_id,
            delay=delay,
            pending=state.messages_since_evaluation,
        )

    def _on_timer_fired(self, channel_id: str) -> None:
        state = self._states.get(channel_id)
        if state is None or self._closed:
            return
        state.timer = None
        self._evaluations.spawn(
            self._evaluate(state, state.epoch, state.messages_since_evaluation),
            name=f"evaluate:{channel_id}",
        )

    async def _evaluate(self, state: ChannelEvaluationState, epoch: int, counted: int) -> None:
        """Run one autonomous evaluation. Never raises."""
        channel_id = state.channel_id
        bind_context(channel_id=channel_id)
        now = datetime.now(UTC)

        try:
            history = self._windower.recent_history(channel_id)
            ratio = self._throttle.ratio(history, now)
            outcome = self._throttle.check(ratio)

            if outcome is not ThrottleOutcome.PROCEED:
                log.info(
                    "evaluation_skipped_dominance",
                    channel_id=channel_id,
                    ratio=round(ratio, 3),
                    outcome=outcome.value,
                )
                return

            window = self._windower.window(channel_id, now=now, history=history)
            decision = await self._oracle.evaluate(channel_id, window, ratio)

            if not decision.should_respond:
                return

            if state.epoch != epoch:
                log.info(
                    "evaluation_superseded",
                    channel_id=channel_id,
                    decision_id=decision.decision_id,
                )
                return

            self._enqueue(
                AutonomousJob(
                    channel_id=channel_id,
                    decision_id=decision.decision_id,
                    reply_to_message_id=decision.reply_to_message_id,
                )
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("evaluation_failed", channel_id=channel_id, error=str(e))
        finally:
            state.last_evaluated_at = now
            state.messages_since_evaluation = max(0, state.messages_since_evaluation - counted)
