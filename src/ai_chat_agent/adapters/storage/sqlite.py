"""SQLAlchemy-backed message store.

Stores channel messages, decisions, sent replies and the prompts behind
them. SQLite is the default backend; any SQLAlchemy URL works.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import Boolean, Float, Integer, String, Text, create_engine, delete, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ...models.decision import Decision
from ...models.job import ResponseType
from ...models.message import Enrichment, LinkSummary, Message
from ...utils.async_helpers import StorageError

log = structlog.get_logger()


class Base(DeclarativeBase):
    pass


class MessageRow(Base):
    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    author_name: Mapped[str] = mapped_column(Text, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Epoch seconds, UTC
    created_at: Mapped[float] = mapped_column(Float, index=True, nullable=False)
    is_agent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reply_to_id: Mapped[str | None] = mapped_column(String(64))
    image_urls_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    enrichment_json: Mapped[str | None] = mapped_column(Text)
    is_backfilled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DecisionRow(Base):
    __tablename__ = "decision_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    evaluated_at: Mapped[float] = mapped_column(Float, nullable=False)
    messages_evaluated: Mapped[int] = mapped_column(Integer, nullable=False)
    should_respond: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evaluated_message_ids_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    reply_to_message_id: Mapped[str | None] = mapped_column(String(64))
    response_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ResponseRow(Base):
    __tablename__ = "responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    message_id: Mapped[str] = mapped_column(String(64), nullable=False)
    response_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    trigger_message_id: Mapped[str | None] = mapped_column(String(64))
    decision_id: Mapped[int | None] = mapped_column(Integer)
    tool_iterations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)


class PromptRow(Base):
    __tablename__ = "prompts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prompt_type: Mapped[str] = mapped_column(String(16), nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    turns_json: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float)
    decision_id: Mapped[int | None] = mapped_column(Integer)
    response_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


def _dump_enrichment(enrichment: Enrichment) -> str:
    return json.dumps(
        {
            "image_descriptions": list(enrichment.image_descriptions),
            "link_summaries": [
                {"url": s.url, "summary": s.summary, "error": s.error}
                for s in enrichment.link_summaries
            ],
        }
    )


def _load_enrichment(raw: str | None) -> Enrichment | None:
    if not raw:
        return None
    data = json.loads(raw)
    return Enrichment(
        image_descriptions=tuple(data.get("image_descriptions", [])),
        link_summaries=tuple(
            LinkSummary(url=s["url"], summary=s.get("summary"), error=s.get("error"))
            for s in data.get("link_summaries", [])
        ),
    )


def _row_to_message(row: MessageRow) -> Message:
    return Message(
        message_id=row.message_id,
        channel_id=row.channel_id,
        author_id=row.author_id,
        author_name=row.author_name,
        text=row.text,
        created_at=_from_epoch(row.created_at),
        is_agent=row.is_agent,
        reply_to_id=row.reply_to_id,
        image_urls=tuple(json.loads(row.image_urls_json)),
        enrichment=_load_enrichment(row.enrichment_json),
        is_backfilled=row.is_backfilled,
    )


def _row_to_decision(row: DecisionRow) -> Decision:
    return Decision(
        channel_id=row.channel_id,
        evaluated_at=_from_epoch(row.evaluated_at),
        messages_evaluated=row.messages_evaluated,
        should_respond=row.should_respond,
        reason=row.reason,
        evaluated_message_ids=tuple(json.loads(row.evaluated_message_ids_json)),
        reply_to_message_id=row.reply_to_message_id,
        decision_id=row.id,
        response_sent=row.response_sent,
    )


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.drivername.startswith("sqlite") and parsed.database in (None, "", ":memory:")


class SqlMessageStore:
    """MessageStore implementation on top of SQLAlchemy.

    Example:
        store = SqlMessageStore("sqlite:///data/agent.db")
        store.upsert_message(message)
        recent = store.get_recent_messages("C123", limit=20)
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        """Open the database and create missing tables.

        Args:
            url: SQLAlchemy database URL.
            echo: Log every SQL statement.

        Raises:
            StorageError: If the database cannot be opened.
        """
        self._url = url
        engine_kwargs: dict[str, Any] = {"echo": echo}

        try:
            parsed = make_url(url)
            if parsed.drivername.startswith("sqlite"):
                engine_kwargs["connect_args"] = {"check_same_thread": False}
                if _is_memory_sqlite(url):
                    # A single shared connection keeps the in-memory database alive
                    engine_kwargs["poolclass"] = StaticPool
                elif parsed.database:
                    Path(parsed.database).expanduser().parent.mkdir(parents=True, exist_ok=True)

            self._engine = create_engine(url, **engine_kwargs)
            Base.metadata.create_all(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise StorageError(f"Cannot open message store: {e}") from e

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        log.info("message_store_opened", backend=parsed.drivername)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            log.error("storage_operation_failed", error=str(e))
            raise StorageError(str(e)) from e
        finally:
            session.close()

    def close(self) -> None:
        """Release all pooled connections."""
        self._engine.dispose()

    def upsert_message(self, message: Message) -> None:
        with self._session() as session:
            row = session.get(MessageRow, message.message_id)
            if row is None:
                session.add(
                    MessageRow(
                        message_id=message.message_id,
                        channel_id=message.channel_id,
                        author_id=message.author_id,
                        author_name=message.author_name,
                        text=message.text,
                        created_at=_to_epoch(message.created_at),
                        is_agent=message.is_agent,
                        reply_to_id=message.reply_to_id,
                        image_urls_json=json.dumps(list(message.image_urls)),
                        enrichment_json=(
                            _dump_enrichment(message.enrichment) if message.enrichment else None
                        ),
                        is_backfilled=message.is_backfilled,
                    )
                )
                return

            row.channel_id = message.channel_id
            row.author_id = message.author_id
            row.author_name = message.author_name
            row.text = message.text
            row.created_at = _to_epoch(message.created_at)
            row.is_agent = message.is_agent
            row.reply_to_id = message.reply_to_id
            row.image_urls_json = json.dumps(list(message.image_urls))
            if message.enrichment is not None:
                row.enrichment_json = _dump_enrichment(message.enrichment)
            # A message seen live stays live even if backfill writes it again
            row.is_backfilled = row.is_backfilled and message.is_backfilled

    def update_enrichment(self, message_id: str, enrichment: Enrichment) -> bool:
        with self._session() as session:
            row = session.get(MessageRow, message_id)
            if row is None:
                return False
            row.enrichment_json = _dump_enrichment(enrichment)
            return True

    def get_message(self, message_id: str) -> Message | None:
        with self._session() as session:
            row = session.get(MessageRow, message_id)
            return _row_to_message(row) if row is not None else None

    def message_exists(self, message_id: str) -> bool:
        with self._session() as session:
            return session.get(MessageRow, message_id) is not None

    def get_recent_messages(self, channel_id: str, limit: int) -> list[Message]:
        stmt = (
            select(MessageRow)
            .where(MessageRow.channel_id == channel_id)
            .order_by(MessageRow.created_at.desc(), MessageRow.message_id.desc())
            .limit(limit)
        )
        with self._session() as session:
            return [_row_to_message(row) for row in session.scalars(stmt)]

    def log_decision(self, decision: Decision) -> int:
        row = DecisionRow(
            channel_id=decision.channel_id,
            evaluated_at=_to_epoch(decision.evaluated_at),
            messages_evaluated=decision.messages_evaluated,
            should_respond=decision.should_respond,
            reason=decision.reason,
            evaluated_message_ids_json=json.dumps(list(decision.evaluated_message_ids)),
            reply_to_message_id=decision.reply_to_message_id,
            response_sent=decision.response_sent,
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return row.id

    def get_decision(self, decision_id: int) -> Decision | None:
        with self._session() as session:
            row = session.get(DecisionRow, decision_id)
            return _row_to_decision(row) if row is not None else None

    def mark_decision_sent(self, decision_id: int) -> None:
        with self._session() as session:
            row = session.get(DecisionRow, decision_id)
            if row is not None:
                row.response_sent = True

    def log_response(
        self,
        *,
        channel_id: str,
        message_id: str,
        response_type: ResponseType,
        content: str,
        trigger_message_id: str | None = None,
        decision_id: int | None = None,
        tool_iterations: int = 0,
    ) -> int:
        row = ResponseRow(
            channel_id=channel_id,
            message_id=message_id,
            response_type=str(response_type),
            content=content,
            trigger_message_id=trigger_message_id,
            decision_id=decision_id,
            tool_iterations=tool_iterations,
            created_at=datetime.now(UTC).timestamp(),
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return row.id

    def store_prompt(
        self,
        *,
        prompt_type: str,
        system_prompt: str,
        turns: Sequence[dict[str, Any]],
        model: str,
        temperature: float | None = None,
        decision_id: int | None = None,
        response_id: int | None = None,
    ) -> int:
        row = PromptRow(
            prompt_type=prompt_type,
            system_prompt=system_prompt,
            turns_json=json.dumps([dict(t) for t in turns]),
            model=model,
            temperature=temperature,
            decision_id=decision_id,
            response_id=response_id,
            created_at=datetime.now(UTC).timestamp(),
        )
        with self._session() as session:
            session.add(row)
            session.flush()
            return row.id

    def get_prompts(self, *, decision_id: int | None = None) -> list[dict[str, Any]]:
        """Return stored prompts, optionally only those of one decision."""
        stmt = select(PromptRow).order_by(PromptRow.id)
        if decision_id is not None:
            stmt = stmt.where(PromptRow.decision_id == decision_id)
        with self._session() as session:
            return [
                {
                    "id": row.id,
                    "prompt_type": row.prompt_type,
                    "system_prompt": row.system_prompt,
                    "turns": json.loads(row.turns_json),
                    "model": row.model,
                    "temperature": row.temperature,
                    "decision_id": row.decision_id,
                    "response_id": row.response_id,
                }
                for row in session.scalars(stmt)
            ]

    def list_channels(self) -> list[str]:
        stmt = select(MessageRow.channel_id).distinct().order_by(MessageRow.channel_id)
        with self._session() as session:
            return list(session.scalars(stmt))

    def prune_messages(self, channel_id: str, keep: int) -> int:
        stale = (
            select(MessageRow.message_id)
            .where(MessageRow.channel_id == channel_id)
            .order_by(MessageRow.created_at.desc(), MessageRow.message_id.desc())
            .offset(keep)
        )
        with self._session() as session:
            ids = list(session.scalars(stale))
            if not ids:
                return 0
            session.execute(delete(MessageRow).where(MessageRow.message_id.in_(ids)))
        log.info("messages_pruned", channel_id=channel_id, deleted=len(ids))
        return len(ids)

    def get_stats(self) -> dict[str, int]:
        by_type = select(ResponseRow.response_type, func.count()).group_by(
            ResponseRow.response_type
        )
        with self._session() as session:
            stats = {
                "messages": session.scalar(select(func.count()).select_from(MessageRow)) or 0,
                "decisions": session.scalar(select(func.count()).select_from(DecisionRow)) or 0,
                "prompts": session.scalar(select(func.count()).select_from(PromptRow)) or 0,
            }
            responses = {str(kind): count for kind, count in session.execute(by_type)}

        stats["responses"] = sum(responses.values())
        for kind in ResponseType:
            stats[f"responses_{kind}"] = responses.get(str(kind), 0)
        return stats
