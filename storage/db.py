from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from engine.errors import TransientInfraError

LOGGER = logging.getLogger("storage")


def utcnow() -> datetime:
    # SQLite drops tzinfo, so timestamps are stored as naive UTC everywhere.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class GameRow(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="waiting", nullable=False)
    current_round: Mapped[str] = mapped_column(String(16), default="pre-flop", nullable=False)
    current_highest_bet: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_player_turn: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    pot: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    community_cards: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    hand_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    small_blind: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    big_blind: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    min_raise_increment: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_aggressor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    deck: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    turn_ms: Mapped[int] = mapped_column(Integer, default=30_000, nullable=False)
    simulator_config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_action_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    players: Mapped[List["PlayerRow"]] = relationship(
        back_populates="game", order_by="PlayerRow.seat", cascade="all, delete-orphan"
    )


class PlayerRow(Base):
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    seat: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    stack: Mapped[int] = mapped_column(Integer, nullable=False)
    current_bet: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_in_pot: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hole_cards: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    has_folded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_acted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_button: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_won: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    hand_name: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    game: Mapped[GameRow] = relationship(back_populates="players")

    __table_args__ = (UniqueConstraint("game_id", "seat", name="uq_players_game_seat"),)


class ActionRow(Base):
    """Append-only: rows are inserted with the game update and never touched again."""

    __tablename__ = "actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    player_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    hand_id: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_source: Mapped[str] = mapped_column(String(16), default="human", nullable=False)
    bot_strategy: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_actions_game_hand", "game_id", "hand_id"),)


class SimulatorJobRow(Base):
    __tablename__ = "simulator_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[str] = mapped_column(String(36), nullable=False)
    player_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    hand_id: Mapped[int] = mapped_column(Integer, nullable=False)
    # Epoch milliseconds, so the queue clock can be injected as a plain int.
    run_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_simulator_jobs_due", "status", "run_at"),
        Index(
            "ux_simulator_jobs_pending",
            "game_id",
            "hand_id",
            "player_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class Database:
    """Engine plus session factory. Every unit of work gets its own transaction."""

    def __init__(self, url: str = "sqlite:///poker.db", echo: bool = False) -> None:
        kwargs: Dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"timeout": 30, "check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.url = url
        self.engine = create_engine(url, echo=echo, **kwargs)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back on any error; storage failures become TransientInfraError."""
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            LOGGER.warning("Storage error: %s", exc)
            raise TransientInfraError(f"Storage unavailable: {exc.__class__.__name__}") from exc

    def dispose(self) -> None:
        self.engine.dispose()
