"""SQLAlchemy ORM models for the AI Against Humanity database.

Tables: users, card_packs, cards, games, game_players, rounds, submissions,
ai_response_cache, user_api_keys, custom_personas, ai_usage_log.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str] = mapped_column(String(512), default="")
    games_played: Mapped[int] = mapped_column(Integer, default=0)
    games_won: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (Index("ix_users_username", "username"),)


class CardPackRow(Base):
    __tablename__ = "card_packs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    is_official: Mapped[bool] = mapped_column(Boolean, default=False)
    creator_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    cards: Mapped[list[CardRow]] = relationship(back_populates="pack")


class CardRow(Base):
    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    pack_id: Mapped[str] = mapped_column(ForeignKey("card_packs.id"), nullable=False)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, default=False)

    pack: Mapped[CardPackRow] = relationship(back_populates="cards")

    __table_args__ = (
        Index("ix_cards_type", "type"),
        Index("ix_cards_pack_id", "pack_id"),
    )


class GameRow(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    status: Mapped[str] = mapped_column(String(20), default="lobby")
    game_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)
    points_to_win: Mapped[int] = mapped_column(Integer, nullable=False)
    current_round: Mapped[int] = mapped_column(Integer, default=0)
    host_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    invite_code: Mapped[str] = mapped_column(String(6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_games_status", "status"),
        Index("ix_games_invite_code", "invite_code"),
        Index("ix_games_host_id", "host_id"),
    )


class GamePlayerRow(Base):
    """A seat in a game, human or AI."""

    __tablename__ = "game_players"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    ai_persona_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    is_ai: Mapped[bool] = mapped_column(Boolean, default=False)
    score: Mapped[int] = mapped_column(Integer, default=0)
    is_judge: Mapped[bool] = mapped_column(Boolean, default=False)
    hand: Mapped[list] = mapped_column(JSON, default=list)
    seat: Mapped[int] = mapped_column(Integer, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        Index("ix_game_players_game_id", "game_id"),
        Index("ix_game_players_user_id", "user_id"),
        UniqueConstraint("game_id", "seat", name="uq_game_player_seat"),
    )


class RoundRow(Base):
    __tablename__ = "rounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(ForeignKey("games.id"), nullable=False)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    prompt_card_id: Mapped[str] = mapped_column(ForeignKey("cards.id"), nullable=False)
    judge_player_id: Mapped[str] = mapped_column(ForeignKey("game_players.id"), nullable=False)
    winner_player_id: Mapped[str | None] = mapped_column(
        ForeignKey("game_players.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), default="submitting")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    judging_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_rounds_game_id", "game_id"),
        UniqueConstraint("game_id", "round_number", name="uq_round_number"),
    )


class SubmissionRow(Base):
    """One answer per (round, player), enforced by the store."""

    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    round_id: Mapped[str] = mapped_column(ForeignKey("rounds.id"), nullable=False)
    player_id: Mapped[str] = mapped_column(ForeignKey("game_players.id"), nullable=False)
    card_id: Mapped[str | None] = mapped_column(ForeignKey("cards.id"), nullable=True)
    ai_generated_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        Index("ix_submissions_round_id", "round_id"),
        Index("ix_submissions_player_id", "player_id"),
        UniqueConstraint("round_id", "player_id", name="uq_submission_round_player"),
        CheckConstraint(
            "(card_id IS NULL) != (ai_generated_text IS NULL)",
            name="ck_submission_single_payload",
        ),
    )


class AIResponseCacheRow(Base):
    """Pool of previously generated answers for a (prompt text, persona) pair."""

    __tablename__ = "ai_response_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    prompt_text: Mapped[str] = mapped_column(Text, nullable=False)
    persona_id: Mapped[str] = mapped_column(String(80), nullable=False)
    responses: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("prompt_text", "persona_id", name="uq_cache_prompt_persona"),
    )


class UserApiKeyRow(Base):
    """Encrypted provider credential. The plaintext key is never stored."""

    __tablename__ = "user_api_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    key_hint: Mapped[str] = mapped_column(String(10), nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_user_api_keys_user_id", "user_id"),
        UniqueConstraint("user_id", "provider", name="uq_api_key_user_provider"),
    )


class CustomPersonaRow(Base):
    __tablename__ = "custom_personas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    creator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(30), nullable=False)
    personality: Mapped[str] = mapped_column(String(100), nullable=False)
    # Guardrail preamble + the creator's instructions.
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), default="")
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_custom_personas_creator_id", "creator_id"),
        Index("ix_custom_personas_is_public", "is_public"),
    )


class AIUsageLogRow(Base):
    """One row per provider call: tokens, latency, estimated cost."""

    __tablename__ = "ai_usage_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    call_type: Mapped[str] = mapped_column(String(40), nullable=False)
    model: Mapped[str] = mapped_column(String(60), nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cache_read_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cache_creation_tokens: Mapped[int] = mapped_column(Integer, default=0)
    latency_ms: Mapped[float] = mapped_column(Float, default=0.0)
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0)
    billed_to: Mapped[str] = mapped_column(String(10), default="shared")
    game_id: Mapped[str] = mapped_column(String(36), default="")
    round_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)

    __table_args__ = (
        Index("ix_ai_usage_log_game_id", "game_id"),
        Index("ix_ai_usage_log_created_at", "created_at"),
    )
