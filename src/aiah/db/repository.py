"""Repository pattern for database access.

Wraps SQLAlchemy async sessions. Every write flushes immediately so
constraint violations surface at the call site rather than at commit.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from aiah.core.errors import DuplicateSubmission
from aiah.db.models import (
    AIResponseCacheRow,
    CardPackRow,
    CardRow,
    CustomPersonaRow,
    GamePlayerRow,
    GameRow,
    RoundRow,
    SubmissionRow,
    UserApiKeyRow,
    UserRow,
)


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Users ---

    async def create_user(self, username: str, email: str) -> UserRow:
        row = UserRow(username=username, email=email)
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_user(self, user_id: str) -> UserRow | None:
        return await self.session.get(UserRow, user_id)

    # --- Cards ---

    async def create_card_pack(
        self,
        name: str,
        description: str = "",
        is_official: bool = False,
        creator_id: str | None = None,
    ) -> CardPackRow:
        row = CardPackRow(
            name=name,
            description=description,
            is_official=is_official,
            creator_id=creator_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def add_cards(self, pack_id: str, card_type: str, texts: list[str]) -> list[CardRow]:
        rows = [CardRow(type=card_type, text=text, pack_id=pack_id) for text in texts]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def get_card(self, card_id: str) -> CardRow | None:
        return await self.session.get(CardRow, card_id)

    async def get_cards_by_type(self, card_type: str) -> list[CardRow]:
        stmt = select(CardRow).where(CardRow.type == card_type).order_by(CardRow.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_cards(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(CardRow))
        return result.scalar_one()

    # --- Games ---

    async def create_game(
        self,
        host_id: str,
        game_mode: str,
        max_players: int,
        points_to_win: int,
        invite_code: str,
    ) -> GameRow:
        row = GameRow(
            host_id=host_id,
            game_mode=game_mode,
            max_players=max_players,
            points_to_win=points_to_win,
            invite_code=invite_code,
            status="lobby",
            current_round=0,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_game(self, game_id: str) -> GameRow | None:
        return await self.session.get(GameRow, game_id)

    async def get_games_by_invite_code(self, invite_code: str) -> list[GameRow]:
        """All games sharing a code, lobbies first, newest first."""
        stmt = (
            select(GameRow)
            .where(GameRow.invite_code == invite_code)
            .order_by((GameRow.status == "lobby").desc(), GameRow.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def invite_code_in_use(self, invite_code: str) -> bool:
        stmt = (
            select(GameRow.id)
            .where(GameRow.invite_code == invite_code, GameRow.status == "lobby")
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_games_by_status(self, status: str) -> list[GameRow]:
        stmt = select(GameRow).where(GameRow.status == status).order_by(GameRow.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_game(self, game: GameRow, **fields: object) -> GameRow:
        for name, value in fields.items():
            setattr(game, name, value)
        await self.session.flush()
        return game

    # --- Players ---

    async def add_player(
        self,
        game_id: str,
        seat: int,
        user_id: str | None = None,
        ai_persona_id: str | None = None,
    ) -> GamePlayerRow:
        row = GamePlayerRow(
            game_id=game_id,
            user_id=user_id,
            ai_persona_id=ai_persona_id,
            is_ai=ai_persona_id is not None,
            score=0,
            is_judge=False,
            hand=[],
            seat=seat,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_player(self, player_id: str) -> GamePlayerRow | None:
        return await self.session.get(GamePlayerRow, player_id)

    async def get_players(self, game_id: str) -> list[GamePlayerRow]:
        """Players of a game in stable seat order."""
        stmt = (
            select(GamePlayerRow)
            .where(GamePlayerRow.game_id == game_id)
            .order_by(GamePlayerRow.seat)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_player_for_user(self, game_id: str, user_id: str) -> GamePlayerRow | None:
        stmt = (
            select(GamePlayerRow)
            .where(GamePlayerRow.game_id == game_id, GamePlayerRow.user_id == user_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_hand(self, player: GamePlayerRow, hand: list[str]) -> None:
        # JSON columns are not mutation-tracked; always assign a new list.
        player.hand = list(hand)
        await self.session.flush()

    async def update_player(self, player: GamePlayerRow, **fields: object) -> GamePlayerRow:
        for name, value in fields.items():
            setattr(player, name, value)
        await self.session.flush()
        return player

    # --- Rounds ---

    async def create_round(
        self,
        game_id: str,
        round_number: int,
        prompt_card_id: str,
        judge_player_id: str,
    ) -> RoundRow:
        row = RoundRow(
            game_id=game_id,
            round_number=round_number,
            prompt_card_id=prompt_card_id,
            judge_player_id=judge_player_id,
            status="submitting",
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_round(self, round_id: str) -> RoundRow | None:
        return await self.session.get(RoundRow, round_id)

    async def get_round_by_number(self, game_id: str, round_number: int) -> RoundRow | None:
        stmt = (
            select(RoundRow)
            .where(RoundRow.game_id == game_id, RoundRow.round_number == round_number)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_rounds(self, game_id: str) -> list[RoundRow]:
        stmt = select(RoundRow).where(RoundRow.game_id == game_id).order_by(RoundRow.round_number)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_round(self, round_row: RoundRow, **fields: object) -> RoundRow:
        for name, value in fields.items():
            setattr(round_row, name, value)
        await self.session.flush()
        return round_row

    # --- Submissions ---

    async def create_submission(
        self,
        round_id: str,
        player_id: str,
        card_id: str | None = None,
        ai_generated_text: str | None = None,
    ) -> SubmissionRow:
        """Insert a submission; a second one for the same player raises DuplicateSubmission.

        The conflict is resolved by the store (``ON CONFLICT DO NOTHING``), so
        a lost race leaves the session usable for the caller's next write.
        """
        stmt = (
            sqlite_insert(SubmissionRow)
            .values(
                round_id=round_id,
                player_id=player_id,
                card_id=card_id,
                ai_generated_text=ai_generated_text,
            )
            .on_conflict_do_nothing(index_elements=["round_id", "player_id"])
            .returning(SubmissionRow)
        )
        row = (await self.session.scalars(stmt)).one_or_none()
        if row is None:
            raise DuplicateSubmission("Already submitted")
        return row

    async def get_submissions(self, round_id: str) -> list[SubmissionRow]:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.round_id == round_id)
            .order_by(SubmissionRow.created_at, SubmissionRow.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_submission_for_player(
        self, round_id: str, player_id: str
    ) -> SubmissionRow | None:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.round_id == round_id, SubmissionRow.player_id == player_id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_submissions(self, round_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(SubmissionRow)
            .where(SubmissionRow.round_id == round_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    # --- AI response cache ---

    async def get_response_pool(
        self, prompt_text: str, persona_id: str
    ) -> AIResponseCacheRow | None:
        stmt = (
            select(AIResponseCacheRow)
            .where(
                AIResponseCacheRow.prompt_text == prompt_text,
                AIResponseCacheRow.persona_id == persona_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_response_pool(
        self, prompt_text: str, persona_id: str, responses: list[str]
    ) -> AIResponseCacheRow | None:
        """Insert a pool. Returns None if another writer created it first."""
        stmt = (
            sqlite_insert(AIResponseCacheRow)
            .values(prompt_text=prompt_text, persona_id=persona_id, responses=list(responses))
            .on_conflict_do_nothing(index_elements=["prompt_text", "persona_id"])
            .returning(AIResponseCacheRow)
        )
        return (await self.session.scalars(stmt)).one_or_none()

    async def set_response_pool(self, row: AIResponseCacheRow, responses: list[str]) -> None:
        row.responses = list(responses)
        await self.session.flush()

    # --- API keys ---

    async def get_api_key(self, key_id: str) -> UserApiKeyRow | None:
        return await self.session.get(UserApiKeyRow, key_id)

    async def get_api_key_for_user(self, user_id: str, provider: str) -> UserApiKeyRow | None:
        stmt = (
            select(UserApiKeyRow)
            .where(UserApiKeyRow.user_id == user_id, UserApiKeyRow.provider == provider)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_api_keys_for_user(self, user_id: str) -> list[UserApiKeyRow]:
        stmt = (
            select(UserApiKeyRow)
            .where(UserApiKeyRow.user_id == user_id)
            .order_by(UserApiKeyRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def replace_api_key(
        self, user_id: str, provider: str, encrypted_key: str, key_hint: str
    ) -> UserApiKeyRow:
        """Store a key, replacing any prior record for the same (user, provider)."""
        existing = await self.get_api_key_for_user(user_id, provider)
        if existing is not None:
            await self.session.delete(existing)
            await self.session.flush()
        row = UserApiKeyRow(
            user_id=user_id,
            provider=provider,
            encrypted_key=encrypted_key,
            key_hint=key_hint,
            is_valid=True,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def delete_api_key(self, row: UserApiKeyRow) -> None:
        await self.session.delete(row)
        await self.session.flush()

    async def mark_api_key_invalid(self, key_id: str, error: str) -> UserApiKeyRow | None:
        row = await self.get_api_key(key_id)
        if row is None:
            return None
        row.is_valid = False
        row.last_error = error[:200]
        row.last_error_at = datetime.now(UTC)
        await self.session.flush()
        return row

    async def mark_api_key_used(self, key_id: str) -> UserApiKeyRow | None:
        row = await self.get_api_key(key_id)
        if row is None:
            return None
        row.last_used_at = datetime.now(UTC)
        await self.session.flush()
        return row

    # --- Custom personas ---

    async def create_custom_persona(
        self,
        creator_id: str,
        name: str,
        personality: str,
        system_prompt: str,
        temperature: float,
        emoji: str,
        is_public: bool,
    ) -> CustomPersonaRow:
        row = CustomPersonaRow(
            creator_id=creator_id,
            name=name,
            personality=personality,
            system_prompt=system_prompt,
            temperature=temperature,
            emoji=emoji,
            is_public=is_public,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_custom_persona(self, persona_id: str) -> CustomPersonaRow | None:
        return await self.session.get(CustomPersonaRow, persona_id)

    async def get_custom_personas_by_creator(self, creator_id: str) -> list[CustomPersonaRow]:
        stmt = (
            select(CustomPersonaRow)
            .where(CustomPersonaRow.creator_id == creator_id)
            .order_by(CustomPersonaRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_custom_personas(self, creator_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(CustomPersonaRow)
            .where(CustomPersonaRow.creator_id == creator_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def get_public_custom_personas(self) -> list[CustomPersonaRow]:
        stmt = (
            select(CustomPersonaRow)
            .where(CustomPersonaRow.is_public.is_(True))
            .order_by(CustomPersonaRow.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_custom_persona(
        self, row: CustomPersonaRow, **fields: object
    ) -> CustomPersonaRow:
        for name, value in fields.items():
            setattr(row, name, value)
        await self.session.flush()
        return row

    async def delete_custom_persona(self, row: CustomPersonaRow) -> None:
        await self.session.delete(row)
        await self.session.flush()
