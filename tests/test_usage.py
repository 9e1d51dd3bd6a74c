"""Tests for AI usage tracking: cost computation, token extraction, and recording."""

from __future__ import annotations

from unittest.mock import MagicMock

from sqlalchemy import select

from aiah.ai.judge import JudgeVerdict
from aiah.ai.usage import (
    compute_cost,
    extract_usage,
    pydantic_to_response_format,
    record_ai_usage,
    track_latency,
)
from aiah.db.engine import get_session
from aiah.db.models import AIUsageLogRow

# ---------------------------------------------------------------------------
# Cost computation (pure functions, no DB)
# ---------------------------------------------------------------------------


class TestComputeCost:
    def test_haiku_cost(self) -> None:
        """Haiku pricing: $0.80/MTok input, $4/MTok output."""
        cost = compute_cost("claude-haiku-4-5-20251001", input_tokens=2000, output_tokens=200)
        expected = (2000 * 0.80 + 200 * 4.00) / 1_000_000
        assert abs(cost - expected) < 1e-8

    def test_unknown_model_uses_default(self) -> None:
        cost = compute_cost("claude-unknown-model", input_tokens=1000, output_tokens=500)
        expected = (1000 * 3.00 + 500 * 15.00) / 1_000_000
        assert abs(cost - expected) < 1e-8

    def test_zero_tokens(self) -> None:
        assert compute_cost("claude-haiku-4-5-20251001", 0, 0) == 0.0


class TestExtractUsage:
    def test_standard_response(self) -> None:
        response = MagicMock()
        response.usage.input_tokens = 150
        response.usage.output_tokens = 30
        response.usage.cache_read_input_tokens = 0
        response.usage.cache_creation_input_tokens = 0
        assert extract_usage(response) == (150, 30, 0, 0)

    def test_no_usage_attribute(self) -> None:
        assert extract_usage(object()) == (0, 0, 0, 0)

    def test_non_integer_fields(self) -> None:
        response = MagicMock()
        response.usage.input_tokens = 10
        response.usage.output_tokens = 5
        response.usage.cache_read_input_tokens = None
        response.usage.cache_creation_input_tokens = None
        assert extract_usage(response) == (10, 5, 0, 0)


class TestResponseFormat:
    def test_judge_verdict_schema(self) -> None:
        fmt = pydantic_to_response_format(JudgeVerdict)
        assert fmt["format"]["type"] == "json_schema"  # type: ignore[index]
        schema = fmt["format"]["schema"]  # type: ignore[index]
        assert "winner_number" in schema["properties"]


class TestRecording:
    async def test_row_written_with_billing(self, engine) -> None:
        async with get_session(engine) as session:
            await record_ai_usage(
                session=session,
                call_type="response_card",
                model="claude-haiku-4-5-20251001",
                input_tokens=100,
                output_tokens=20,
                billed_to="byok",
                game_id="g-1",
                round_number=3,
            )
        async with get_session(engine) as session:
            rows = (await session.execute(select(AIUsageLogRow))).scalars().all()
        assert len(rows) == 1
        row = rows[0]
        assert (row.call_type, row.billed_to, row.game_id, row.round_number) == (
            "response_card",
            "byok",
            "g-1",
            3,
        )
        assert row.cost_usd > 0

    async def test_track_latency(self) -> None:
        async with track_latency() as timing:
            pass
        assert timing["latency_ms"] >= 0
