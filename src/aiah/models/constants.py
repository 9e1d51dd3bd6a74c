"""Shared game constants.

Placed here so the lifecycle layer, the orchestrator, and the API layer can
import them without pulling in the provider SDK.
"""

from __future__ import annotations

HAND_SIZE = 7
MIN_PLAYERS_TO_START = 2

MIN_MAX_PLAYERS = 2
MAX_MAX_PLAYERS = 10
MIN_POINTS_TO_WIN = 1
MAX_POINTS_TO_WIN = 20
MAX_GAME_MODE_LENGTH = 50
MAX_USERNAME_LENGTH = 30

MAX_AI_PLAYERS_PER_GAME = 3
MAX_AI_PLAYERS_WITH_OWN_KEY = 5

INVITE_CODE_LENGTH = 6
# No 0/O or 1/I, so codes survive being read aloud.
INVITE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

MAX_CACHED_RESPONSES_PER_PROMPT = 5

MAX_CUSTOM_PERSONAS_PER_USER = 10
MIN_PERSONA_TEMPERATURE = 0.1
MAX_PERSONA_TEMPERATURE = 1.2
DEFAULT_PERSONA_EMOJI = "\N{ROBOT FACE}"
