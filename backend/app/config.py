"""
Scheduler configuration.

Uses environment variables (optionally from a .env file) with sensible defaults.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


# Default game length when neither the game nor the season specifies one
DEFAULT_GAME_MINUTES = _int_env("SCHEDULER_DEFAULT_GAME_MINUTES", 60)

# Spacing between candidate start times inside a field availability window
DEFAULT_START_INCREMENT_MINUTES = _int_env("SCHEDULER_DEFAULT_START_INCREMENT_MINUTES", 30)

# Umpires required per game when the season config does not say
DEFAULT_UMPIRES_PER_GAME = _int_env("SCHEDULER_DEFAULT_UMPIRES_PER_GAME", 2)

# Upper bound on umpire slots a game record can hold (umpire1..umpire4)
MAX_UMPIRES_PER_GAME = _int_env("SCHEDULER_MAX_UMPIRES_PER_GAME", 4)

# Search effort bound: feasible candidates collected per game before ranking
MAX_CANDIDATES_PER_GAME = _int_env("SCHEDULER_MAX_CANDIDATES_PER_GAME", 64)
