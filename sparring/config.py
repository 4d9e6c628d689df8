"""Session timing and engine configuration.

Defaults match the reel prototype: a half-second pause before the
automated opponent replies and 1.2s for the failure state to show
before the session closes. Every value can be overridden from the
environment (SPARRING_*) or by CLI flags.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

# Italian Game after 1.e4 e5 2.Nf3 Nc6 3.Bc4, Black to move
DEFAULT_CUE_FEN = "r1bqkbnr/pppp1ppp/2n5/4p3/2B1P3/5N2/PPPP1PPP/RNBQK2R b KQkq - 3 3"
DEFAULT_PLAYER_SIDE = "b"

_ENV_FIELDS = {
    "SPARRING_OPPONENT_DELAY": ("opponent_move_delay", float),
    "SPARRING_FAIL_DELAY": ("fail_settle_delay", float),
    "SPARRING_DEPTH": ("search_depth", int),
    "SPARRING_EVAL_TIMEOUT": ("evaluation_timeout", float),
    "SPARRING_READY_TIMEOUT": ("ready_timeout", float),
}


@dataclass(frozen=True)
class SessionConfig:
    opponent_move_delay: float = 0.5
    fail_settle_delay: float = 1.2
    search_depth: int = 12
    evaluation_timeout: float = 15.0
    ready_timeout: float = 10.0
    stockfish_path: str | None = None

    def __post_init__(self) -> None:
        if self.search_depth < 1:
            raise ValueError(f"search_depth must be >= 1, got {self.search_depth}")
        for name in ("opponent_move_delay", "fail_settle_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        for name in ("evaluation_timeout", "ready_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SessionConfig:
        """Build a config from SPARRING_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ.

        Raises:
            ValueError: If a variable holds a malformed number.
        """
        env = os.environ if environ is None else environ
        overrides: dict = {}
        for var, (field_name, cast) in _ENV_FIELDS.items():
            raw = env.get(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                overrides[field_name] = cast(raw)
            except ValueError:
                raise ValueError(f"{var} must be a number, got {raw!r}") from None

        path = env.get("SPARRING_STOCKFISH")
        if path:
            overrides["stockfish_path"] = path
        return cls(**overrides)

    def with_overrides(self, **changes) -> SessionConfig:
        """Return a copy with the non-None keyword values applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
