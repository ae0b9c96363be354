"""Token estimation for chunk budgets."""

from __future__ import annotations

import math
from typing import Protocol

from docembed.config import ChunkingCfg


class TokenEstimator(Protocol):
    """Anything that can approximate the token count of a string."""

    def count(self, text: str) -> int: ...


class CharsPerTokenEstimator:
    """Fixed characters-per-token heuristic (4 chars ~ 1 token for English)."""

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def count(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)


def max_chunk_length(cfg: ChunkingCfg | None = None) -> int:
    """Maximum chunk length in characters for a chunking config.

    ``context_tokens_cutoff * cutoff_ratio * chars_per_token``; 12 800 with defaults.
    """
    cfg = cfg or ChunkingCfg()
    return int(cfg.context_tokens_cutoff * cfg.cutoff_ratio * cfg.chars_per_token)
