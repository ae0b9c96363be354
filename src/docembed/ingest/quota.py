"""Quota enforcement for embedding tokens.

A ``QuotaLedger`` is shared by every worker of one training batch. Each file
gets a ``FileQuota`` that reserves tokens chunk by chunk; reservations are
committed when the file is saved and released when it is reverted, so the
committed total can never pass the allowance even with parallel workers.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from docembed.config import QuotaCfg
from docembed.db.repository import Repository
from docembed.ingest.errors import QuotaExceededError


@dataclass(frozen=True)
class TokenAllowanceInfo:
    """Allowance snapshot. ``token_allowance=None`` means unlimited."""

    token_allowance: int | None
    used_tokens: int = 0

    @property
    def remaining_tokens(self) -> int | None:
        if self.token_allowance is None:
            return None
        return max(0, self.token_allowance - self.used_tokens)


AllowanceProvider = Callable[[str], TokenAllowanceInfo]
"""Called with a project id; returns that project's allowance snapshot."""


class QuotaLedger:
    """Thread-safe token ledger seeded from a ``TokenAllowanceInfo`` snapshot."""

    def __init__(self, info: TokenAllowanceInfo) -> None:
        self._info = info
        self._lock = threading.Lock()
        self._reserved = 0
        self._committed = 0

    @property
    def info(self) -> TokenAllowanceInfo:
        return self._info

    @property
    def committed_tokens(self) -> int:
        with self._lock:
            return self._committed

    def reserve(self, tokens: int, file_tokens: int) -> None:
        """Reserve *tokens* more for a file that already holds *file_tokens*.

        Raises:
            QuotaExceededError: If the reservation would pass the allowance.
                Nothing is reserved in that case.
        """
        with self._lock:
            allowance = self._info.token_allowance
            if allowance is not None:
                used = self._info.used_tokens + self._committed + self._reserved
                if used + tokens > allowance:
                    raise QuotaExceededError(
                        token_allowance=allowance,
                        used_tokens=self._info.used_tokens + self._committed,
                        attempted_tokens=file_tokens + tokens,
                    )
            self._reserved += tokens

    def release(self, tokens: int) -> None:
        with self._lock:
            self._reserved -= tokens

    def commit(self, tokens: int) -> None:
        with self._lock:
            self._reserved -= tokens
            self._committed += tokens


class FileQuota:
    """Per-file view of a ``QuotaLedger``."""

    def __init__(self, ledger: QuotaLedger) -> None:
        self._ledger = ledger
        self.tokens = 0
        self._closed = False

    def charge(self, tokens: int) -> None:
        """Reserve *tokens* for this file. Raises QuotaExceededError on overflow."""
        self._ledger.reserve(tokens, self.tokens)
        self.tokens += tokens

    def commit(self) -> None:
        if not self._closed:
            self._ledger.commit(self.tokens)
            self._closed = True

    def release(self) -> None:
        if not self._closed:
            self._ledger.release(self.tokens)
            self._closed = True


def unlimited_allowance(project_id: str) -> TokenAllowanceInfo:
    return TokenAllowanceInfo(token_allowance=None)


def config_allowance_provider(repo: Repository, cfg: QuotaCfg) -> AllowanceProvider:
    """Allowance from ``quota.token_allowance``; usage from committed file token counts."""

    def _provider(project_id: str) -> TokenAllowanceInfo:
        return TokenAllowanceInfo(
            token_allowance=cfg.token_allowance,
            used_tokens=repo.sum_token_count(project_id),
        )

    return _provider
