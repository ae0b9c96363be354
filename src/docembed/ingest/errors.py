"""Exception taxonomy for the ingest pipeline.

Only ``QuotaExceededError`` and ``PersistenceError`` are fatal for a file.
``ParseFailure`` is always absorbed by a fallback, and ``EmbeddingProviderError``
is scoped to a single chunk. None of them abort a batch.
"""

from __future__ import annotations

from dataclasses import dataclass

API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED = "content_quota_exceeded"


class IngestError(Exception):
    """Base class for ingest pipeline errors."""


class ParseFailure(IngestError):
    """A document could not be parsed with a given grammar."""


class MdxSyntaxError(ParseFailure):
    """Content is valid Markdown but not valid MDX."""


class EmbeddingProviderError(IngestError):
    """The embedding provider failed after all retry attempts."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class QuotaExceededError(IngestError):
    """Embedding a file would push the team past its token allowance."""

    error_id = API_ERROR_ID_CONTENT_TOKEN_QUOTA_EXCEEDED

    def __init__(self, token_allowance: int, used_tokens: int, attempted_tokens: int) -> None:
        self.token_allowance = token_allowance
        self.used_tokens = used_tokens
        self.attempted_tokens = attempted_tokens
        super().__init__(
            f"Training quota reached. Your plan allows you to process "
            f"{token_allowance} tokens (approximately "
            f"{tokens_to_approx_paragraphs(token_allowance)} paragraphs). "
            f"You have currently processed {min(used_tokens, token_allowance)} tokens, "
            f"and you are attempting to process additional {attempted_tokens} tokens, "
            f"which brings you past the limit. Please upgrade your plan."
        )


class PersistenceError(IngestError):
    """Section rows could not be stored, even one at a time."""


@dataclass(frozen=True)
class EmbeddingsError:
    """A per-file error surfaced to the caller.

    ``id`` is set for conditions the caller should special-case without
    string matching (e.g. ``content_quota_exceeded``). Quota errors also carry
    the tokens the file tried to add in ``attempted_tokens``.
    """

    path: str
    message: str
    id: str | None = None
    attempted_tokens: int | None = None


def tokens_to_approx_paragraphs(num_tokens: int) -> int:
    """Rough paragraph count for a token amount (~200 tokens per paragraph)."""
    paragraphs = num_tokens / 200
    if paragraphs < 10:
        return int(paragraphs)
    # Round down to the leading digit's order of magnitude: 1234 -> 1000.
    magnitude = 10 ** (len(str(int(paragraphs))) - 1)
    return int(paragraphs // magnitude * magnitude)
