"""docembed rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from docembed.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from docembed.ingest.errors import tokens_to_approx_paragraphs

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for the embedding *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".docembed.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  docembed train --source <docs-dir>"
    )


def err_source_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] Source directory not found: '{path}'\n"
        "  Pass an existing directory:  docembed train --source ./docs"
    )


def err_config(message: str) -> str:
    """Invalid docembed.yaml / global config / environment override."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix docembed.yaml (or ~/.docembed/config.yaml) and run again."
    )


def err_quota_exceeded(
    token_allowance: int, used_tokens: int, attempted_tokens: int | None = None
) -> str:
    """Training stopped because the token allowance was reached."""
    attempted = (
        f"  Training attempted {attempted_tokens} more tokens, which brings you past the limit.\n"
        if attempted_tokens is not None
        else ""
    )
    return (
        "[red]Error:[/] Training quota reached.\n"
        f"  Your plan allows {token_allowance} tokens "
        f"(approximately {tokens_to_approx_paragraphs(token_allowance)} paragraphs); "
        f"{min(used_tokens, token_allowance)} are already used.\n"
        f"{attempted}"
        "  Raise quota.token_allowance in docembed.yaml "
        "(or set DOCEMBED_TOKEN_ALLOWANCE), or exclude files with --exclude."
    )
