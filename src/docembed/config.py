"""docembed configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (DOCEMBED_EMBEDDING_MODEL, DOCEMBED_TOKEN_ALLOWANCE,
     DOCEMBED_MAX_WORKERS)
  3. Per-project docembed.yaml  (in the project directory)
  4. Global ~/.docembed/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".docembed"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "docembed.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does NOT match max_tokens or
# context_tokens_cutoff.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "training", "processor", "quota"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model and retry policy (docembed.yaml: embedding:)."""

    model: str = "openai/text-embedding-ada-002"
    dimensions: int = 1536
    max_attempts: int = 10
    starting_delay: float = 10.0
    max_delay: float = 60.0
    jitter: bool = True


@dataclass
class ChunkingCfg:
    """Section length budget (docembed.yaml: chunking:).

    The maximum chunk length in characters is
    ``context_tokens_cutoff * cutoff_ratio * chars_per_token``.
    """

    context_tokens_cutoff: int = 4_000
    cutoff_ratio: float = 0.8
    chars_per_token: int = 4
    min_content_length: int = 5


@dataclass
class TrainingCfg:
    """File selection and worker pool size (docembed.yaml: training:)."""

    include: list[str] = field(default_factory=lambda: ["**/*"])
    exclude: list[str] = field(default_factory=list)
    max_workers: int = 10


@dataclass
class RewriteRule:
    pattern: str
    replace: str


@dataclass
class RewriteCfg:
    """Regex rewrite rules applied to Markdown link or image targets."""

    rules: list[RewriteRule] = field(default_factory=list)
    exclude_external_links: bool = False


@dataclass
class ProcessorCfg:
    """Markdown processor options (docembed.yaml: processor:)."""

    link_rewrite: RewriteCfg | None = None
    image_source_rewrite: RewriteCfg | None = None


@dataclass
class QuotaCfg:
    """Team token allowance (docembed.yaml: quota:). None means unlimited."""

    token_allowance: int | None = None


@dataclass
class DocembedConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    training: TrainingCfg = field(default_factory=TrainingCfg)
    processor: ProcessorCfg = field(default_factory=ProcessorCfg)
    quota: QuotaCfg = field(default_factory=QuotaCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate_rewrite(cfg: RewriteCfg | None, name: str) -> None:
    if cfg is None:
        return
    for rule in cfg.rules:
        try:
            re.compile(rule.pattern)
        except re.error as exc:
            raise ConfigError(
                f"processor.{name}: invalid pattern '{rule.pattern}': {exc}"
            ) from exc


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_rewrite(raw: dict[str, Any] | None) -> RewriteCfg | None:
    if not raw:
        return None
    return RewriteCfg(
        rules=[
            RewriteRule(pattern=str(r["pattern"]), replace=str(r.get("replace", "")))
            for r in raw.get("rules", [])
        ],
        exclude_external_links=bool(raw.get("exclude_external_links", False)),
    )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _cfg_from_dict(data: dict[str, Any]) -> DocembedConfig:
    """Build a *DocembedConfig* from a merged raw YAML dict."""
    cfg = DocembedConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_attempts=int(e.get("max_attempts", cfg.embedding.max_attempts)),
            starting_delay=float(e.get("starting_delay", cfg.embedding.starting_delay)),
            max_delay=float(e.get("max_delay", cfg.embedding.max_delay)),
            jitter=bool(e.get("jitter", cfg.embedding.jitter)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            context_tokens_cutoff=int(
                c.get("context_tokens_cutoff", cfg.chunking.context_tokens_cutoff)
            ),
            cutoff_ratio=float(c.get("cutoff_ratio", cfg.chunking.cutoff_ratio)),
            chars_per_token=int(c.get("chars_per_token", cfg.chunking.chars_per_token)),
            min_content_length=int(
                c.get("min_content_length", cfg.chunking.min_content_length)
            ),
        )

    if "training" in data:
        t = data["training"]
        cfg.training = TrainingCfg(
            include=[str(g) for g in t.get("include", cfg.training.include)],
            exclude=[str(g) for g in t.get("exclude", cfg.training.exclude)],
            max_workers=int(t.get("max_workers", cfg.training.max_workers)),
        )

    if "processor" in data:
        p = data["processor"]
        cfg.processor = ProcessorCfg(
            link_rewrite=_parse_rewrite(p.get("link_rewrite")),
            image_source_rewrite=_parse_rewrite(p.get("image_source_rewrite")),
        )

    if "quota" in data:
        q = data["quota"] or {}
        cfg.quota = QuotaCfg(token_allowance=_optional_int(q.get("token_allowance")))

    return cfg


def _apply_env_overrides(cfg: DocembedConfig) -> DocembedConfig:
    """Apply DOCEMBED_* environment variable overrides (layer 2)."""
    if model := os.environ.get("DOCEMBED_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if allowance := os.environ.get("DOCEMBED_TOKEN_ALLOWANCE"):
        try:
            cfg.quota.token_allowance = int(allowance)
        except ValueError as exc:
            raise ConfigError(
                f"DOCEMBED_TOKEN_ALLOWANCE must be an integer, got '{allowance}'"
            ) from exc
    if workers := os.environ.get("DOCEMBED_MAX_WORKERS"):
        try:
            cfg.training.max_workers = int(workers)
        except ValueError as exc:
            raise ConfigError(
                f"DOCEMBED_MAX_WORKERS must be an integer, got '{workers}'"
            ) from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DocembedConfig:
    """Load and return a merged *DocembedConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *docembed.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *DocembedConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, if a
            rewrite rule has an invalid regex, or if an env override is malformed.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    _validate_rewrite(cfg.processor.link_rewrite, "link_rewrite")
    _validate_rewrite(cfg.processor.image_source_rewrite, "image_source_rewrite")

    return _apply_env_overrides(cfg)
