"""notebookqa configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (NOTEBOOKQA_GENERATION_MODEL, NOTEBOOKQA_EMBEDDING_MODEL,
                             NOTEBOOKQA_VISION_MODEL, NOTEBOOKQA_SEARCH_MODEL)
  3. Per-project notebookqa.yaml
  4. Global ~/.notebookqa/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
A model set to null (or the env value "none") disables that provider.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".notebookqa"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "notebookqa.yaml"

# Fields that suggest an API key — forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "generation",
        "search",
        "managed_store",
        "chunker",
        "cache",
        "retrieval",
        "limits",
        "indexing",
        "fetch",
    ]
)

_DISABLED_VALUES = {"", "none", "null", "off"}


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
    """Embedding provider (notebookqa.yaml: embedding:)."""

    model: str | None = "openai/text-embedding-3-small"
    timeout: float = 30.0


@dataclass
class GenerationCfg:
    """Generation provider (notebookqa.yaml: generation:).

    Attributes:
        model: LiteLLM chat model; None disables generation (mock answers only).
        vision_model: Model used for image-bearing prompts; defaults to *model*.
        inline: Whether the inline multi-document tier is tried before local chunks.
    """

    model: str | None = "gemini/gemini-2.0-flash"
    vision_model: str | None = None
    inline: bool = True
    max_tokens: int = 2048
    temperature: float = 0.2
    timeout: float = 120.0


@dataclass
class SearchCfg:
    """Live web search provider (notebookqa.yaml: search:). None disables it."""

    model: str | None = None
    timeout: float = 60.0


@dataclass
class ManagedStoreCfg:
    """Provider-hosted retrieval store calls (notebookqa.yaml: managed_store:)."""

    timeout: float = 60.0


@dataclass
class FetchCfg:
    """Source refresh fetchers (notebookqa.yaml: fetch:)."""

    timeout: float = 15.0
    max_chars: int = 50_000


@dataclass
class ChunkerCfg:
    """Character windows used when splitting source text (notebookqa.yaml: chunker:)."""

    chunk_size: int = 800
    overlap: int = 100
    max_chunks: int = 50
    min_chunk_chars: int = 50


@dataclass
class CacheCfg:
    """Answer cache and few-shot thresholds (notebookqa.yaml: cache:)."""

    similarity_threshold: float = 0.85
    word_overlap_threshold: float = 0.70
    candidate_limit: int = 20
    few_shot_threshold: float = 0.40
    few_shot_count: int = 3
    few_shot_pool: int = 50


@dataclass
class RetrievalCfg:
    """Prompt assembly limits (notebookqa.yaml: retrieval:)."""

    top_k: int = 6
    min_context_chars: int = 100
    live_search_below_chars: int = 500
    excerpt_chars: int = 5_000
    max_chars_per_source: int = 8_000
    max_images: int = 10


@dataclass
class LimitsCfg:
    """Ingestion size limits (notebookqa.yaml: limits:)."""

    max_content_chars: int = 5_000_000
    max_payload_bytes: int = 20 * 1024 * 1024


@dataclass
class IndexingCfg:
    """Chunk backfill coordination (notebookqa.yaml: indexing:)."""

    claim_ttl_seconds: float = 300.0


@dataclass
class NotebookConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    managed_store: ManagedStoreCfg = field(default_factory=ManagedStoreCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    limits: LimitsCfg = field(default_factory=LimitsCfg)
    indexing: IndexingCfg = field(default_factory=IndexingCfg)
    fetch: FetchCfg = field(default_factory=FetchCfg)


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


def _coerce(value: Any, default: Any, section: str, key: str) -> Any:
    """Convert a raw YAML value to the type of *default*."""
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, (int, float)) and not isinstance(value, bool):
        try:
            return type(default)(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from exc
    if value is None:
        return None
    return str(value)


def _parse_section(raw: Any, defaults: Any, section: str) -> Any:
    """Overlay the keys of *raw* onto the dataclass instance *defaults*."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping.")
    updates: dict[str, Any] = {}
    for f in fields(defaults):
        if f.name in raw:
            updates[f.name] = _coerce(raw[f.name], getattr(defaults, f.name), section, f.name)
    return replace(defaults, **updates)


def _cfg_from_dict(data: dict[str, Any]) -> NotebookConfig:
    """Build a *NotebookConfig* from a merged raw YAML dict."""
    cfg = NotebookConfig()
    for section in _KNOWN_SECTIONS:
        if section in data:
            setattr(cfg, section, _parse_section(data[section], getattr(cfg, section), section))

    if cfg.chunker.overlap >= cfg.chunker.chunk_size:
        raise ConfigError(
            f"chunker.overlap ({cfg.chunker.overlap}) must be smaller than "
            f"chunker.chunk_size ({cfg.chunker.chunk_size})."
        )
    return cfg


def _env_model(name: str) -> tuple[bool, str | None]:
    """Return (present, model) for a model env var; disabled values map to None."""
    value = os.environ.get(name)
    if value is None:
        return False, None
    return True, None if value.strip().lower() in _DISABLED_VALUES else value.strip()


def _apply_env_overrides(cfg: NotebookConfig) -> NotebookConfig:
    """Apply NOTEBOOKQA_* environment variable overrides."""
    present, model = _env_model("NOTEBOOKQA_GENERATION_MODEL")
    if present:
        cfg.generation.model = model
    present, model = _env_model("NOTEBOOKQA_VISION_MODEL")
    if present:
        cfg.generation.vision_model = model
    present, model = _env_model("NOTEBOOKQA_EMBEDDING_MODEL")
    if present:
        cfg.embedding.model = model
    present, model = _env_model("NOTEBOOKQA_SEARCH_MODEL")
    if present:
        cfg.search.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> NotebookConfig:
    """Load and return a merged *NotebookConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *notebookqa.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            has the wrong type.
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
    return _apply_env_overrides(cfg)


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Create ``~/.notebookqa/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# notebookqa global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export GEMINI_API_KEY=...\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: gemini/gemini-2.0-flash\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
