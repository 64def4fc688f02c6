"""koso configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (KOSO_GENERATION_MODEL, KOSO_EMBEDDING_MODEL)
  3. Per-project koso.yaml  (next to .koso.db)
  4. Global ~/.koso/config.yaml  (model defaults only — no API keys)
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".koso"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "koso.yaml"

# Matches api_key, api-key, api_secret, *_token, token, *_secret, secret,
# password, passwd, credential(s). Does NOT match max_tokens or overlap_tokens.
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
    ["embedding", "generation", "chunking", "search", "linking", "clustering"]
)

DEFAULT_SECTIONS: tuple[str, ...] = (
    "Problem",
    "Goals & Success Metrics",
    "User Stories",
    "Requirements",
    "Open Questions",
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
    """Embedding model configuration (koso.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


@dataclass
class GenerationCfg:
    """LLM configuration for clustering, scoring and reports (koso.yaml: generation:)."""

    model: str = "anthropic/claude-haiku-4-5-20251001"
    report_model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 1024


@dataclass
class ChunkingCfg:
    """Chunk budget in estimated tokens (koso.yaml: chunking:)."""

    max_tokens: int = 500
    overlap_tokens: int = 50


@dataclass
class SearchCfg:
    """Similarity search defaults (koso.yaml: search:)."""

    limit: int = 10
    threshold: float = 0.0


@dataclass
class LinkingCfg:
    """Auto-linking thresholds and caps (koso.yaml: linking:)."""

    threshold: float = 0.75
    evidence_limit: int = 5
    spec_limit: int = 10


@dataclass
class ClusteringCfg:
    """Cluster recompute policy (koso.yaml: clustering:).

    Attributes:
        min_evidence: Below this many evidence items clustering never runs.
        max_evidence: Most-recent evidence items loaded per recompute.
        lease_minutes: How long a ``computing`` status blocks another run.
        stale_hours: Age after which clusters are always recomputed.
        growth_trigger: New evidence items that force a recompute.
        sections: Document section names scored for relevance.
    """

    min_evidence: int = 3
    max_evidence: int = 200
    lease_minutes: int = 5
    stale_hours: int = 6
    growth_trigger: int = 5
    sections: list[str] = field(default_factory=lambda: list(DEFAULT_SECTIONS))


@dataclass
class KosoConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    linking: LinkingCfg = field(default_factory=LinkingCfg)
    clustering: ClusteringCfg = field(default_factory=ClusteringCfg)


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


def _validate(cfg: KosoConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.chunking.max_tokens < 1:
        raise ConfigError(f"chunking.max_tokens must be >= 1, got {cfg.chunking.max_tokens}")
    if not 0 <= cfg.chunking.overlap_tokens < cfg.chunking.max_tokens:
        raise ConfigError("chunking.overlap_tokens must be in [0, chunking.max_tokens)")
    if not 0.0 <= cfg.linking.threshold <= 1.0:
        raise ConfigError(f"linking.threshold must be in [0, 1], got {cfg.linking.threshold}")
    if cfg.clustering.min_evidence < 1:
        raise ConfigError("clustering.min_evidence must be >= 1")


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


def _cfg_from_dict(data: dict[str, Any]) -> KosoConfig:
    """Build a *KosoConfig* from a merged raw YAML dict."""
    cfg = KosoConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            report_model=str(g.get("report_model", cfg.generation.report_model)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_tokens=int(c.get("max_tokens", cfg.chunking.max_tokens)),
            overlap_tokens=int(c.get("overlap_tokens", cfg.chunking.overlap_tokens)),
        )

    if "search" in data:
        s = data["search"]
        cfg.search = SearchCfg(
            limit=int(s.get("limit", cfg.search.limit)),
            threshold=float(s.get("threshold", cfg.search.threshold)),
        )

    if "linking" in data:
        ln = data["linking"]
        cfg.linking = LinkingCfg(
            threshold=float(ln.get("threshold", cfg.linking.threshold)),
            evidence_limit=int(ln.get("evidence_limit", cfg.linking.evidence_limit)),
            spec_limit=int(ln.get("spec_limit", cfg.linking.spec_limit)),
        )

    if "clustering" in data:
        cl = data["clustering"]
        cfg.clustering = ClusteringCfg(
            min_evidence=int(cl.get("min_evidence", cfg.clustering.min_evidence)),
            max_evidence=int(cl.get("max_evidence", cfg.clustering.max_evidence)),
            lease_minutes=int(cl.get("lease_minutes", cfg.clustering.lease_minutes)),
            stale_hours=int(cl.get("stale_hours", cfg.clustering.stale_hours)),
            growth_trigger=int(cl.get("growth_trigger", cfg.clustering.growth_trigger)),
            sections=[str(s) for s in cl.get("sections", cfg.clustering.sections)],
        )

    return cfg


def _apply_env_overrides(cfg: KosoConfig) -> KosoConfig:
    """Apply KOSO_* environment variable overrides."""
    if model := os.environ.get("KOSO_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("KOSO_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> KosoConfig:
    """Load and return a merged *KosoConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *koso.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *KosoConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is out of range.
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

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path, *, overwrite: bool = False) -> Path:
    """Write a commented koso.yaml with defaults into *project_dir*.

    Returns the path. Existing files are left alone unless *overwrite*.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists() and not overwrite:
        return target

    sections = "\n".join(f"    - {s}" for s in DEFAULT_SECTIONS)
    content = (
        "# koso project configuration.\n"
        "# NEVER store API keys here — use environment variables:\n"
        "#   export OPENAI_API_KEY=sk-...\n"
        "#   export ANTHROPIC_API_KEY=sk-ant-...\n"
        "\n"
        "embedding:\n"
        "  model: openai/text-embedding-3-small\n"
        "  dimensions: 1536\n"
        "\n"
        "generation:\n"
        "  model: anthropic/claude-haiku-4-5-20251001\n"
        "\n"
        "clustering:\n"
        "  sections:\n"
        f"{sections}\n"
    )
    target.write_text(content, encoding="utf-8")
    return target
