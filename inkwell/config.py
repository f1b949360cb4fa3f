"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < explicit overrides

The generation core only ever *reads* configuration.  It asks a
:class:`ConfigSource` for the current :class:`InkwellConfig` at the start of
every call, so a host application may hot-reload settings between calls.
"""

from __future__ import annotations

import enum
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class ProviderKind(str, enum.Enum):
    OPENROUTER = "openrouter"
    GEMINI = "gemini"
    CLAUDE = "claude"
    OLLAMA = "ollama"
    OPENAI_COMPATIBLE = "openai_compatible"

    @classmethod
    def parse(cls, value: str | None) -> ProviderKind | None:
        """Return the kind for *value* (case-insensitive), or ``None``."""
        if not value:
            return None
        normalized = value.strip().lower().replace("-", "_")
        if normalized == "openaicompatible":
            normalized = cls.OPENAI_COMPATIBLE.value
        try:
            return cls(normalized)
        except ValueError:
            return None


# The field of ProviderConfig that must be non-empty for a provider to count
# as available.  Some backends key on a credential, local ones on an endpoint.
PROVIDER_REQUIREMENTS: dict[ProviderKind, str] = {
    ProviderKind.OPENROUTER: "api_key",
    ProviderKind.GEMINI: "api_key",
    ProviderKind.CLAUDE: "api_key",
    ProviderKind.OLLAMA: "base_url",
    ProviderKind.OPENAI_COMPATIBLE: "base_url",
}

PROVIDER_DISPLAY_NAMES: dict[ProviderKind, str] = {
    ProviderKind.OPENROUTER: "OpenRouter",
    ProviderKind.GEMINI: "Google Gemini",
    ProviderKind.CLAUDE: "Claude",
    ProviderKind.OLLAMA: "Ollama",
    ProviderKind.OPENAI_COMPATIBLE: "OpenAI-compatible",
}


@dataclass
class ProviderConfig:
    enabled: bool = False
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    temperature: float = 0.7
    top_p: float = 1.0
    top_k: int = 0
    max_tokens: int = 0
    extra: dict = field(default_factory=dict)


def _default_providers() -> dict[str, ProviderConfig]:
    return {
        ProviderKind.OPENROUTER.value: ProviderConfig(
            base_url="https://openrouter.ai/api/v1",
        ),
        ProviderKind.GEMINI.value: ProviderConfig(
            base_url="https://generativelanguage.googleapis.com/v1beta",
            model="gemini-2.5-flash",
        ),
        ProviderKind.CLAUDE.value: ProviderConfig(
            base_url="https://api.anthropic.com/v1",
            model="claude-3-5-sonnet-20241022",
        ),
        ProviderKind.OLLAMA.value: ProviderConfig(
            base_url="http://localhost:11434",
            max_tokens=2000,
        ),
        ProviderKind.OPENAI_COMPATIBLE.value: ProviderConfig(
            base_url="http://localhost:1234",
            max_tokens=2000,
        ),
    }


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class GenerationConfig:
    timeout_seconds: float = 90.0
    # Provider tried for a model id without a recognised provider prefix,
    # then the single alternate.  Only the first two entries are used.
    fallback_order: list[str] = field(
        default_factory=lambda: ["openrouter", "gemini"]
    )
    codex_token_budget: int = 1000
    token_encoding: str | None = None
    app_title: str = "Inkwell"
    app_url: str = ""


@dataclass
class SceneSummaryConfig:
    model: str = ""
    temperature: float = 0.7
    custom_instruction: str = ""
    custom_prompt: str = ""
    use_custom_prompt: bool = False


@dataclass
class SceneTitleConfig:
    model: str = ""
    max_words: int = 5
    style: str = "concise"
    language: str = "english"
    include_genre: bool = False
    temperature: float = 0.3
    custom_instruction: str = ""
    custom_prompt: str = ""
    use_custom_prompt: bool = False


@dataclass
class StagingNotesConfig:
    model: str = ""
    temperature: float = 0.7
    custom_instruction: str = ""
    custom_prompt: str = ""
    use_custom_prompt: bool = False


@dataclass
class BeatConfig:
    model: str = ""
    temperature: float = 0.7
    top_p: float | None = None
    word_count: int = 400
    custom_prompt: str = ""


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class InkwellConfig:
    providers: dict[str, ProviderConfig] = field(default_factory=_default_providers)
    selected_model: str = ""
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    scene_summary: SceneSummaryConfig = field(default_factory=SceneSummaryConfig)
    scene_title: SceneTitleConfig = field(default_factory=SceneTitleConfig)
    staging_notes: StagingNotesConfig = field(default_factory=StagingNotesConfig)
    beat: BeatConfig = field(default_factory=BeatConfig)

    def provider(self, kind: ProviderKind | str) -> ProviderConfig:
        """Return the section for *kind* (a disabled default if absent)."""
        key = kind.value if isinstance(kind, ProviderKind) else kind
        return self.providers.get(key) or ProviderConfig()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath (attributes or dict keys) and set the final item."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = obj[part] if isinstance(obj, dict) else getattr(obj, part)
    if isinstance(obj, dict):
        obj[parts[-1]] = value
    else:
        setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _build_providers(raw: dict) -> dict[str, ProviderConfig]:
    providers = _default_providers()
    for key, section in (raw or {}).items():
        kind = ProviderKind.parse(key)
        if kind is None or not isinstance(section, dict):
            continue
        merged = _deep_merge(asdict(providers[kind.value]), section)
        providers[kind.value] = _build_section(ProviderConfig, merged)
    return providers


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "INKWELL_SELECTED_MODEL":   ("selected_model", str),
    "INKWELL_TIMEOUT":          ("generation.timeout_seconds", float),
    "INKWELL_FALLBACK_ORDER":   ("generation.fallback_order", list),
    "INKWELL_CODEX_BUDGET":     ("generation.codex_token_budget", int),
    "INKWELL_TOKEN_ENCODING":   ("generation.token_encoding", str),
}

for _kind in ProviderKind:
    _prefix = f"INKWELL_{_kind.name}"
    _ENV_MAP[f"{_prefix}_ENABLED"] = (f"providers.{_kind.value}.enabled", bool)
    _ENV_MAP[f"{_prefix}_API_KEY"] = (f"providers.{_kind.value}.api_key", str)
    _ENV_MAP[f"{_prefix}_BASE_URL"] = (f"providers.{_kind.value}.base_url", str)
    _ENV_MAP[f"{_prefix}_MODEL"] = (f"providers.{_kind.value}.model", str)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
    environ: dict[str, str] | None = None,
) -> InkwellConfig:
    """
    Build an InkwellConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  overrides

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    overrides : dict of dotpath -> value overrides
    environ : environment mapping (defaults to ``os.environ``)
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}

    cfg = InkwellConfig(
        providers=_build_providers(raw.get("providers", {})),
        selected_model=raw.get("selected_model", "") or "",
        generation=_build_section(GenerationConfig, raw.get("generation", {})),
        scene_summary=_build_section(SceneSummaryConfig, raw.get("scene_summary", {})),
        scene_title=_build_section(SceneTitleConfig, raw.get("scene_title", {})),
        staging_notes=_build_section(StagingNotesConfig, raw.get("staging_notes", {})),
        beat=_build_section(BeatConfig, raw.get("beat", {})),
    )

    env = os.environ if environ is None else environ
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = env.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    if overrides:
        for dotpath, value in overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class ConfigSource:
    """Hands out the current configuration; read synchronously per call."""

    def current(self) -> InkwellConfig:
        raise NotImplementedError


class StaticConfigSource(ConfigSource):
    def __init__(self, config: InkwellConfig | None = None) -> None:
        self._config = config or InkwellConfig()

    def current(self) -> InkwellConfig:
        return self._config

    def replace(self, config: InkwellConfig) -> None:
        self._config = config


class FileConfigSource(ConfigSource):
    """Loads a YAML file once and again on every :meth:`reload`."""

    def __init__(
        self,
        config_path: str | Path,
        *,
        overrides: dict[str, Any] | None = None,
    ) -> None:
        self._path = Path(config_path)
        self._overrides = dict(overrides or {})
        self._config = load_config(self._path, overrides=self._overrides)

    def current(self) -> InkwellConfig:
        return self._config

    def reload(self) -> InkwellConfig:
        self._config = load_config(self._path, overrides=self._overrides)
        return self._config
