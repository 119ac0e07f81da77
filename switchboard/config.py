"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from switchboard.llm.providers.base import Credentials, ProviderKind
from switchboard.llm.types import GenerationParams

DEFAULT_CONFIG_PATH = "~/.switchboard/config.yaml"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ProviderConfig:
    kind: str = "openai"
    model: str = "gpt-4o-mini"
    base_url: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: list[str] = field(default_factory=list)
    tool_choice: str = "auto"
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    supports_tools: bool = True
    extra_headers: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)

    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "") if self.api_key_env else ""

    def credentials(self) -> Credentials:
        return Credentials(api_key=self.api_key(), extra_headers=dict(self.extra_headers))

    def generation_params(self) -> GenerationParams:
        return GenerationParams(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            top_k=self.top_k,
            stop=tuple(self.stop),
            tool_choice=self.tool_choice,
            extra=dict(self.extra),
        )


@dataclass
class RuntimeConfig:
    max_iterations: int = 8
    max_retries: int = 2
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    max_malformed_chunks: int = 8
    stream: bool = True


@dataclass
class ToolsConfig:
    enabled: list[str] = field(default_factory=list)
    builtin: list[str] = field(default_factory=lambda: ["calculator", "current_time"])
    timeout_seconds: float = 30.0
    sandbox_python: str = ""
    audit_log_path: str = "~/.switchboard/audit.jsonl"
    audit_max_size_mb: int = 10
    audit_keep_files: int = 5
    redaction_patterns: list[str] = field(default_factory=list)


@dataclass
class PluginsConfig:
    enabled: bool = False
    allow_distributions: list[str] = field(default_factory=list)
    allow_tools: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class SwitchboardConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'provider.model')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the config is usable."""
        problems: list[str] = []
        try:
            ProviderKind(self.provider.kind)
        except ValueError:
            problems.append(
                f"provider.kind: unknown provider {self.provider.kind!r} "
                f"(expected one of {', '.join(k.value for k in ProviderKind)})"
            )
        if not self.provider.model:
            problems.append("provider.model: must not be empty")
        if self.provider.connect_timeout <= 0 or self.provider.read_timeout <= 0:
            problems.append("provider: timeouts must be positive")
        if self.runtime.max_iterations < 1:
            problems.append("runtime.max_iterations: must be at least 1")
        if self.runtime.max_retries < 0:
            problems.append("runtime.max_retries: must not be negative")
        if self.runtime.max_malformed_chunks < 1:
            problems.append("runtime.max_malformed_chunks: must be at least 1")
        if self.tools.timeout_seconds <= 0:
            problems.append("tools.timeout_seconds: must be positive")
        return problems


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Set ``section.field`` on *obj*; unknown keys raise ``KeyError``."""
    *sections, name = dotpath.split(".")
    for section in sections:
        if not hasattr(obj, section):
            raise KeyError(f"Unknown config key: {dotpath}")
        obj = getattr(obj, section)
    if not hasattr(obj, name):
        raise KeyError(f"Unknown config key: {dotpath}")
    setattr(obj, name, value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Nested dicts merge key by key; any other overlay value replaces the base one."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _coerce(value: str, target_type: type) -> Any:
    if target_type is bool:
        return value.strip().lower() in _TRUTHY
    if target_type is list:
        # Comma-separated; blanks are dropped.
        return [item.strip() for item in value.split(",") if item.strip()]
    if target_type in (int, float):
        return target_type(value)
    return value


def _build_section(cls: type, raw: dict | None) -> Any:
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def _read_yaml(path: Path) -> dict:
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "SWITCHBOARD_PROVIDER_KIND":            ("provider.kind", str),
    "SWITCHBOARD_PROVIDER_MODEL":           ("provider.model", str),
    "SWITCHBOARD_PROVIDER_BASE_URL":        ("provider.base_url", str),
    "SWITCHBOARD_PROVIDER_API_KEY_ENV":     ("provider.api_key_env", str),
    "SWITCHBOARD_PROVIDER_TEMPERATURE":     ("provider.temperature", float),
    "SWITCHBOARD_PROVIDER_MAX_TOKENS":      ("provider.max_tokens", int),
    "SWITCHBOARD_PROVIDER_CONNECT_TIMEOUT": ("provider.connect_timeout", float),
    "SWITCHBOARD_PROVIDER_READ_TIMEOUT":    ("provider.read_timeout", float),
    "SWITCHBOARD_PROVIDER_SUPPORTS_TOOLS":  ("provider.supports_tools", bool),
    "SWITCHBOARD_RUNTIME_MAX_ITERATIONS":   ("runtime.max_iterations", int),
    "SWITCHBOARD_RUNTIME_MAX_RETRIES":      ("runtime.max_retries", int),
    "SWITCHBOARD_RUNTIME_BACKOFF_BASE":     ("runtime.backoff_base", float),
    "SWITCHBOARD_RUNTIME_BACKOFF_MAX":      ("runtime.backoff_max", float),
    "SWITCHBOARD_RUNTIME_MAX_MALFORMED":    ("runtime.max_malformed_chunks", int),
    "SWITCHBOARD_TOOLS_ENABLED":            ("tools.enabled", list),
    "SWITCHBOARD_TOOLS_BUILTIN":            ("tools.builtin", list),
    "SWITCHBOARD_TOOLS_TIMEOUT":            ("tools.timeout_seconds", float),
    "SWITCHBOARD_TOOLS_SANDBOX_PYTHON":     ("tools.sandbox_python", str),
    "SWITCHBOARD_TOOLS_AUDIT_PATH":         ("tools.audit_log_path", str),
    "SWITCHBOARD_TOOLS_AUDIT_SIZE_MB":      ("tools.audit_max_size_mb", int),
    "SWITCHBOARD_TOOLS_AUDIT_KEEP":         ("tools.audit_keep_files", int),
    "SWITCHBOARD_TOOLS_REDACTION":          ("tools.redaction_patterns", list),
    "SWITCHBOARD_PLUGINS_ENABLED":          ("plugins.enabled", bool),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> SwitchboardConfig:
    """
    Layer every configuration source into one ``SwitchboardConfig``.

    Parameters
    ----------
    config_path : str | Path | None
        YAML file to read.  A missing file is the same as an empty one.
    profile : str | None
        Entry under ``profiles:`` merged over the file's top level.
        Unknown names raise ``KeyError``.
    cli_overrides : dict | None
        ``"section.field" -> value`` pairs from command-line flags.
    """
    raw = _read_yaml(Path(config_path).expanduser()) if config_path is not None else {}

    if profile:
        overlay = (raw.get("profiles") or {}).get(profile)
        if overlay is None:
            raise KeyError(f"Unknown profile: {profile}")
        raw = _deep_merge(raw, overlay)

    cfg = SwitchboardConfig(
        provider=_build_section(ProviderConfig, raw.get("provider")),
        runtime=_build_section(RuntimeConfig, raw.get("runtime")),
        tools=_build_section(ToolsConfig, raw.get("tools")),
        plugins=_build_section(PluginsConfig, raw.get("plugins")),
        profiles=raw.get("profiles") or {},
    )

    for var, (dotpath, target_type) in _ENV_MAP.items():
        text = os.environ.get(var)
        if text is None:
            continue
        try:
            _apply_dotpath(cfg, dotpath, _coerce(text, target_type))
        except ValueError:
            raise ValueError(f"{var}={text!r} is not a valid {target_type.__name__}") from None

    for dotpath, value in (cli_overrides or {}).items():
        _apply_dotpath(cfg, dotpath, value)

    return cfg
