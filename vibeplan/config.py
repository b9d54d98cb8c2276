"""Configuration for vibeplan, loaded once per process from TOML + environment.

Settings live in ``$VIBEPLAN_HOME/config.toml`` (default ``~/.vibeplan``)::

    [llm]
    provider = "groq"
    model = "llama-3.3-70b-versatile"

    [embeddings]
    provider = "hash"

    [summaries]
    enabled = true

Every section maps onto one dataclass below.  The resulting :class:`Settings`
object is handed to each component explicitly; nothing reads the environment
after :func:`load_settings` returns.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from .errors import ConfigError

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.environ.get("VIBEPLAN_HOME", str(Path.home() / ".vibeplan"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Default models per LLM provider
DEFAULT_MODELS: Dict[str, str] = {
    "groq": "llama-3.3-70b-versatile",
    "openai": "gpt-4o-mini",
    "openrouter": "meta-llama/llama-3.3-70b-instruct",
    "ollama": "qwen2.5-coder:7b",
}

DEFAULT_ENDPOINTS: Dict[str, str] = {
    "groq": "https://api.groq.com/openai/v1/chat/completions",
    "openai": "https://api.openai.com/v1/chat/completions",
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "ollama": "http://127.0.0.1:11434/api/chat",
}


@dataclass
class LLMSettings:
    provider: str = "groq"
    model: str = ""
    api_key: str = ""
    endpoint: str = ""
    timeout: float = 60.0

    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS.get(self.provider, DEFAULT_MODELS["groq"])

    def resolved_endpoint(self) -> str:
        return self.endpoint or DEFAULT_ENDPOINTS.get(self.provider, DEFAULT_ENDPOINTS["groq"])


@dataclass
class EmbeddingSettings:
    provider: str = "hash"
    model: str = "text-embedding-3-small"
    dim: int = 256
    api_key: str = ""
    endpoint: str = "https://api.openai.com/v1/embeddings"
    timeout: float = 30.0
    # False reproduces the single repository-wide vector mode
    per_record: bool = True


@dataclass
class StoreSettings:
    path: str = ""
    index_name: str = "vibeplan"
    batch_size: int = 50
    batch_pause: float = 0.5
    ready_attempts: int = 30
    ready_interval: float = 1.0


@dataclass
class SummarySettings:
    enabled: bool = True
    concurrency: int = 3
    rate_limit_delay: float = 20.0
    max_tokens_per_minute: int = 5500
    estimated_tokens_per_request: int = 600
    parallel_max_files: int = 7
    inter_call_delay: float = 1.0
    rate_limit_cooldown: float = 120.0
    content_chars: int = 3000
    model: str = "llama-3.1-8b-instant"
    temperature: float = 0.3
    max_tokens: int = 150


@dataclass
class RetrievalSettings:
    top_k: int = 10
    min_similarity: float = 0.1
    content_chars: int = 1500


@dataclass
class PlannerSettings:
    strategy: str = "rules"
    max_phases: int = 7
    fallback_to_rules: bool = True
    temperature: float = 0.3
    max_tokens: int = 4096
    plan_temperature: float = 0.5
    plan_max_tokens: int = 8000


@dataclass
class WorkspaceSettings:
    clone_dir: str = ""
    keep_clones: bool = False
    clone_timeout: float = 300.0
    write_debug_artifacts: bool = False


@dataclass
class Settings:
    """Top-level settings object passed to every component."""

    home: Path = field(default_factory=lambda: BASE_DIR)
    llm: LLMSettings = field(default_factory=LLMSettings)
    embeddings: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    summaries: SummarySettings = field(default_factory=SummarySettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    planner: PlannerSettings = field(default_factory=PlannerSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)

    @property
    def store_path(self) -> Path:
        return Path(self.store.path).expanduser() if self.store.path else self.home / "lancedb"

    @property
    def clone_path(self) -> Path:
        return (
            Path(self.workspace.clone_dir).expanduser()
            if self.workspace.clone_dir
            else self.home / "repos"
        )


_SECTIONS = ("llm", "embeddings", "store", "summaries", "retrieval", "planner", "workspace")


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------

def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the raw TOML document; missing file means empty config."""
    config_file = path or CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {config_file}: {exc}") from exc


def _apply_section(target: Any, values: Dict[str, Any], section: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in values.items():
        if key not in known:
            logger.warning("Ignoring unknown config key [%s].%s", section, key)
            continue
        setattr(target, key, value)


def _apply_env(settings: Settings, env: Dict[str, str]) -> None:
    if env.get("VIBEPLAN_LLM_PROVIDER"):
        settings.llm.provider = env["VIBEPLAN_LLM_PROVIDER"]
    if env.get("VIBEPLAN_LLM_MODEL"):
        settings.llm.model = env["VIBEPLAN_LLM_MODEL"]

    key_var = {
        "groq": "GROQ_API_KEY",
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
    }.get(settings.llm.provider)
    if key_var and env.get(key_var):
        settings.llm.api_key = env[key_var]

    if settings.embeddings.provider == "openai" and env.get("OPENAI_API_KEY"):
        settings.embeddings.api_key = env["OPENAI_API_KEY"]


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
) -> Settings:
    """Build :class:`Settings` from defaults, the TOML file, then environment.

    Args:
        path: Explicit config file (defaults to ``$VIBEPLAN_HOME/config.toml``).
        env:  Environment mapping (defaults to ``os.environ``).
    """
    raw = load_full_config(path)
    settings = Settings()
    if path is not None:
        settings.home = path.parent

    for section in _SECTIONS:
        values = raw.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Config section [{section}] must be a table")
        _apply_section(getattr(settings, section), values, section)

    _apply_env(settings, dict(os.environ) if env is None else env)

    if settings.embeddings.provider == "openai" and settings.embeddings.dim == 256:
        settings.embeddings.dim = 1536
    return settings


# ------------------------------------------------------------------
# Saving
# ------------------------------------------------------------------

def save_llm_config(
    provider: str,
    model: str,
    api_key: str = "",
    endpoint: str = "",
    path: Optional[Path] = None,
) -> Path:
    """Write the ``[llm]`` section, preserving every other section.

    Returns:
        The path of the written config file.
    """
    config_file = path or CONFIG_FILE
    config = load_full_config(config_file)

    config["llm"] = {"provider": provider, "model": model}
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint

    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        toml.dump(config, f)
    return config_file


def ensure_base_dirs(settings: Settings) -> None:
    """Create local storage directories if needed."""
    settings.home.mkdir(parents=True, exist_ok=True)
    settings.store_path.mkdir(parents=True, exist_ok=True)
    settings.clone_path.mkdir(parents=True, exist_ok=True)
