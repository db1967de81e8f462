"""
Configuration management for notex runs.

Settings come from, in increasing priority: built-in defaults, an
optional TOML file (``notex.toml``), environment variables, and CLI flags.
The resolved RunConfig is immutable for the duration of a run.
"""

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .types import OutputFormat


CONFIG_FILENAME = "notex.toml"
CONFIG_VERSION = 1

DEFAULT_BASE_URL = "http://localhost:8080/v1"
DEFAULT_API_KEY = "sk-no-key-required"
DEFAULT_MODEL = "gpt-3.5-turbo"

CONFIG_HEADER = """# notex configuration
#
# [run] holds pipeline settings; [oracle] names the chat provider
# (openai-compatible, openai, anthropic, ollama) and its parameters.
# API keys are read from NOTEX_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY.
# Environment variables and command-line flags override this file.

"""


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable configuration snapshot for one run.

    Attributes:
        concurrency: Maximum oracle requests in flight, shared by all passes
        max_retries: Retries per task after the first attempt
        dry_run: Categorize and plan only; no enhancement, no writes
        reorganize: Run the reorganization pass
        cross_ref: Run the cross-reference pass
        format: Output serialization style
    """
    concurrency: int = 8
    max_retries: int = 3
    dry_run: bool = False
    reorganize: bool = False
    cross_ref: bool = False
    format: OutputFormat = OutputFormat.MARKDOWN
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    default_category: str = "uncategorized"
    summary_chars: int = 500
    listing_batch_size: int = 200
    exclude: tuple[str, ...] = ()

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be > 0 (got {self.concurrency})")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 (got {self.max_retries})")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff delays must be >= 0")
        if self.listing_batch_size < 1:
            raise ValueError("listing_batch_size must be > 0")
        if not self.default_category.strip():
            raise ValueError("default_category must not be empty")
        if not isinstance(self.format, OutputFormat):
            object.__setattr__(self, "format", OutputFormat(self.format))
        if not isinstance(self.exclude, tuple):
            object.__setattr__(self, "exclude", tuple(self.exclude))


@dataclass
class OracleConfig:
    """Which chat provider to use and its parameters."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotexConfig:
    """Complete configuration as read from disk and environment."""
    run: RunConfig = field(default_factory=RunConfig)
    oracle: OracleConfig = field(default_factory=lambda: detect_default_oracle())
    path: Optional[Path] = None


def detect_default_oracle() -> OracleConfig:
    """
    Pick a chat provider for the current environment.

    Priority:
    1. NOTEX_PROVIDER (explicit)
    2. OpenAI (if OPENAI_API_KEY set and no custom base URL)
    3. Anthropic (if ANTHROPIC_API_KEY set)
    4. Fallback: OpenAI-compatible local server (llama-server, vLLM, LM Studio)
    """
    base_url = os.environ.get("NOTEX_BASE_URL")
    explicit = os.environ.get("NOTEX_PROVIDER")
    if explicit:
        name = explicit
    elif os.environ.get("OPENAI_API_KEY") and not base_url:
        name = "openai"
    elif os.environ.get("ANTHROPIC_API_KEY"):
        name = "anthropic"
    else:
        name = "openai-compatible"

    params: dict[str, Any] = {}
    if os.environ.get("NOTEX_MODEL"):
        params["model"] = os.environ["NOTEX_MODEL"]
    if name == "openai-compatible":
        params["base_url"] = base_url or DEFAULT_BASE_URL
        params["api_key"] = os.environ.get("NOTEX_API_KEY") or DEFAULT_API_KEY
        params.setdefault("model", DEFAULT_MODEL)
    else:
        if base_url:
            params["base_url"] = base_url
        if os.environ.get("NOTEX_API_KEY"):
            params["api_key"] = os.environ["NOTEX_API_KEY"]
    return OracleConfig(name, params)


_ENV_PARAMS = {
    "NOTEX_MODEL": "model",
    "NOTEX_BASE_URL": "base_url",
    "NOTEX_API_KEY": "api_key",
}


def _apply_env(oracle: OracleConfig) -> None:
    """Environment variables override the [oracle] table."""
    if os.environ.get("NOTEX_PROVIDER"):
        oracle.name = os.environ["NOTEX_PROVIDER"]
    for var, key in _ENV_PARAMS.items():
        if os.environ.get(var):
            oracle.params[key] = os.environ[var]


_RUN_KEYS = {
    "concurrency": int,
    "max_retries": int,
    "dry_run": bool,
    "reorganize": bool,
    "cross_ref": bool,
    "format": OutputFormat,
    "backoff_base": float,
    "backoff_max": float,
    "default_category": str,
    "summary_chars": int,
    "listing_batch_size": int,
    "exclude": tuple,
}


def _parse_run(section: dict) -> dict:
    unknown = set(section) - set(_RUN_KEYS)
    if unknown:
        raise ValueError(f"Unknown [run] settings: {', '.join(sorted(unknown))}")
    return {k: _RUN_KEYS[k](v) for k, v in section.items()}


def load_config(config_path: Path) -> NotexConfig:
    """
    Load configuration from a TOML file.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("notex", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    run = RunConfig(**_parse_run(data.get("run", {})))

    oracle_section = data.get("oracle")
    if oracle_section:
        oracle = OracleConfig(
            name=oracle_section.get("name", "openai-compatible"),
            params={k: v for k, v in oracle_section.items() if k != "name"},
        )
        _apply_env(oracle)
    else:
        oracle = detect_default_oracle()

    return NotexConfig(run=run, oracle=oracle, path=config_path)


def find_config(start: Optional[Path] = None) -> Optional[Path]:
    """Return ./notex.toml (or NOTEX_CONFIG) if present."""
    env_path = os.environ.get("NOTEX_CONFIG")
    if env_path:
        return Path(env_path)
    candidate = (start or Path.cwd()) / CONFIG_FILENAME
    return candidate if candidate.exists() else None


def load_or_default(config_path: Optional[Path] = None) -> NotexConfig:
    """
    Load the given or discovered config file, or fall back to defaults.

    This is the main entry point for config management.
    """
    path = config_path or find_config()
    if path is not None:
        return load_config(path)
    return NotexConfig()


def with_overrides(config: NotexConfig, **overrides) -> NotexConfig:
    """Apply CLI overrides. Keys with value None are ignored.

    Oracle keys (provider, model, base_url, api_key) go to the oracle
    section; everything else replaces a RunConfig field. Switching to a
    different provider drops the parameters configured for the old one.
    """
    oracle_keys = {"model", "base_url", "api_key"}
    run_changes = {}
    provider = overrides.pop("provider", None)
    if provider is not None and provider != config.oracle.name:
        oracle = OracleConfig(provider, {})
    else:
        oracle = OracleConfig(config.oracle.name, dict(config.oracle.params))
    for key, value in overrides.items():
        if value is None:
            continue
        if key in oracle_keys:
            oracle.params[key] = value
        else:
            run_changes[key] = value
    run = replace(config.run, **run_changes) if run_changes else config.run
    return NotexConfig(run=run, oracle=oracle, path=config.path)


def save_config(config: NotexConfig, config_path: Path) -> None:
    """
    Save configuration as TOML.

    Creates the parent directory if it doesn't exist.
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)

    run = config.run
    data = {
        "notex": {"version": CONFIG_VERSION},
        "run": {
            "concurrency": run.concurrency,
            "max_retries": run.max_retries,
            "dry_run": run.dry_run,
            "reorganize": run.reorganize,
            "cross_ref": run.cross_ref,
            "format": run.format.value,
            "backoff_base": run.backoff_base,
            "backoff_max": run.backoff_max,
            "default_category": run.default_category,
            "summary_chars": run.summary_chars,
            "listing_batch_size": run.listing_batch_size,
            "exclude": list(run.exclude),
        },
        "oracle": {"name": config.oracle.name, **config.oracle.params},
    }
    # Keys belong in the environment, not in a file that may be shared
    data["oracle"].pop("api_key", None)

    with open(config_path, "wb") as f:
        f.write(CONFIG_HEADER.encode("utf-8"))
        tomli_w.dump(data, f)
