"""Configuration loading and management."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from crewgate.constants import (
    DEFAULT_BASH_TIMEOUT_MS,
    DEFAULT_DATA_DIR,
    DEFAULT_FETCH_BYTES,
    DEFAULT_FETCH_TIMEOUT_MS,
    DEFAULT_MAX_READ_MB,
    DEFAULT_MAX_TURNS,
    DEFAULT_MAX_WRITE_MB,
    DEFAULT_MODEL,
    DEFAULT_TOOL_NAMES,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Per-backend connection settings."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_ms: Optional[int] = None


@dataclass
class ProviderConfigMap:
    """Provider settings keyed by backend."""

    claude: ProviderConfig = field(default_factory=ProviderConfig)
    openai: ProviderConfig = field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = field(default_factory=ProviderConfig)


def _normalize_key(value: Optional[str]) -> Optional[str]:
    trimmed = (value or "").strip()
    return trimmed or None


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """crewgate configuration.

    Loads from .env and optionally <project>/.crewgate/config.json
    """

    # API keys
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None

    # Filesystem scope
    allowed_roots: list[str] = field(default_factory=list)
    data_dir: str = str(DEFAULT_DATA_DIR)

    # Model settings
    default_model: str = DEFAULT_MODEL
    max_turns: int = DEFAULT_MAX_TURNS
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_TOOL_NAMES))

    # Tool limits
    max_read_mb: int = DEFAULT_MAX_READ_MB
    max_write_mb: int = DEFAULT_MAX_WRITE_MB
    bash_timeout_ms: int = DEFAULT_BASH_TIMEOUT_MS
    fetch_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS
    fetch_max_bytes: int = DEFAULT_FETCH_BYTES

    # Edit intent protocol
    enforce_edit_scope: bool = False
    auto_load_context: bool = True

    # Per-provider overrides (from .crewgate/config.json)
    provider_settings: dict[str, dict] = field(default_factory=dict)

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "Config":
        """Load configuration from environment and project-specific config.

        Args:
            project_root: Project root directory (for .crewgate/config.json)

        Returns:
            Config instance
        """
        load_dotenv()

        roots_env = os.getenv("CREWGATE_ALLOWED_ROOTS", "")
        allowed_roots = [r for r in roots_env.split(os.pathsep) if r.strip()]
        if not allowed_roots:
            # Never fail open: pin the project (or cwd) as the only root
            allowed_roots = [str((project_root or Path.cwd()).resolve())]

        config = cls(
            anthropic_api_key=_normalize_key(os.getenv("ANTHROPIC_API_KEY")),
            openai_api_key=_normalize_key(os.getenv("OPENAI_API_KEY")),
            openrouter_api_key=_normalize_key(os.getenv("OPENROUTER_API_KEY")),
            allowed_roots=allowed_roots,
            data_dir=os.getenv("CREWGATE_DATA_DIR", str(DEFAULT_DATA_DIR)),
            default_model=os.getenv("CREWGATE_DEFAULT_MODEL", DEFAULT_MODEL),
            max_turns=int(os.getenv("CREWGATE_MAX_TURNS", DEFAULT_MAX_TURNS)),
            bash_timeout_ms=int(os.getenv("CREWGATE_BASH_TIMEOUT_MS", DEFAULT_BASH_TIMEOUT_MS)),
            enforce_edit_scope=_env_flag("CREWGATE_ENFORCE_EDIT_SCOPE"),
            auto_load_context=_env_flag("CREWGATE_AUTO_LOAD_CONTEXT", default=True),
        )

        # Load project-specific config if available
        if project_root:
            project_config_path = project_root / ".crewgate" / "config.json"
            if project_config_path.exists():
                try:
                    with open(project_config_path) as f:
                        project_config = json.load(f)
                except (json.JSONDecodeError, IOError) as e:
                    logger.warning("Ignoring invalid %s: %s", project_config_path, e)
                else:
                    config.provider_settings = project_config.get("providers", {})
                    if "allowed_tools" in project_config:
                        config.allowed_tools = list(project_config["allowed_tools"])

        return config

    def provider_configs(self) -> ProviderConfigMap:
        """Build per-backend provider settings."""

        def settings_for(name: str) -> dict:
            return self.provider_settings.get(name, {}) or {}

        openai = settings_for("openai")
        openrouter = settings_for("openrouter")
        return ProviderConfigMap(
            claude=ProviderConfig(api_key=self.anthropic_api_key),
            openai=ProviderConfig(
                api_key=self.openai_api_key,
                base_url=openai.get("base_url") or os.getenv("OPENAI_BASE_URL"),
                headers=dict(openai.get("headers", {})),
                timeout_ms=openai.get("timeout_ms"),
            ),
            openrouter=ProviderConfig(
                api_key=self.openrouter_api_key,
                base_url=openrouter.get("base_url") or os.getenv("OPENROUTER_BASE_URL"),
                headers=dict(openrouter.get("headers", {})),
                timeout_ms=openrouter.get("timeout_ms"),
            ),
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if not (self.anthropic_api_key or self.openai_api_key or self.openrouter_api_key):
            errors.append(
                "No API keys found. Set ANTHROPIC_API_KEY, OPENAI_API_KEY or OPENROUTER_API_KEY"
            )

        if not self.allowed_roots:
            errors.append("At least one allowed root is required")

        if self.max_turns <= 0:
            errors.append("max_turns must be positive")

        if self.bash_timeout_ms <= 0:
            errors.append("bash_timeout_ms must be positive")

        if self.max_read_mb <= 0:
            errors.append("max_read_mb must be positive")

        if self.max_write_mb <= 0:
            errors.append("max_write_mb must be positive")

        return errors

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "allowed_roots": self.allowed_roots,
            "data_dir": self.data_dir,
            "max_turns": self.max_turns,
            "allowed_tools": self.allowed_tools,
            "bash_timeout_ms": self.bash_timeout_ms,
            "enforce_edit_scope": self.enforce_edit_scope,
            "auto_load_context": self.auto_load_context,
            "has_anthropic_key": bool(self.anthropic_api_key),
            "has_openai_key": bool(self.openai_api_key),
            "has_openrouter_key": bool(self.openrouter_api_key),
        }
