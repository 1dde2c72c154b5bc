"""Configuration management for Turnkeeper."""

import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.turnkeeper/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "turnkeeper.yaml"

PREMATURE_STOP_MESSAGE = (
    "Continue. You stopped before completing the task. Pick up where you left off."
)


class AutoContinueConfig(BaseModel):
    """Structural auto-continue for turns that stop almost immediately."""

    limit: int = Field(default=3, ge=0)
    message: str = PREMATURE_STOP_MESSAGE


class AssessmentConfig(BaseModel):
    """Completion assessment prompt shaping."""

    context_chars: int = Field(default=3000, gt=0)
    separator: str = "\n---\n"


class CheckpointStoreConfig(BaseModel):
    """Where per-directory checkpoint pointers live."""

    dir_name: str = ".checkpoints"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class ProviderCredentials(BaseModel):
    """Assessment provider credentials, read once at startup."""

    anthropic_api_key: str = ""
    anthropic_base_url: str = ""
    openai_api_key: str = ""
    openai_base_url: str = ""
    gemini_api_key: str = ""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProviderCredentials":
        """Snapshot provider credentials from an environment mapping."""
        env = os.environ if environ is None else environ
        return cls(
            anthropic_api_key=env.get("ANTHROPIC_AUTH_TOKEN") or env.get("ANTHROPIC_API_KEY") or "",
            anthropic_base_url=env.get("ANTHROPIC_BASE_URL") or "",
            openai_api_key=env.get("OPENAI_API_KEY") or "",
            openai_base_url=env.get("OPENAI_BASE_URL") or "",
            gemini_api_key=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or "",
        )


class Config(BaseSettings):
    """Main configuration for Turnkeeper."""

    auto_continue: AutoContinueConfig = Field(default_factory=AutoContinueConfig)
    assessment: AssessmentConfig = Field(default_factory=AssessmentConfig)
    checkpoint: CheckpointStoreConfig = Field(default_factory=CheckpointStoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="TURNKEEPER_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML; fields it leaves unset fall back to env vars."""
        return cls.from_yaml()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
