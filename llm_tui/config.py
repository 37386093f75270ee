"""Configuration management for llm-tui."""

import os
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_tui.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.llm-tui/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant running inside a terminal application. "
    "You can read, write and edit files, search the filesystem and run shell "
    "commands through the provided tools. Every tool call is shown to the "
    "user for approval before it runs."
)


class ProviderId(str, Enum):
    """Backends the registry knows how to build."""

    OLLAMA = "ollama"
    CLAUDE = "claude"
    BEDROCK = "bedrock"
    OPENAI = "openai"
    GEMINI = "gemini"


def _env(name: str) -> str:
    return os.environ.get(name, "")


class OllamaConfig(BaseModel):
    """Local model server configuration."""

    url: str = "http://localhost:11434"
    model: str = "llama2"
    context_window: int = 4096
    auto_start: bool = True


class ClaudeConfig(BaseModel):
    """Anthropic messages API configuration."""

    api_key: str = Field(default_factory=lambda: _env("ANTHROPIC_API_KEY"))
    api_url: str = "https://api.anthropic.com/v1/messages"
    model: str = "claude-3-5-sonnet-20241022"
    context_window: int = 200000


class BedrockConfig(BaseModel):
    """AWS Bedrock configuration (credentials come from the AWS environment)."""

    model: str = "us.anthropic.claude-sonnet-4-20250514-v1:0"
    region: str = ""
    context_window: int = 200000


class OpenAIConfig(BaseModel):
    """OpenAI chat completions configuration."""

    api_key: str = Field(default_factory=lambda: _env("OPENAI_API_KEY"))
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    context_window: int = 128000


class GeminiConfig(BaseModel):
    """Google Gemini configuration."""

    api_key: str = Field(default_factory=lambda: _env("GEMINI_API_KEY"))
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-1.5-flash"
    context_window: int = 1000000


class ContextConfig(BaseModel):
    """Context window compaction configuration."""

    compaction_threshold: float = 0.75
    keep_recent: int = 10
    summary_max_tokens: int = 500


class ToolsConfig(BaseModel):
    """Tool executor configuration."""

    bash_default_timeout_ms: int = 120_000
    bash_max_timeout_ms: int = 600_000
    confinement_root: str = ""


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for llm-tui."""

    default_provider: ProviderId = ProviderId.OLLAMA
    max_tokens: int = 4096
    request_timeout: float = 300.0
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    claude: ClaudeConfig = Field(default_factory=ClaudeConfig)
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="LLM_TUI_",
        env_nested_delimiter="__",
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

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_path}")

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; environment variables are applied by pydantic-settings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json", exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def context_window_for(self, provider_id: ProviderId) -> int:
        """Return the token budget of one request for a backend."""
        windows = {
            ProviderId.OLLAMA: self.ollama.context_window,
            ProviderId.CLAUDE: self.claude.context_window,
            ProviderId.BEDROCK: self.bedrock.context_window,
            ProviderId.OPENAI: self.openai.context_window,
            ProviderId.GEMINI: self.gemini.context_window,
        }
        return windows[ProviderId(provider_id)]

    def default_model_for(self, provider_id: ProviderId) -> str:
        """Return the configured model id for a backend."""
        models = {
            ProviderId.OLLAMA: self.ollama.model,
            ProviderId.CLAUDE: self.claude.model,
            ProviderId.BEDROCK: self.bedrock.model,
            ProviderId.OPENAI: self.openai.model,
            ProviderId.GEMINI: self.gemini.model,
        }
        return models[ProviderId(provider_id)]

    def resolved_confinement_root(self) -> Path | None:
        """Explicit confinement root, or None to use the home directory."""
        raw = self.tools.confinement_root.strip()
        if not raw:
            return None
        return Path(raw).expanduser()


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
