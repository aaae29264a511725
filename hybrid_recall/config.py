"""Configuration management for hybrid-recall."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from hybrid_recall.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.hybrid-recall/config.yaml").expanduser()
DEFAULT_STORE_PATH = Path("~/.hybrid-recall/memory-kv.db").expanduser()
LOCAL_CONFIG_FILENAME = "recall.yaml"


class ChunkingConfig(BaseModel):
    """Markdown chunking configuration."""

    target_chars: int = Field(default=1600, ge=1)
    overlap_chars: int = Field(default=320, ge=0)


class SearchConfig(BaseModel):
    """Keyword/vector search configuration."""

    default_limit: int = Field(default=10, ge=1)
    max_fallback_terms: int = Field(default=12, ge=1)
    full_text_search: bool = True
    rrf_k: int = Field(default=60, ge=0)
    keyword_weight: float = Field(default=0.7, ge=0.0)
    vector_weight: float = Field(default=0.3, ge=0.0)


class RecencyConfig(BaseModel):
    """Time-decay blending configuration."""

    half_life_days: float = Field(default=7.0, gt=0.0)
    weight: float = Field(default=0.15, ge=0.0, le=1.0)


class BM25Config(BaseModel):
    """Conversation index BM25 parameters."""

    k1: float = Field(default=1.2, ge=0.0)
    b: float = Field(default=0.75, ge=0.0, le=1.0)


class StorageConfig(BaseModel):
    """Durable blob storage configuration."""

    path: str = str(DEFAULT_STORE_PATH)
    store_name: str = "hybrid-recall-memory"
    key: str = "sqlite"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for hybrid-recall."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    recency: RecencyConfig = Field(default_factory=RecencyConfig)
    bm25: BM25Config = Field(default_factory=BM25Config)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
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

        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {config_path}")
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid config {config_path}: {exc}") from exc

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from the default YAML path.

        Values present in the YAML file take precedence over ``RECALL_*``
        environment variables; env vars fill only the fields YAML omits.
        """
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_store_path(self) -> Path:
        """Absolute path of the key-value blob database."""
        return Path(self.storage.path).expanduser().resolve()


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
