"""
zero_reveal_credentials/config.py
Environment-driven settings (prefix ZRC_).

Example:
    ZRC_MERKLE_TREE_HEIGHT=4 ZRC_LOG_LEVEL=debug python -m my_registry
"""
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Circuit path arrays are sized for height 20
DEFAULT_TREE_HEIGHT = 20
MAX_TREE_HEIGHT = 32


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Library configuration.

    Attributes:
        merkle_tree_height: Height shared by the credential and nullifier
            trees; must match the compiled circuit
        hash_backend: Name of the registered hash backend; "poseidon" for
            circuit-compatible trees, "sha256" for circuit-free use
        poseidon_node_bin: Node.js executable that runs circomlibjs
        poseidon_node_path: Extra NODE_PATH entry where circomlibjs is installed
        truncate_overflow: Drop (and log) leaves beyond capacity instead
            of raising CapacityError
        log_level: Minimum level for setup_logging
        json_logs: Render logs as JSON lines
    """

    model_config = SettingsConfigDict(
        env_prefix="ZRC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    merkle_tree_height: int = Field(default=DEFAULT_TREE_HEIGHT, ge=1, le=MAX_TREE_HEIGHT)
    hash_backend: str = "sha256"
    poseidon_node_bin: str = "node"
    poseidon_node_path: Optional[str] = None
    truncate_overflow: bool = False
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v):
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @field_validator("hash_backend")
    @classmethod
    def lowercase_backend(cls, v: str) -> str:
        return v.strip().lower()


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
