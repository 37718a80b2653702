"""Configuration management for trade-ledger."""
import logging
import os

from pydantic import BaseModel


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    """Application configuration loaded from environment variables."""
    DEFAULT_AGENT_ID: str = "unknown"
    IMPORT_AGENT_ID: str = "imported"
    # Quote currency (SOL) -> display currency (USD)
    QUOTE_DISPLAY_RATE: float = 200.0
    STARTING_BALANCE: float = 700.0
    INCLUDE_FAILED: bool = False
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            DEFAULT_AGENT_ID=os.getenv("DEFAULT_AGENT_ID", "unknown"),
            IMPORT_AGENT_ID=os.getenv("IMPORT_AGENT_ID", "imported"),
            QUOTE_DISPLAY_RATE=float(os.getenv("QUOTE_DISPLAY_RATE", "200")),
            STARTING_BALANCE=float(os.getenv("STARTING_BALANCE", "700")),
            INCLUDE_FAILED=_env_bool("INCLUDE_FAILED", "false"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def log_level(self) -> int:
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO
