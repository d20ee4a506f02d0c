"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """FitPlan onboarding core configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: the MCP surface has no auth layer of its own.
    fitplan_host: str = "127.0.0.1"
    fitplan_port: int = 8011
    fitplan_log_level: str = "info"
    fitplan_allow_insecure_bind: bool = False

    # Local cache (encrypted SQLite)
    db_path: str = "~/.fitplan/onboarding.db"
    encryption_key: str = ""
    # Comma-separated retired keys, still accepted for decryption
    previous_encryption_keys: str = ""

    # Sync coordinator
    sync_timeout_seconds: float = 10.0
    sync_concurrent_best_effort: bool = False

    # Onboarding tracker
    autosave_debounce_seconds: float = 2.0

    @property
    def retired_keys(self) -> list[str]:
        return [k.strip() for k in self.previous_encryption_keys.split(",") if k.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
