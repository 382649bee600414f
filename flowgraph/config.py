"""Runtime settings for the flow graph engine.

Automatically reads from environment variables (or a .env file).
No explicit from_env() call needed — just instantiate: EngineSettings()

Environment variables:
  FLOWGRAPH_DB_PATH               — SQLite file for flows; ":memory:" keeps them in-process
  FLOWGRAPH_SANDBOX_TIMEOUT_MS    — wall-clock limit for one transform test (default: 1000)
  FLOWGRAPH_SANDBOX_MAX_MEMORY_MB — V8 heap cap for one transform test (default: 64)
  FLOWGRAPH_SANDBOX_GRACE_MS      — extra time before the child process is killed (default: 3000)
  FLOWGRAPH_LOG_LEVEL             — root log level for the CLI and server (default: INFO)
  FLOWGRAPH_API_KEY               — optional bearer key; open access when unset
  RATE_LIMIT_TRANSFORMS_PER_MIN   — per-client limit on POST /transforms/test (default: 30)
  CORS_ORIGINS                    — comma-separated allowed origins
"""

from __future__ import annotations

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings shared by the API server, the CLI, and the sandbox."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    db_path: str = Field(default="flowgraph.db", validation_alias="FLOWGRAPH_DB_PATH")
    sandbox_timeout_ms: int = Field(default=1000, validation_alias="FLOWGRAPH_SANDBOX_TIMEOUT_MS")
    sandbox_max_memory_mb: int = Field(
        default=64, validation_alias="FLOWGRAPH_SANDBOX_MAX_MEMORY_MB"
    )
    sandbox_grace_ms: int = Field(default=3000, validation_alias="FLOWGRAPH_SANDBOX_GRACE_MS")
    log_level: str = Field(default="INFO", validation_alias="FLOWGRAPH_LOG_LEVEL")
    api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="FLOWGRAPH_API_KEY",
        repr=False,
    )
    transforms_per_minute: int = Field(
        default=30, validation_alias="RATE_LIMIT_TRANSFORMS_PER_MIN"
    )
    cors_origins: str = Field(
        default="http://localhost:3001,http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> str:
        return str(v).upper()

    @field_validator("sandbox_timeout_ms", "sandbox_max_memory_mb", "sandbox_grace_ms")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(1, v)

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def in_memory(self) -> bool:
        return self.db_path == ":memory:"

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls()
