from __future__ import annotations

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import DB_SCHEMA

# Load .env once at module import; all BaseSettings subclasses will see the env vars
load_dotenv()

_VALID_MODES = {"read_only", "guarded_write", "full_write"}


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "studio_crm"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')."
            raise ValueError(msg)
        return v


class OpenAISettings(BaseSettings):
    """OpenAI API settings. Env vars prefixed with OPENAI_."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = ""  # empty = model adapter disabled, run_turn still usable
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    max_retries: int = Field(3, ge=0, le=10)
    retry_base_delay: float = Field(1.0, ge=0)
    timeout: float = Field(60.0, gt=0)


class AgentSettings(BaseSettings):
    """Execution loop settings. Env vars prefixed with AGENT_."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    max_tool_iterations: int = Field(10, ge=1, le=50)
    max_parallel_tool_calls: int = Field(4, gt=0)


class PolicySettings(BaseSettings):
    """Fallback policy for tenants without a stored policy. Env prefix POLICY_."""

    model_config = SettingsConfigDict(env_prefix="POLICY_")

    default_mode: str = "read_only"
    default_authorities: list[str] = Field(
        default_factory=lambda: [
            "READ_CLIENTS",
            "READ_LEADS",
            "READ_SESSIONS",
            "READ_INVOICES",
            "DRAFT_EMAIL",
            "UPDATE_MEMORY",
        ]
    )

    @field_validator("default_mode")
    @classmethod
    def _validate_default_mode(cls, v: str) -> str:
        if v not in _VALID_MODES:
            msg = f"POLICY_DEFAULT_MODE must be one of {sorted(_VALID_MODES)} (got '{v}')"
            raise ValueError(msg)
        return v


class LoggingSettings(BaseSettings):
    """Log output settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    json_output: bool = True
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            msg = f"LOG_LEVEL must be one of {sorted(allowed)} (got '{v}')"
            raise ValueError(msg)
        return v.upper()


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
