"""Tests for settings sections and their validators."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.config.settings import (
    AgentSettings,
    DatabaseSettings,
    LoggingSettings,
    PolicySettings,
    Settings,
)
from src.constants import DB_SCHEMA


class TestDatabaseSettings:
    def test_defaults(self) -> None:
        s = DatabaseSettings()
        assert s.schema_ == DB_SCHEMA
        assert s.port == 5432

    def test_foreign_schema_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_SCHEMA", "public")
        with pytest.raises(ValidationError, match="DATABASE_SCHEMA must be"):
            DatabaseSettings()


class TestAgentSettings:
    def test_defaults(self) -> None:
        s = AgentSettings()
        assert s.max_tool_iterations == 10
        assert s.max_parallel_tool_calls == 4

    def test_zero_parallelism_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AgentSettings(max_parallel_tool_calls=0)

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGENT_MAX_TOOL_ITERATIONS", "3")
        assert AgentSettings().max_tool_iterations == 3


class TestPolicySettings:
    def test_default_is_read_only(self) -> None:
        s = PolicySettings()
        assert s.default_mode == "read_only"
        assert "CREATE_LEAD" not in s.default_authorities

    def test_invalid_mode_rejected(self) -> None:
        with pytest.raises(ValidationError, match="POLICY_DEFAULT_MODE must be one of"):
            PolicySettings(default_mode="yolo")


class TestLoggingSettings:
    def test_level_normalized(self) -> None:
        assert LoggingSettings(level="debug").level == "DEBUG"

    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(ValidationError, match="LOG_LEVEL must be one of"):
            LoggingSettings(level="TRACE")


class TestSettings:
    def test_composes_sections(self) -> None:
        s = Settings()
        assert isinstance(s.agent, AgentSettings)
        assert isinstance(s.policy, PolicySettings)
        assert s.openai.model
