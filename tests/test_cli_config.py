"""Tests for settings loading and the command line."""

import asyncio
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml
from click.testing import CliRunner

from scopeai import main
from scopeai.config import Settings, default_config_dir, default_data_dir, load_settings
from scopeai.core.audit import AuditLog
from scopeai.errors import ConfirmationNotFoundError
from scopeai.models import AgentContext, AgentDomain, AgentResponse, PendingConfirmation
from scopeai.storage.sqlite import SqliteAuditRepository


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.delenv("SCOPEAI_CONFIG", raising=False)
    monkeypatch.delenv("SCOPEAI_LOG_LEVEL", raising=False)
    monkeypatch.delenv("SCOPEAI_AGENTS__MAX_TOOL_ROUNDS", raising=False)
    monkeypatch.setenv("SCOPEAI_CONFIG_DIR", str(tmp_path / "config"))
    return monkeypatch


def _write_config(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadSettings:
    def test_defaults_without_file(self, clean_env):
        settings = load_settings()
        assert settings.agents.max_tool_rounds == 5
        assert settings.classifier.use_llm is False
        assert settings.confirmations.ttl_seconds == 300

    def test_yaml_file(self, clean_env, tmp_path):
        path = _write_config(tmp_path / "scope.yaml", {
            "llm": {"default_model": "claude-3-5-sonnet-latest"},
            "orchestrator": {"max_parallel_steps": 1},
        })
        settings = load_settings(path)
        assert settings.llm.default_model == "claude-3-5-sonnet-latest"
        assert settings.orchestrator.max_parallel_steps == 1
        assert settings.orchestrator.clarify_threshold == 0.5

    def test_default_location(self, clean_env, tmp_path):
        _write_config(tmp_path / "config" / "config.yaml", {"log_level": "WARNING"})
        assert load_settings().log_level == "WARNING"

    def test_env_var_points_to_file(self, clean_env, tmp_path):
        path = _write_config(tmp_path / "other.yaml", {"data_dir": "/srv/scope"})
        clean_env.setenv("SCOPEAI_CONFIG", str(path))
        assert load_settings().data_dir == "/srv/scope"

    def test_env_vars_override_yaml(self, clean_env, tmp_path):
        path = _write_config(tmp_path / "scope.yaml", {"log_level": "WARNING", "agents": {"parallel_tools": False}})
        clean_env.setenv("SCOPEAI_LOG_LEVEL", "DEBUG")
        clean_env.setenv("SCOPEAI_AGENTS__MAX_TOOL_ROUNDS", "2")

        settings = load_settings(path)

        assert settings.log_level == "DEBUG"
        assert settings.agents.max_tool_rounds == 2
        assert settings.agents.parallel_tools is False

    def test_missing_file_ignored(self, clean_env, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.llm.default_model == "gpt-4o"

    def test_data_dir(self, tmp_path):
        assert Settings(data_dir=str(tmp_path)).get_data_dir() == tmp_path

    def test_data_dir_falls_back_to_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.delenv("SCOPEAI_DATA_DIR", raising=False)
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "share"))
        assert Settings(data_dir="").get_data_dir() == tmp_path / "share" / "scopeai"

    def test_directory_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SCOPEAI_CONFIG_DIR", str(tmp_path / "conf"))
        monkeypatch.setenv("SCOPEAI_DATA_DIR", str(tmp_path / "data"))
        assert default_config_dir() == tmp_path / "conf"
        assert default_data_dir() == tmp_path / "data"

    def test_config_dir_on_macos(self, monkeypatch, tmp_path):
        monkeypatch.setattr(sys, "platform", "darwin")
        monkeypatch.delenv("SCOPEAI_CONFIG_DIR", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_config_dir() == tmp_path / "Library" / "Application Support" / "scopeai"


class TestAuditCommand:
    def test_prints_entries(self, clean_env, tmp_path, monkeypatch):
        monkeypatch.setattr(main, "setup_logging", lambda **kwargs: None)
        data_dir = tmp_path / "data"
        config = _write_config(tmp_path / "scope.yaml", {"data_dir": str(data_dir)})

        async def populate():
            repo = SqliteAuditRepository(data_dir / "scopeai.db")
            await repo.start()
            audit = AuditLog(repo)
            await audit.record(tool_name="create_invoice", parameters={}, status="success", user_id="u1")
            await audit.record(
                tool_name="run_payroll", parameters={}, status="error", user_id="u2", error_message="Inga anställda"
            )
            await repo.stop()

        asyncio.run(populate())

        result = CliRunner().invoke(main.cli, ["--config", str(config), "audit"])
        assert result.exit_code == 0, result.output
        assert "create_invoice" in result.output
        assert "run_payroll" in result.output
        assert "Inga anställda" in result.output

        only_u1 = CliRunner().invoke(main.cli, ["--config", str(config), "audit", "--user", "u1"])
        assert "create_invoice" in only_u1.output
        assert "run_payroll" not in only_u1.output


def _confirmation(confirmation_id: str, summary: str) -> PendingConfirmation:
    return PendingConfirmation(
        tool_name="bump",
        args={},
        summary=summary,
        user_id="u1",
        created_at=0,
        ttl=300,
        confirmation_id=confirmation_id,
    )


class TestConfirmPending:
    async def test_follow_up_confirmations_are_asked(self, monkeypatch):
        answers = iter([True, False])
        monkeypatch.setattr(main.click, "confirm", lambda *args, **kwargs: next(answers))
        first = _confirmation("cf1", "Första")
        second = _confirmation("cf2", "Andra")

        orchestrator = MagicMock()
        orchestrator.resolve_confirmation = AsyncMock(side_effect=[
            AgentResponse(success=True, message="Steg 1 klart", agent=AgentDomain.ORCHESTRATOR, confirmations=[second]),
            AgentResponse(success=False, message="Avbrutet", agent=AgentDomain.ORCHESTRATOR),
        ])
        context = AgentContext(user_id="u1", company_id="c1")
        response = AgentResponse(success=True, message="", agent=AgentDomain.ORCHESTRATOR, confirmations=[first])

        await main._confirm_pending(orchestrator, response, context)

        calls = orchestrator.resolve_confirmation.await_args_list
        assert [c.args[:2] for c in calls] == [("cf1", True), ("cf2", False)]

    async def test_stale_confirmation_reported(self, monkeypatch, capsys):
        monkeypatch.setattr(main.click, "confirm", lambda *args, **kwargs: True)
        orchestrator = MagicMock()
        orchestrator.resolve_confirmation = AsyncMock(side_effect=ConfirmationNotFoundError("cf1"))
        response = AgentResponse(
            success=True, message="", agent=AgentDomain.ORCHESTRATOR, confirmations=[_confirmation("cf1", "x")]
        )

        await main._confirm_pending(orchestrator, response, AgentContext(user_id="u1", company_id="c1"))

        assert "cf1" in capsys.readouterr().out
