"""Tests for the agent setup session state machine and view model."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentgate.models.agents import (
    AgentConfigResult,
    AgentConfigType,
    AvailableModel,
    CLIAgent,
    ConfigStorageOption,
    ConfigurationMode,
    ConnectionTestResult,
    ModelSlot,
    RawConfig,
    WrittenFile,
)
from agentgate.services.agent_config import AgentConfigurationService
from agentgate.services.shell_profile import ShellProfileManager, ShellType
from agentgate.viewmodels.agent_viewmodel import (
    AgentSetupViewModel,
    SessionEvent,
    SessionPhase,
    transition,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _detection() -> MagicMock:
    detection = MagicMock()
    detection.detect_all_agents = AsyncMock(return_value=[])
    detection.mark_as_configured = AsyncMock()
    return detection


def _shell_manager() -> MagicMock:
    manager = MagicMock(spec=ShellProfileManager)
    manager.detect_shell.return_value = ShellType.ZSH
    manager.add_to_profile.return_value = Path("/home/user/.zshrc")
    return manager


def _configuration_service(models: list[str] | None = None, result: AgentConfigResult | None = None) -> MagicMock:
    service = MagicMock(spec=AgentConfigurationService)
    service.fetch_available_models = AsyncMock(
        return_value=[AvailableModel(name) for name in (models or [])]
    )
    service.generate_configuration = AsyncMock(return_value=result)
    service.test_connection = AsyncMock(
        return_value=ConnectionTestResult(success=True, message="ok", latency_ms=3)
    )
    return service


def _both_result(mode: ConfigurationMode = ConfigurationMode.AUTOMATIC) -> AgentConfigResult:
    return AgentConfigResult.success_result(
        config_type=AgentConfigType.BOTH,
        mode=mode,
        instructions="done",
        raw_configs=[
            RawConfig(content='{"env": {}}', filename="settings.json", target_path="~/.claude/settings.json"),
            RawConfig(content='export A="1"', filename="Shell Configuration", kind="shell"),
        ],
        config_path="~/.claude/settings.json",
        shell_config='export A="1"',
    )


def _view_model(**overrides) -> AgentSetupViewModel:
    kwargs = {
        "base_url": "http://127.0.0.1:8317",
        "detection_service": _detection(),
        "configuration_service": _configuration_service(),
        "shell_manager": _shell_manager(),
    }
    kwargs.update(overrides)
    return AgentSetupViewModel(**kwargs)


# ---------------------------------------------------------------------------
# Transition function
# ---------------------------------------------------------------------------


def test_transition_happy_path() -> None:
    phase = SessionPhase.IDLE
    for event, expected in [
        (SessionEvent.SELECT, SessionPhase.SELECTED),
        (SessionEvent.LOAD_MODELS, SessionPhase.MODELS_LOADING),
        (SessionEvent.MODELS_LOADED, SessionPhase.READY),
        (SessionEvent.GENERATE, SessionPhase.GENERATING),
        (SessionEvent.GENERATION_FINISHED, SessionPhase.GENERATED),
        (SessionEvent.TEST, SessionPhase.TESTING),
        (SessionEvent.TEST_FINISHED, SessionPhase.TESTED),
    ]:
        phase = transition(phase, event)
        assert phase == expected


def test_transition_rejects_illegal_moves() -> None:
    assert transition(SessionPhase.IDLE, SessionEvent.GENERATE) is None
    assert transition(SessionPhase.IDLE, SessionEvent.TEST) is None
    assert transition(SessionPhase.READY, SessionEvent.MODELS_LOADED) is None
    assert transition(SessionPhase.GENERATING, SessionEvent.GENERATE) is None


def test_transition_reset_and_dismiss() -> None:
    assert transition(SessionPhase.TESTED, SessionEvent.RESET) == SessionPhase.READY
    assert transition(SessionPhase.IDLE, SessionEvent.RESET) == SessionPhase.IDLE
    assert transition(SessionPhase.GENERATED, SessionEvent.DISMISS) == SessionPhase.IDLE
    assert transition(SessionPhase.GENERATING, SessionEvent.GENERATION_FAILED) == SessionPhase.READY


# ---------------------------------------------------------------------------
# Selection and models
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_configuration_fetches_models_and_resolves_slots() -> None:
    service = _configuration_service(models=["claude-opus-4", "claude-sonnet-4", "claude-haiku-4"])
    vm = _view_model(configuration_service=service)
    phases: list[tuple[SessionPhase, SessionPhase]] = []
    vm.subscribe(lambda old, new, state: phases.append((old, new)))

    task = vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    assert task is not None
    await task

    config = vm.state.current_configuration
    assert config.proxy_url == "http://127.0.0.1:8317/v1"
    assert config.api_key == "sk-test"
    assert config.model_slots == {
        ModelSlot.PRIMARY: "claude-opus-4",
        ModelSlot.SECONDARY: "claude-sonnet-4",
        ModelSlot.FAST: "claude-haiku-4",
    }
    assert [m.name for m in vm.state.available_models] == ["claude-opus-4", "claude-sonnet-4", "claude-haiku-4"]
    assert vm.state.phase == SessionPhase.READY
    assert phases == [
        (SessionPhase.IDLE, SessionPhase.SELECTED),
        (SessionPhase.SELECTED, SessionPhase.MODELS_LOADING),
        (SessionPhase.MODELS_LOADING, SessionPhase.READY),
    ]
    service.fetch_available_models.assert_awaited_once_with("http://127.0.0.1:8317/v1", "sk-test")


@pytest.mark.asyncio
async def test_model_fetch_failure_keeps_defaults() -> None:
    service = _configuration_service()
    service.fetch_available_models.side_effect = RuntimeError("proxy down")
    vm = _view_model(configuration_service=service)

    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    assert vm.state.current_configuration.models_configured == 0
    assert vm.state.phase == SessionPhase.READY
    assert not vm.state.is_loading_models


def test_start_configuration_without_base_url() -> None:
    vm = _view_model(base_url="")

    assert vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test") is None
    assert vm.state.error_message == "Proxy base URL not available"
    assert vm.state.phase == SessionPhase.IDLE


def test_start_configuration_without_event_loop() -> None:
    vm = _view_model()

    assert vm.start_configuration(CLIAgent.CODEX_CLI, "sk-test") is None
    assert vm.state.phase == SessionPhase.SELECTED
    assert vm.state.selected_agent == CLIAgent.CODEX_CLI


def test_unsubscribe_stops_notifications() -> None:
    vm = _view_model()
    seen = []
    unsubscribe = vm.subscribe(lambda old, new, state: seen.append(new))

    vm.start_configuration(CLIAgent.CODEX_CLI, "k")
    unsubscribe()
    vm.dismiss_configuration()

    assert seen == [SessionPhase.SELECTED]


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_apply_automatic_commits_shell_and_marks_configured() -> None:
    service = _configuration_service(result=_both_result())
    shell = _shell_manager()
    detection = _detection()
    vm = _view_model(configuration_service=service, shell_manager=shell, detection_service=detection)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_storage_option(ConfigStorageOption.BOTH)

    result = await vm.apply_configuration()

    assert result.success
    assert vm.state.phase == SessionPhase.GENERATED
    assert vm.state.config_result is result
    service.generate_configuration.assert_awaited_once()
    assert service.generate_configuration.await_args.kwargs["storage_option"] == ConfigStorageOption.BOTH
    shell.add_to_profile.assert_called_once_with(ShellType.ZSH, 'export A="1"', CLIAgent.CLAUDE_CODE)
    detection.mark_as_configured.assert_awaited_once_with(CLIAgent.CLAUDE_CODE)
    detection.detect_all_agents.assert_awaited_with(True)


@pytest.mark.asyncio
async def test_apply_json_only_does_not_touch_shell() -> None:
    service = _configuration_service(result=_both_result())
    shell = _shell_manager()
    vm = _view_model(configuration_service=service, shell_manager=shell)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    await vm.apply_configuration()

    shell.add_to_profile.assert_not_called()


@pytest.mark.asyncio
async def test_storage_option_ignored_for_file_agents() -> None:
    service = _configuration_service(result=_both_result())
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CODEX_CLI, "sk-test")
    vm.set_storage_option(ConfigStorageOption.SHELL_ONLY)

    await vm.apply_configuration()

    assert service.generate_configuration.await_args.kwargs["storage_option"] == ConfigStorageOption.JSON_ONLY


@pytest.mark.asyncio
async def test_manual_apply_has_no_side_effects() -> None:
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    shell = _shell_manager()
    detection = _detection()
    vm = _view_model(configuration_service=service, shell_manager=shell, detection_service=detection)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    vm.set_storage_option(ConfigStorageOption.BOTH)

    result = await vm.apply_configuration()

    assert result.success
    shell.add_to_profile.assert_not_called()
    detection.mark_as_configured.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_generation_keeps_selection() -> None:
    service = _configuration_service(result=AgentConfigResult.failure("disk full"))
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    result = await vm.apply_configuration()

    assert not result.success
    assert vm.state.error_message == "disk full"
    assert vm.state.selected_agent == CLIAgent.CLAUDE_CODE
    assert vm.state.current_configuration is not None
    assert vm.state.phase == SessionPhase.READY
    assert not vm.state.is_configuring


@pytest.mark.asyncio
async def test_shell_commit_error_rolls_back_written_files() -> None:
    written = (WrittenFile(path="/home/user/.claude/settings.json", backup_path=None),)
    generated = replace(_both_result(), written_files=written)
    service = _configuration_service(result=generated)
    detection = _detection()
    shell = _shell_manager()
    shell.add_to_profile.side_effect = OSError("read-only file system")
    vm = _view_model(configuration_service=service, shell_manager=shell, detection_service=detection)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_storage_option(ConfigStorageOption.SHELL_ONLY)

    result = await vm.apply_configuration()

    assert not result.success
    assert "read-only" in vm.state.error_message
    assert vm.state.phase == SessionPhase.READY
    service.rollback.assert_called_once_with(written)
    detection.mark_as_configured.assert_not_awaited()


@pytest.mark.asyncio
async def test_status_refresh_error_keeps_applied_result() -> None:
    service = _configuration_service(result=_both_result())
    detection = _detection()
    detection.mark_as_configured.side_effect = RuntimeError("cache unavailable")
    vm = _view_model(configuration_service=service, detection_service=detection)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    result = await vm.apply_configuration()

    assert result.success
    assert vm.state.phase == SessionPhase.GENERATED
    service.rollback.assert_not_called()


@pytest.mark.asyncio
async def test_apply_without_selection_returns_none() -> None:
    vm = _view_model()
    assert await vm.apply_configuration() is None
    assert await vm.test_connection() is None
    assert await vm.generate_preview_config() is None


@pytest.mark.asyncio
async def test_generate_preview_is_manual() -> None:
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    preview = await vm.generate_preview_config()

    assert preview is not None
    assert service.generate_configuration.await_args.kwargs["mode"] == ConfigurationMode.MANUAL
    assert vm.state.phase == SessionPhase.READY


# ---------------------------------------------------------------------------
# Post-generation actions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_add_to_shell_profile_updates_instructions() -> None:
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    shell = _shell_manager()
    vm = _view_model(configuration_service=service, shell_manager=shell)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    await vm.apply_configuration()

    assert await vm.add_to_shell_profile() is True
    assert "/home/user/.zshrc" in vm.state.config_result.instructions
    shell.add_to_profile.assert_called_once()


@pytest.mark.asyncio
async def test_copy_actions() -> None:
    copied: list[str] = []
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    vm = _view_model(configuration_service=service, clipboard=copied.append)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    await vm.apply_configuration()

    assert vm.copy_to_clipboard()
    assert vm.copy_raw_config_to_clipboard(0)
    assert not vm.copy_raw_config_to_clipboard(5)
    assert vm.copy_all_raw_configs_to_clipboard()

    assert copied[0] == 'export A="1"'
    assert copied[1] == '{"env": {}}'
    assert vm.state.selected_raw_config_index == 0
    assert copied[2] == (
        "# settings.json\n# Target: ~/.claude/settings.json\n\n{\"env\": {}}"
        "\n\n---\n\n"
        "# Shell Configuration\n# Target: N/A\n\nexport A=\"1\""
    )


def test_copy_without_clipboard_or_result() -> None:
    vm = _view_model()
    assert not vm.copy_to_clipboard()
    assert not vm.copy_all_raw_configs_to_clipboard()


@pytest.mark.asyncio
async def test_export_raw_configs(tmp_path: Path) -> None:
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    await vm.apply_configuration()

    written = vm.export_raw_configs(tmp_path / "out")

    assert [p.name for p in written] == ["settings.json", "shell-config.sh"]
    assert (tmp_path / "out" / "shell-config.sh").read_text() == 'export A="1"'


@pytest.mark.asyncio
async def test_test_connection_is_repeatable() -> None:
    service = _configuration_service(result=_both_result())
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    await vm.apply_configuration()

    first = await vm.test_connection()
    second = await vm.test_connection()

    assert first.success and second.success
    assert vm.state.phase == SessionPhase.TESTED
    assert service.test_connection.await_count == 2


@pytest.mark.asyncio
async def test_test_connection_error_is_reported() -> None:
    service = _configuration_service()
    service.test_connection.side_effect = RuntimeError("boom")
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")

    result = await vm.test_connection()

    assert not result.success
    assert result.message == "boom"
    assert not vm.state.is_testing


# ---------------------------------------------------------------------------
# Reset / dismiss
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reset_keeps_agent_and_configuration() -> None:
    service = _configuration_service(result=_both_result())
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    vm.set_storage_option(ConfigStorageOption.BOTH)
    vm.update_model_slot(ModelSlot.FAST, "my-fast-model")
    await vm.apply_configuration()
    await vm.test_connection()

    vm.reset_sheet_state()

    assert vm.state.phase == SessionPhase.READY
    assert vm.state.selected_agent == CLIAgent.CLAUDE_CODE
    assert vm.state.current_configuration.model_slots[ModelSlot.FAST] == "my-fast-model"
    assert vm.state.config_result is None
    assert vm.state.test_result is None
    assert vm.state.configuration_mode == ConfigurationMode.AUTOMATIC
    assert vm.state.config_storage_option == ConfigStorageOption.JSON_ONLY


@pytest.mark.asyncio
async def test_dismiss_clears_everything() -> None:
    service = _configuration_service(models=["claude-opus-4"], result=_both_result())
    vm = _view_model(configuration_service=service)
    await vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    await vm.apply_configuration()

    vm.dismiss_configuration()

    assert vm.state.phase == SessionPhase.IDLE
    assert vm.state.selected_agent is None
    assert vm.state.current_configuration is None
    assert vm.state.available_models == []
    assert vm.state.config_result is None


@pytest.mark.asyncio
async def test_dismissed_session_ignores_late_model_results() -> None:
    service = _configuration_service(models=["claude-opus-4"])
    vm = _view_model(configuration_service=service)

    task = vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.dismiss_configuration()
    await task

    assert vm.state.phase == SessionPhase.IDLE
    assert vm.state.available_models == []


@pytest.mark.asyncio
async def test_generation_before_models_arrive_keeps_generated_slots() -> None:
    service = _configuration_service(result=_both_result(ConfigurationMode.MANUAL))
    release = asyncio.Event()

    async def slow_fetch(proxy_url: str, api_key: str) -> list[AvailableModel]:
        await release.wait()
        return [AvailableModel("claude-opus-4")]

    service.fetch_available_models = AsyncMock(side_effect=slow_fetch)
    vm = _view_model(configuration_service=service)

    task = vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    await asyncio.sleep(0)
    assert vm.state.phase == SessionPhase.MODELS_LOADING

    result = await vm.apply_configuration()
    release.set()
    await task

    assert result.success
    assert vm.state.phase == SessionPhase.GENERATED
    assert vm.state.current_configuration.model_slots[ModelSlot.PRIMARY] == AvailableModel.default_for(ModelSlot.PRIMARY)
    assert [m.name for m in vm.state.available_models] == ["claude-opus-4"]


@pytest.mark.asyncio
async def test_generation_before_model_fetch_starts_keeps_slots() -> None:
    service = _configuration_service(models=["claude-opus-4"], result=_both_result(ConfigurationMode.MANUAL))
    vm = _view_model(configuration_service=service)

    task = vm.start_configuration(CLIAgent.CLAUDE_CODE, "sk-test")
    vm.set_configuration_mode(ConfigurationMode.MANUAL)
    await vm.apply_configuration()
    await task

    assert vm.state.phase == SessionPhase.GENERATED
    assert vm.state.current_configuration.models_configured == 0
