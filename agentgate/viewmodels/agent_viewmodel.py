"""AgentSetupViewModel - Agent configuration state management.

WORKFLOW:
1. start_configuration() selects an agent and kicks off a background model fetch
2. fetch_available_models() fills the model slots from the proxy's model list
3. apply_configuration() generates (and in automatic mode commits) the config
4. test_connection() checks the proxy with the configured key
5. reset_sheet_state() / dismiss_configuration() clear the attempt

All state lives in AgentSetupState. Phase changes go through transition()
and are announced to subscribers. Mutating calls must not overlap on one
instance; reading ``state`` is always safe.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from ..models.agents import (
    AgentConfigResult,
    AgentConfigType,
    AgentConfiguration,
    AvailableModel,
    CLIAgent,
    ConfigStorageOption,
    ConfigurationMode,
    ConnectionTestResult,
    ModelSlot,
)
from ..services.agent_config import AgentConfigurationService, should_update_shell
from ..services.agent_detection import AgentDetectionService, AgentStatus
from ..services.model_slots import resolve_slots
from ..services.shell_profile import ShellProfileError, ShellProfileManager, ShellType

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Where a configuration session is."""
    IDLE = "idle"
    SELECTED = "selected"
    MODELS_LOADING = "models_loading"
    READY = "ready"
    GENERATING = "generating"
    GENERATED = "generated"
    TESTING = "testing"
    TESTED = "tested"


class SessionEvent(str, Enum):
    """Inputs to the session state machine."""
    SELECT = "select"
    LOAD_MODELS = "load_models"
    MODELS_LOADED = "models_loaded"
    GENERATE = "generate"
    GENERATION_FINISHED = "generation_finished"
    GENERATION_FAILED = "generation_failed"
    TEST = "test"
    TEST_FINISHED = "test_finished"
    RESET = "reset"
    DISMISS = "dismiss"


_ACTIVE = (
    SessionPhase.SELECTED,
    SessionPhase.MODELS_LOADING,
    SessionPhase.READY,
    SessionPhase.GENERATED,
    SessionPhase.TESTED,
)

_TRANSITIONS = {
    SessionEvent.LOAD_MODELS: ({SessionPhase.SELECTED, SessionPhase.READY}, SessionPhase.MODELS_LOADING),
    SessionEvent.MODELS_LOADED: ({SessionPhase.MODELS_LOADING}, SessionPhase.READY),
    SessionEvent.GENERATE: (set(_ACTIVE), SessionPhase.GENERATING),
    SessionEvent.GENERATION_FINISHED: ({SessionPhase.GENERATING}, SessionPhase.GENERATED),
    SessionEvent.GENERATION_FAILED: ({SessionPhase.GENERATING}, SessionPhase.READY),
    SessionEvent.TEST: (set(_ACTIVE), SessionPhase.TESTING),
    SessionEvent.TEST_FINISHED: ({SessionPhase.TESTING}, SessionPhase.TESTED),
}


def transition(phase: SessionPhase, event: SessionEvent) -> Optional[SessionPhase]:
    """
    Next phase for ``event`` in ``phase``, or None if the event does not apply.

    SELECT and DISMISS apply everywhere. RESET keeps an active session
    (back to READY) and leaves IDLE alone.
    """
    if event == SessionEvent.SELECT:
        return SessionPhase.SELECTED
    if event == SessionEvent.DISMISS:
        return SessionPhase.IDLE
    if event == SessionEvent.RESET:
        return SessionPhase.IDLE if phase == SessionPhase.IDLE else SessionPhase.READY

    sources, target = _TRANSITIONS[event]
    return target if phase in sources else None


@dataclass
class AgentSetupState:
    """Everything a configuration session knows."""
    phase: SessionPhase = SessionPhase.IDLE
    agent_statuses: List[AgentStatus] = field(default_factory=list)
    is_loading: bool = False
    is_configuring: bool = False
    is_testing: bool = False
    is_loading_models: bool = False
    selected_agent: Optional[CLIAgent] = None
    current_configuration: Optional[AgentConfiguration] = None
    available_models: List[AvailableModel] = field(default_factory=list)
    config_result: Optional[AgentConfigResult] = None
    test_result: Optional[ConnectionTestResult] = None
    error_message: Optional[str] = None
    detected_shell: ShellType = ShellType.ZSH
    configuration_mode: ConfigurationMode = ConfigurationMode.AUTOMATIC
    config_storage_option: ConfigStorageOption = ConfigStorageOption.JSON_ONLY
    selected_raw_config_index: int = 0


PhaseListener = Callable[[SessionPhase, SessionPhase, AgentSetupState], None]


@dataclass
class AgentSetupViewModel:
    """
    View model for agent setup and configuration.

    Dependencies are passed in; ``base_url`` is the proxy's base URL
    (without /v1). ``clipboard`` receives text for the copy actions.
    """

    base_url: str
    detection_service: AgentDetectionService = field(default_factory=AgentDetectionService)
    configuration_service: AgentConfigurationService = field(default_factory=AgentConfigurationService)
    shell_manager: ShellProfileManager = field(default_factory=ShellProfileManager)
    clipboard: Optional[Callable[[str], None]] = None
    state: AgentSetupState = field(default_factory=AgentSetupState)
    _listeners: List[PhaseListener] = field(default_factory=list, repr=False)

    # ------------------------------------------------------------------
    # Phase handling
    # ------------------------------------------------------------------

    def subscribe(self, listener: PhaseListener) -> Callable[[], None]:
        """Register a phase-change listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _fire(self, event: SessionEvent) -> bool:
        old = self.state.phase
        new = transition(old, event)
        if new is None:
            logger.debug(f"[AgentSetup] Ignoring {event.value} in phase {old.value}")
            return False
        if new != old:
            self.state.phase = new
            for listener in list(self._listeners):
                try:
                    listener(old, new, self.state)
                except Exception as e:
                    logger.error(f"[AgentSetup] Phase listener failed: {e}")
        return True

    # ------------------------------------------------------------------
    # Agent statuses
    # ------------------------------------------------------------------

    async def refresh_agent_statuses(self, force_refresh: bool = False):
        """Refresh agent detection status."""
        self.state.is_loading = True
        try:
            self.state.agent_statuses = await self.detection_service.detect_all_agents(force_refresh)
            self.state.detected_shell = self.shell_manager.detect_shell()
        finally:
            self.state.is_loading = False

    def status_for_agent(self, agent: CLIAgent) -> Optional[AgentStatus]:
        return next((s for s in self.state.agent_statuses if s.agent == agent), None)

    # ------------------------------------------------------------------
    # Selection and models
    # ------------------------------------------------------------------

    def _clear_attempt(self):
        self.state.config_result = None
        self.state.test_result = None
        self.state.selected_raw_config_index = 0
        self.state.configuration_mode = ConfigurationMode.AUTOMATIC
        self.state.config_storage_option = ConfigStorageOption.JSON_ONLY
        self.state.is_configuring = False
        self.state.is_testing = False

    def start_configuration(self, agent: CLIAgent, api_key: str) -> Optional[asyncio.Task]:
        """
        Select ``agent`` and start fetching models in the background.

        Returns the model-fetch task (None when no event loop is running);
        callers do not have to await it.
        """
        self._clear_attempt()
        self.state.available_models = []
        self.state.error_message = None

        if not self.base_url:
            self.state.error_message = "Proxy base URL not available"
            return None

        self.state.selected_agent = agent
        self.state.current_configuration = AgentConfiguration(
            agent=agent,
            proxy_url=self.base_url.rstrip("/") + "/v1",
            api_key=api_key,
        )
        self._fire(SessionEvent.SELECT)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[AgentSetup] No running event loop, models not fetched")
            return None
        return loop.create_task(self.fetch_available_models())

    async def fetch_available_models(self):
        """Load the proxy's models and fill slots that still hold defaults."""
        config = self.state.current_configuration
        if config is None:
            return

        self._fire(SessionEvent.LOAD_MODELS)
        self.state.is_loading_models = True
        try:
            models = await self.configuration_service.fetch_available_models(config.proxy_url, config.api_key)
        except Exception as e:
            logger.warning(f"[AgentSetup] Model fetch failed, keeping default slots: {e}")
            models = []
        finally:
            self.state.is_loading_models = False

        # The session may have been dismissed or restarted meanwhile.
        if self.state.current_configuration is not config:
            return

        self.state.available_models = models
        # Generation started meanwhile; its result was built from the current slots.
        if transition(self.state.phase, SessionEvent.MODELS_LOADED) is None:
            logger.debug(f"[AgentSetup] Models arrived in phase {self.state.phase.value}, slots left as they are")
            return
        config.model_slots = resolve_slots(config.model_slots, models)
        self._fire(SessionEvent.MODELS_LOADED)

    def update_model_slot(self, slot: ModelSlot, model: str):
        if self.state.current_configuration is not None:
            self.state.current_configuration.model_slots[slot] = model

    def set_configuration_mode(self, mode: ConfigurationMode):
        self.state.configuration_mode = mode

    def set_storage_option(self, option: ConfigStorageOption):
        self.state.config_storage_option = option

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _storage_option_for(self, agent: CLIAgent) -> ConfigStorageOption:
        if agent.config_type == AgentConfigType.BOTH:
            return self.state.config_storage_option
        return ConfigStorageOption.JSON_ONLY

    async def apply_configuration(self) -> Optional[AgentConfigResult]:
        """Generate the configuration and, in automatic mode, commit it."""
        agent = self.state.selected_agent
        config = self.state.current_configuration
        if agent is None or config is None:
            return None
        if not self._fire(SessionEvent.GENERATE):
            return None

        mode = self.state.configuration_mode
        storage_option = self._storage_option_for(agent)
        self.state.is_configuring = True
        try:
            result = await self.configuration_service.generate_configuration(
                agent=agent,
                config=config,
                mode=mode,
                storage_option=storage_option,
                detection_service=self.detection_service,
            )
            if mode == ConfigurationMode.AUTOMATIC and result.success:
                result = await self._commit(agent, storage_option, result)
        except Exception as e:
            logger.error(f"[AgentSetup] Configuration of {agent.display_name} failed: {e}")
            result = AgentConfigResult.failure(str(e))
        finally:
            self.state.is_configuring = False

        self.state.config_result = result
        if result.success:
            self._fire(SessionEvent.GENERATION_FINISHED)
        else:
            self.state.error_message = result.error
            self._fire(SessionEvent.GENERATION_FAILED)
        return result

    async def _commit(
        self,
        agent: CLIAgent,
        storage_option: ConfigStorageOption,
        result: AgentConfigResult,
    ) -> AgentConfigResult:
        """Finish an automatic apply whose files are already written.

        If the shell profile cannot be updated, the written files are rolled
        back so a failed result leaves the agent as it was.
        """
        if result.shell_config and should_update_shell(agent, storage_option):
            try:
                self.shell_manager.add_to_profile(self.state.detected_shell, result.shell_config, agent)
            except (ShellProfileError, OSError) as e:
                logger.error(f"[AgentSetup] Shell profile update for {agent.display_name} failed: {e}")
                self.configuration_service.rollback(result.written_files)
                return AgentConfigResult.failure(f"Failed to update shell profile: {e}")

        try:
            await self.detection_service.mark_as_configured(agent)
            await self.refresh_agent_statuses(force_refresh=True)
        except Exception as e:
            # Configuration is in place; only the status view is stale.
            logger.warning(f"[AgentSetup] Could not refresh status of {agent.display_name}: {e}")
        return result

    async def generate_preview_config(self) -> Optional[AgentConfigResult]:
        """Manual-mode render of the current configuration; no side effects."""
        agent = self.state.selected_agent
        config = self.state.current_configuration
        if agent is None or config is None:
            return None

        result = await self.configuration_service.generate_configuration(
            agent=agent,
            config=config,
            mode=ConfigurationMode.MANUAL,
            storage_option=self._storage_option_for(agent),
        )
        return result if result.success else None

    # ------------------------------------------------------------------
    # Post-generation actions
    # ------------------------------------------------------------------

    async def add_to_shell_profile(self) -> bool:
        """Commit the generated shell snippet to the detected shell profile."""
        agent = self.state.selected_agent
        result = self.state.config_result
        if agent is None or result is None or not result.shell_config:
            return False

        try:
            profile_path = self.shell_manager.add_to_profile(
                self.state.detected_shell, result.shell_config, agent
            )
        except ShellProfileError as e:
            self.state.error_message = f"Failed to update shell profile: {e}"
            return False

        self.state.config_result = replace(
            result,
            instructions=f"Added to {profile_path}. Restart your terminal for changes to take effect.",
        )
        await self.detection_service.mark_as_configured(agent)
        await self.refresh_agent_statuses(force_refresh=True)
        return True

    def _copy(self, text: str) -> bool:
        if self.clipboard is None:
            logger.warning("[AgentSetup] No clipboard available")
            return False
        self.clipboard(text)
        return True

    def copy_to_clipboard(self) -> bool:
        result = self.state.config_result
        if result is None or not result.shell_config:
            return False
        return self._copy(result.shell_config)

    def copy_raw_config_to_clipboard(self, index: int) -> bool:
        result = self.state.config_result
        if result is None or not 0 <= index < len(result.raw_configs):
            return False
        self.state.selected_raw_config_index = index
        return self._copy(result.raw_configs[index].content)

    def copy_all_raw_configs_to_clipboard(self) -> bool:
        result = self.state.config_result
        if result is None or not result.raw_configs:
            return False

        sections = [
            f"# {raw.filename or 'Configuration'}\n"
            f"# Target: {raw.target_path or 'N/A'}\n"
            f"\n"
            f"{raw.content}"
            for raw in result.raw_configs
        ]
        return self._copy("\n\n---\n\n".join(sections))

    def export_raw_configs(self, directory: Path) -> List[Path]:
        """Write every rendered artifact into ``directory``; returns the files written."""
        result = self.state.config_result
        if result is None:
            return []

        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = []
        for index, raw in enumerate(result.raw_configs):
            name = "shell-config.sh" if raw.kind == "shell" else (raw.filename or f"config-{index}")
            path = directory / name
            if path in written:
                path = directory / f"{index}-{name}"
            path.write_text(raw.content, encoding="utf-8")
            written.append(path)
        return written

    async def test_connection(self) -> Optional[ConnectionTestResult]:
        """Probe the proxy with the current configuration; repeatable at any time."""
        agent = self.state.selected_agent
        config = self.state.current_configuration
        if agent is None or config is None:
            return None
        if not self._fire(SessionEvent.TEST):
            return None

        self.state.is_testing = True
        try:
            result = await self.configuration_service.test_connection(agent, config)
        except Exception as e:
            result = ConnectionTestResult(success=False, message=str(e))
        finally:
            self.state.is_testing = False

        self.state.test_result = result
        self._fire(SessionEvent.TEST_FINISHED)
        return result

    # ------------------------------------------------------------------
    # Reset / dismiss
    # ------------------------------------------------------------------

    def dismiss_configuration(self):
        """Close the session: forget the agent, configuration and results."""
        self._clear_attempt()
        self.state.selected_agent = None
        self.state.current_configuration = None
        self.state.available_models = []
        self.state.error_message = None
        self._fire(SessionEvent.DISMISS)

    def reset_sheet_state(self):
        """Clear results, mode and storage option; keep agent and configuration."""
        self._clear_attempt()
        self._fire(SessionEvent.RESET)
