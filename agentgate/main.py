"""
Command-line entry point for agentgate.

WORKFLOW OVERVIEW:
==================
1. Parse arguments; debug mode comes from --debug/-d or AGENTGATE_DEBUG
2. Configure logging
3. Load settings and the proxy's config.yaml (port, API keys, auth dir)
4. Run the requested command and print its result as JSON:
   - detect:   installed agents and whether they route through the proxy
   - models:   models the proxy advertises
   - generate: render (manual) or apply (automatic) an agent configuration
   - test:     check the proxy with an agent configuration
   - quota:    remaining Claude quota for every account in the auth directory
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from .models.agents import CLIAgent, ConfigStorageOption, ConfigurationMode
from .models.proxy import ProxyConfig
from .services.agent_config import AgentConfigurationService
from .services.agent_detection import AgentDetectionService
from .services.proxy_config import load_proxy_config
from .services.quota_fetchers import ClaudeCodeQuotaFetcher
from .utils.settings import SettingsManager
from .viewmodels.agent_viewmodel import AgentSetupViewModel

logger = logging.getLogger("agentgate")


def setup_logging(debug: bool = False, log_file_path: Optional[Path] = None) -> None:
    """
    Configure logging.

    Format: timestamp [level] module: message. Debug mode raises agentgate
    and aiohttp client loggers to DEBUG; asyncio stays at INFO.

    Args:
        debug: Verbose logging
        log_file_path: Optional file that receives the same records as stderr
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file_path:
        try:
            handlers.append(logging.FileHandler(log_file_path, encoding="utf-8", mode="a"))
        except OSError as e:
            print(f"Warning: Could not create log file handler: {e}", file=sys.stderr)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,  # Override any existing configuration
    )
    if debug:
        logging.getLogger("agentgate").setLevel(logging.DEBUG)
        logging.getLogger("aiohttp.client").setLevel(logging.DEBUG)
        logging.getLogger("asyncio").setLevel(logging.INFO)


def is_debug_mode(argv: list[str]) -> bool:
    return "--debug" in argv or "-d" in argv or os.getenv("AGENTGATE_DEBUG", "").lower() in ("1", "true", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentgate", description="Route CLI coding agents through CLIProxyAPI")
    parser.add_argument("-d", "--debug", action="store_true", help="verbose logging")
    parser.add_argument("--log-file", type=Path, help="also write log records to this file")
    parser.add_argument("--config-dir", type=Path, help="directory holding settings.json")
    parser.add_argument("--proxy-config", type=Path, help="path to the proxy config.yaml")
    parser.add_argument("--base-url", help="proxy base URL, e.g. http://127.0.0.1:8317")
    parser.add_argument("--api-key", help="proxy API key (defaults to the first key in config.yaml)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("detect", help="detect installed agents")
    sub.add_parser("models", help="list models advertised by the proxy")

    agent_choices = [a.value for a in CLIAgent]
    generate = sub.add_parser("generate", help="generate an agent configuration")
    generate.add_argument("agent", choices=agent_choices)
    generate.add_argument("--mode", choices=[m.value for m in ConfigurationMode])
    generate.add_argument("--storage", choices=[o.value for o in ConfigStorageOption])

    test = sub.add_parser("test", help="test the proxy connection for an agent")
    test.add_argument("agent", choices=agent_choices)

    quota = sub.add_parser("quota", help="show Claude quota for every account")
    quota.add_argument("--auth-dir", help="directory with claude-*.json credential files")
    quota.add_argument("--show-skipped", action="store_true", help="include accounts that failed")
    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _require_key(args, proxy_config: ProxyConfig) -> Optional[str]:
    api_key = args.api_key or proxy_config.first_api_key
    if not api_key:
        print("No API key: pass --api-key or add api-keys to the proxy config.yaml", file=sys.stderr)
    return api_key


async def run_detect(args, settings, proxy_config) -> int:
    statuses = await AgentDetectionService().detect_all_agents(force_refresh=True)
    _print_json([
        {
            "agent": s.agent.value,
            "name": s.agent.display_name,
            "config_type": s.agent.config_type.value,
            "installed": s.installed,
            "configured": s.configured,
            "version": s.version,
            "binary_path": s.binary_path,
        }
        for s in statuses
    ])
    return 0


async def run_models(args, settings, proxy_config) -> int:
    api_key = _require_key(args, proxy_config)
    if not api_key:
        return 2
    base_url = args.base_url or proxy_config.base_url
    service = AgentConfigurationService(timeout=settings.get("requestTimeout"))
    models = await service.fetch_available_models(base_url.rstrip("/") + "/v1", api_key)
    _print_json([m.name for m in models])
    return 0


async def _prepared_session(args, settings, proxy_config) -> Optional[AgentSetupViewModel]:
    api_key = _require_key(args, proxy_config)
    if not api_key:
        return None

    view_model = AgentSetupViewModel(
        base_url=args.base_url or proxy_config.base_url,
        configuration_service=AgentConfigurationService(timeout=settings.get("requestTimeout")),
    )
    task = view_model.start_configuration(CLIAgent(args.agent), api_key)
    if task is not None:
        await task
    return view_model


async def run_generate(args, settings, proxy_config) -> int:
    view_model = await _prepared_session(args, settings, proxy_config)
    if view_model is None:
        return 2

    view_model.set_configuration_mode(ConfigurationMode(args.mode or settings.get("configurationMode")))
    view_model.set_storage_option(ConfigStorageOption(args.storage or settings.get("configStorageOption")))
    if view_model.state.configuration_mode == ConfigurationMode.AUTOMATIC:
        await view_model.refresh_agent_statuses()

    result = await view_model.apply_configuration()
    if result is None:
        return 1
    _print_json(asdict(result))
    return 0 if result.success else 1


async def run_test(args, settings, proxy_config) -> int:
    view_model = await _prepared_session(args, settings, proxy_config)
    if view_model is None:
        return 2
    result = await view_model.test_connection()
    if result is None:
        return 1
    _print_json(asdict(result))
    return 0 if result.success else 1


async def run_quota(args, settings, proxy_config) -> int:
    auth_dir = args.auth_dir or proxy_config.auth_dir
    async with ClaudeCodeQuotaFetcher(
        auth_dir=auth_dir,
        max_concurrency=settings.get("quotaConcurrency"),
        timeout=settings.get("requestTimeout"),
    ) as fetcher:
        scan = await fetcher.scan_quotas()

    output = {account: snapshot.to_dict() for account, snapshot in scan.quotas.items()}
    if args.show_skipped:
        _print_json({
            "quotas": output,
            "skipped": {account: str(error) for account, error in scan.skipped.items()},
        })
    else:
        _print_json(output)
    return 0


COMMANDS = {
    "detect": run_detect,
    "models": run_models,
    "generate": run_generate,
    "test": run_test,
    "quota": run_quota,
}


def main(argv: Optional[list[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)
    setup_logging(args.debug or is_debug_mode(argv), args.log_file)

    settings = SettingsManager(args.config_dir)
    try:
        proxy_config = load_proxy_config(args.proxy_config or settings.get("proxyConfigPath"))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    # config.yaml wins over stored settings
    if "port" not in proxy_config.model_fields_set:
        proxy_config.port = settings.get("proxyPort")
    if "auth_dir" not in proxy_config.model_fields_set:
        proxy_config.auth_dir = settings.get("authDir")

    try:
        return asyncio.run(COMMANDS[args.command](args, settings, proxy_config))
    except KeyboardInterrupt:
        logger.info("[Main] Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
