"""
Command line entry point: validate a workflow and run an interactive prompt loop
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from dotenv import dotenv_values

from multisync.core.errors import MultisyncError
from multisync.core.orchestrator import run_flow
from multisync.core.settings import API_KEY_ENV, Settings, configure_logging, resolve_api_key
from multisync.integration.preflight import (
    validate_openai_key,
    validate_python_environment,
    validate_system,
)
from multisync.schemas.validation import validate_config

logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"exit", "quit", ":q"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multisync",
        description="Run a declarative multi-agent workflow against interactive prompts",
    )
    parser.add_argument("--config", type=str, default=None, help="Workflow configuration file")
    parser.add_argument("--api-key", type=str, default=None, help="OpenAI API key")
    parser.add_argument("--env", type=str, default=None, help="Load variables from a .env file")
    parser.add_argument("--setup", action="store_true", help="Run system setup checks and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


def load_environment(env_file: Optional[str]) -> Dict[str, str]:
    """Process environment overlaid with values from ``env_file``"""
    environ = dict(os.environ)
    if env_file:
        values = dotenv_values(env_file)
        environ.update({key: value for key, value in values.items() if value is not None})
    return environ


async def run_prompt_loop(config: Dict[str, Any], api_key: str,
                          read: Callable[[str], str] = input,
                          write: Callable[[str], Any] = print,
                          **options):
    write('Type your prompt and press Enter. Type "exit" to quit.')
    while True:
        try:
            prompt = (await asyncio.to_thread(read, "> ")).strip()
        except EOFError:
            break
        if not prompt:
            continue
        if prompt.lower() in EXIT_COMMANDS:
            break
        output = await run_flow(config, prompt, api_key, **options)
        write(json.dumps(output, ensure_ascii=False))


async def run_parser(config_path: str, api_key: str, **options) -> bool:
    """Validate the system and the configuration, then serve prompts"""
    resolved = Path(config_path).expanduser().resolve()
    logger.info(f"Starting multisync with {resolved}")
    if not await validate_system(resolved, api_key=api_key):
        return False

    config = json.loads(resolved.read_text(encoding="utf-8"))
    validate_config(config)
    await run_prompt_loop(config, api_key, **options)
    return True


def run_setup(api_key: Optional[str]) -> bool:
    validate_openai_key(api_key)
    check = validate_python_environment()
    for error in check.errors:
        logger.error(error)
    if check.errors:
        return False
    print("System setup completed successfully.")
    print("Next: multisync --config your-config.json")
    return True


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        env = load_environment(args.env) if environ is None else dict(environ)
        settings = Settings.from_env(env)
        configure_logging("DEBUG" if args.verbose else settings.log_level)

        api_key = args.api_key or env.get(API_KEY_ENV)
        if args.setup:
            return 0 if run_setup(api_key) else 1

        if not args.config:
            print("Error: --config is required", file=sys.stderr)
            parser.print_help()
            return 1

        api_key = resolve_api_key(api_key, env)
        ok = asyncio.run(run_parser(args.config, api_key, default_model=settings.default_model))
        return 0 if ok else 1
    except (MultisyncError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
