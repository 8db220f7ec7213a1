"""
Pre-flight checks run before a workflow is started
"""
import json
import logging
import os
import shlex
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from multisync.core.settings import API_KEY_ENV

logger = logging.getLogger(__name__)

MIN_PYTHON = (3, 10)
NETWORK_TIMEOUT_SECONDS = 5.0


@dataclass
class CheckResult:
    """Errors and warnings from one group of checks"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def extend(self, other: "CheckResult"):
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


def validate_openai_key(api_key: Optional[str] = None) -> bool:
    """Raise ValueError unless a well-formed OpenAI key is available"""
    key = api_key or os.environ.get(API_KEY_ENV)
    if key is None:
        raise ValueError(f"{API_KEY_ENV} not found in system environment")
    if not key.strip():
        raise ValueError(f"{API_KEY_ENV} is empty")
    if not key.startswith("sk-"):
        raise ValueError(f"{API_KEY_ENV} format invalid (should start with sk-)")
    return True


def validate_python_environment(version_info=None) -> CheckResult:
    result = CheckResult()
    version = tuple(version_info or sys.version_info)[:2]
    if version < MIN_PYTHON:
        required = ".".join(str(part) for part in MIN_PYTHON)
        result.errors.append(
            f"Python {version[0]}.{version[1]} is too old. Required: {required} or higher"
        )
    return result


def validate_file_system(config_path: Path) -> CheckResult:
    result = CheckResult()
    if not os.access(config_path, os.R_OK):
        result.errors.append(f"Configuration file not readable: {config_path}")
    if not os.access(os.getcwd(), os.W_OK):
        result.warnings.append(f"Working directory not writable: {os.getcwd()}")
    return result


def validate_mcp_servers(mcp_config: Dict[str, Any]) -> CheckResult:
    """Check server declarations strictly; bad stdio/http specs are errors"""
    result = CheckResult()
    for server_id, cfg in (mcp_config or {}).items():
        cfg = cfg or {}
        server_type = str(cfg.get("type") or "").lower()

        if server_type == "stdio":
            command = cfg.get("fullCommand") or cfg.get("command")
            executable = shlex.split(command)[0] if command and command.strip() else None
            if not executable:
                result.errors.append(f'MCP server "{server_id}": missing fullCommand')
            elif shutil.which(executable) is None:
                result.errors.append(
                    f'MCP server "{server_id}": command "{executable}" not found in system PATH'
                )
        elif server_type == "http":
            url = cfg.get("url") or ""
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                result.errors.append(f'MCP server "{server_id}": invalid URL format: {url}')
            elif not parsed.scheme.startswith("http"):
                result.errors.append(f'MCP server "{server_id}": invalid URL protocol: {url}')
        else:
            result.warnings.append(f'MCP server "{server_id}": unknown type "{cfg.get("type")}"')
    return result


async def validate_network_connectivity(mcp_config: Dict[str, Any],
                                        client: Optional[httpx.AsyncClient] = None) -> CheckResult:
    result = CheckResult()
    targets = {
        server_id: cfg.get("url")
        for server_id, cfg in (mcp_config or {}).items()
        if str((cfg or {}).get("type") or "").lower() == "http"
    }
    if not targets:
        return result

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=NETWORK_TIMEOUT_SECONDS)
    try:
        for server_id, url in targets.items():
            try:
                response = await client.head(url)
                if not response.is_success:
                    result.warnings.append(
                        f'MCP server "{server_id}": HTTP {response.status_code} - {url}'
                    )
            except httpx.HTTPError as e:
                result.warnings.append(f'MCP server "{server_id}": Network error - {e}')
    finally:
        if owns_client:
            await client.aclose()
    return result


async def validate_system(config_path, api_key: Optional[str] = None) -> bool:
    """Run every pre-flight check and log a report; False on any error"""
    logger.info("Starting system validation")
    report = CheckResult()
    config_path = Path(config_path)

    try:
        validate_openai_key(api_key)
        report.extend(validate_python_environment())
        report.extend(validate_file_system(config_path))

        config = json.loads(config_path.read_text(encoding="utf-8"))
        mcp_config = config.get("mcpServers") or {}
        report.extend(validate_mcp_servers(mcp_config))
        report.extend(await validate_network_connectivity(mcp_config))
    except (ValueError, OSError) as e:
        report.errors.append(f"Validation failed: {e}")

    for warning in report.warnings:
        logger.warning(warning)
    for error in report.errors:
        logger.error(error)

    if report.errors:
        logger.error("System validation failed; fix the errors above before running")
        return False

    logger.info("All validations passed")
    return True
