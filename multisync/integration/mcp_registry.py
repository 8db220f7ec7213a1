"""
Registry of external MCP tool servers declared by a workflow
"""
import asyncio
import logging
import shlex
from typing import Any, Callable, Dict, List, Optional

from multisync.core.diagnostics import DiagnosticCode, Diagnostics

logger = logging.getLogger(__name__)

StdioServerFactory = Callable[[str, str, List[str]], Any]


def default_stdio_factory(name: str, command: str, args: List[str]) -> Any:
    """Build an Agents SDK stdio server for ``command`` and ``args``"""
    from agents.mcp import MCPServerStdio

    return MCPServerStdio(
        name=name,
        params={"command": command, "args": list(args)},
    )


def _stdio_command(cfg: Dict[str, Any]):
    """Split ``fullCommand`` plus ``args`` into an executable and its arguments.

    ``fullCommand`` may be a whole command line such as ``npx -y server-fs``.
    """
    command = cfg.get("fullCommand") or cfg.get("command") or ""
    extra = [str(arg) for arg in cfg.get("args") or [] if arg]
    parts = [*shlex.split(command), *extra]
    full_command = " ".join(shlex.quote(part) for part in parts)
    if not parts:
        return None, [], full_command
    return parts[0], parts[1:], full_command


async def connect_mcp_servers(server_specs: Dict[str, Dict[str, Any]],
                              diagnostics: Optional[Diagnostics] = None,
                              stdio_factory: Optional[StdioServerFactory] = None) -> Dict[str, Any]:
    """Connect declared servers and return handles keyed by server id.

    stdio servers are connected concurrently and any failed connect
    propagates. http servers map to their URL and are connected lazily.
    """
    if diagnostics is None:
        diagnostics = Diagnostics()
    factory = stdio_factory or default_stdio_factory

    registry: Dict[str, Any] = {}
    connects = []
    for server_id, cfg in (server_specs or {}).items():
        cfg = cfg or {}
        server_type = str(cfg.get("type") or "").lower()

        if server_type == "stdio":
            command, args, full_command = _stdio_command(cfg)
            server = factory(cfg.get("name") or server_id, command, args)
            registry[server_id] = server
            connects.append(server.connect())
            logger.info(f"Connecting stdio MCP server {server_id}: {full_command}")
        elif server_type == "http":
            registry[server_id] = cfg.get("url")
            logger.debug(f"Registered http MCP server {server_id}: {cfg.get('url')}")
        else:
            diagnostics.warn(
                DiagnosticCode.UNKNOWN_MCP_TYPE,
                f'MCP server "{server_id}": unknown type "{cfg.get("type")}", skipping',
                subject=server_id,
            )

    if connects:
        # every connect settles before any cleanup starts
        results = await asyncio.gather(*connects, return_exceptions=True)
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            logger.error(f"MCP server connection failed: {failures[0]}")
            await close_mcp_servers(registry)
            raise failures[0]
    return registry


async def close_mcp_servers(registry: Dict[str, Any]):
    """Release connected servers; failures are logged, not raised"""
    for server_id, handle in (registry or {}).items():
        cleanup = getattr(handle, "cleanup", None)
        if cleanup is None:
            continue
        try:
            await cleanup()
        except Exception as e:
            logger.error(f"Failed to close MCP server {server_id}: {e}")
