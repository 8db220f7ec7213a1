"""
Builds agent handles from workflow configuration
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from multisync.core.diagnostics import DiagnosticCode, Diagnostics
from multisync.core.errors import FlowConfigError
from multisync.schemas.schema_translator import Shape, translate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentTool:
    """Another agent exposed as a callable tool"""
    name: str
    description: str
    agent: "AgentHandle"


@dataclass(frozen=True)
class AgentHandle:
    """Everything needed to invoke one configured agent"""
    id: str
    name: str
    instructions: str
    output_schema: Dict[str, Any] = field(hash=False, compare=False)
    output_shape: Shape = field(hash=False)
    model_settings: Dict[str, Any] = field(default_factory=dict, hash=False)
    mcp_servers: Tuple[Any, ...] = ()
    tools: Tuple[AgentTool, ...] = ()


def _check_schema_refs(agent_specs: Dict[str, Dict[str, Any]],
                       output_schemas: Dict[str, Dict[str, Any]]):
    for agent_id, spec in agent_specs.items():
        schema_ref = (spec or {}).get("outputSchemaRef")
        if not schema_ref:
            raise FlowConfigError(f'Agent "{agent_id}" must have outputSchemaRef')
        if schema_ref not in output_schemas:
            raise FlowConfigError(
                f'Agent "{agent_id}" references unknown schema "{schema_ref}"'
            )


def _resolve_servers(agent_id: str, refs: List[str], mcp_registry: Dict[str, Any],
                     diagnostics: Diagnostics) -> Tuple[Any, ...]:
    servers = []
    for ref in refs:
        handle = mcp_registry.get(ref)
        if handle is None:
            diagnostics.warn(
                DiagnosticCode.UNKNOWN_MCP_REF,
                f'Agent "{agent_id}": unknown MCP server "{ref}", skipping',
                subject=agent_id,
            )
            continue
        servers.append(handle)
    return tuple(servers)


def _build_tools(agent_id: str, tool_specs: List[Dict[str, Any]],
                 base: Dict[str, AgentHandle],
                 diagnostics: Diagnostics) -> Tuple[AgentTool, ...]:
    """Wire agent-kind tools to base handles.

    Function tools have no binding to Python callables, so they are reported
    and contribute nothing; unknown kinds are reported and skipped.
    """
    tools = []
    for tool in tool_specs:
        kind = tool.get("kind")
        if kind == "agent":
            ref = tool.get("ref")
            target = base.get(ref)
            if target is None:
                diagnostics.warn(
                    DiagnosticCode.UNKNOWN_AGENT_TOOL,
                    f'Agent "{agent_id}": tool references unknown agent "{ref}", skipping',
                    subject=agent_id,
                )
                continue
            tools.append(AgentTool(
                name=tool.get("id") or ref,
                description=tool.get("description") or f"Tool for agent {ref}",
                agent=target,
            ))
        elif kind == "function":
            diagnostics.warn(
                DiagnosticCode.FUNCTION_TOOL_UNSUPPORTED,
                f'Agent "{agent_id}": function tool "{tool.get("id")}" '
                "has no callable binding, skipping",
                subject=agent_id,
            )
        else:
            diagnostics.warn(
                DiagnosticCode.UNKNOWN_TOOL_KIND,
                f'Agent "{agent_id}": unknown tool kind "{kind}", skipping',
                subject=agent_id,
            )
    return tuple(tools)


def build_agents(agent_specs: Dict[str, Dict[str, Any]],
                 mcp_registry: Dict[str, Any],
                 output_schemas: Dict[str, Dict[str, Any]],
                 diagnostics: Optional[Diagnostics] = None) -> Dict[str, AgentHandle]:
    """Build final agent handles in two passes.

    The first pass creates tool-less base handles; the second wires
    agent-kind tools to those base handles, so an agent used as a tool never
    carries tools of its own.
    """
    if diagnostics is None:
        diagnostics = Diagnostics()
    agent_specs = agent_specs or {}
    output_schemas = output_schemas or {}
    mcp_registry = mcp_registry or {}

    _check_schema_refs(agent_specs, output_schemas)

    base: Dict[str, AgentHandle] = {}
    for agent_id, spec in agent_specs.items():
        schema = output_schemas[spec["outputSchemaRef"]]
        base[agent_id] = AgentHandle(
            id=agent_id,
            name=spec.get("name") or agent_id,
            instructions=spec.get("instructions") or "",
            output_schema=schema,
            output_shape=translate(schema),
            model_settings=dict(spec.get("modelSettings") or {}),
            mcp_servers=_resolve_servers(
                agent_id, spec.get("mcpServerRefs") or [], mcp_registry, diagnostics
            ),
        )

    final: Dict[str, AgentHandle] = {}
    for agent_id, spec in agent_specs.items():
        tools = _build_tools(agent_id, spec.get("tools") or [], base, diagnostics)
        final[agent_id] = replace(base[agent_id], tools=tools)
        logger.debug(f"Built agent {agent_id} with {len(tools)} tool(s)")

    logger.info(f"Built {len(final)} agent(s)")
    return final
