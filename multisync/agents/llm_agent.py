# multisync/agents/llm_agent.py
import dataclasses
import json
import logging
import re
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol

import openai
from agents import Agent, AgentOutputSchemaBase, ModelSettings, OpenAIResponsesModel, Runner
from agents.mcp import MCPServerStreamableHttp

from multisync.agents.agent_registry import AgentHandle
from multisync.core.errors import OutputShapeError
from multisync.core.settings import DEFAULT_MODEL

logger = logging.getLogger(__name__)

History = List[Dict[str, Any]]


@dataclass
class InvocationResult:
    """Structured output and updated history from one agent call"""
    output: Any
    history: Optional[History] = None


class AgentInvoker(Protocol):
    """Calls one agent with a conversation history"""

    async def __call__(self, agent: AgentHandle, history: History) -> InvocationResult:
        ...


class ShapeOutputSchema(AgentOutputSchemaBase):
    """Adapts an agent's declared schema to the Agents SDK output contract"""

    def __init__(self, handle: AgentHandle):
        self._handle = handle

    def is_plain_text(self) -> bool:
        return False

    def name(self) -> str:
        return f"{self._handle.id}_output"

    def json_schema(self) -> Dict[str, Any]:
        return self._handle.output_schema

    def is_strict_json_schema(self) -> bool:
        return False

    def validate_json(self, json_str: str) -> Any:
        try:
            value = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise OutputShapeError(f"invalid JSON output: {e}") from e
        return self._handle.output_shape.validate(value)


_MODEL_SETTING_FIELDS = {f.name for f in dataclasses.fields(ModelSettings)}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def split_model_settings(settings: Dict[str, Any], default_model: str = DEFAULT_MODEL):
    """Split pass-through settings into a model name and SDK ModelSettings"""
    model = default_model
    kwargs = {}
    for key, value in (settings or {}).items():
        if key == "model":
            model = value
            continue
        name = _snake_case(key)
        if name in _MODEL_SETTING_FIELDS:
            kwargs[name] = value
        else:
            logger.debug(f"Ignoring unsupported model setting {key!r}")
    return model, ModelSettings(**kwargs)


def _tool_tree(handle: AgentHandle) -> Iterator[AgentHandle]:
    yield handle
    for tool in handle.tools:
        yield from _tool_tree(tool.agent)


class OpenAIAgentsInvoker:
    """Invokes agents through the OpenAI Agents SDK"""

    def __init__(self, api_key: str, default_model: str = DEFAULT_MODEL,
                 client: Optional[openai.AsyncOpenAI] = None):
        self.default_model = default_model
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    async def connect_http_servers(self, handle: AgentHandle,
                                   stack: AsyncExitStack) -> Dict[str, Any]:
        """Open every http server URL used by ``handle`` or its tool agents.

        Connections are entered on ``stack`` and keyed by URL; each URL is
        opened once per call even when several agents share it.
        """
        connected: Dict[str, Any] = {}
        for agent in _tool_tree(handle):
            for server in agent.mcp_servers:
                if isinstance(server, str) and server not in connected:
                    connected[server] = await stack.enter_async_context(
                        MCPServerStreamableHttp(params={"url": server}, name=server)
                    )
        return connected

    def to_sdk_agent(self, handle: AgentHandle,
                     connected: Optional[Dict[str, Any]] = None) -> Agent:
        """Build the SDK agent for ``handle``, resolving URLs via ``connected``"""
        connected = connected or {}
        servers = []
        for server in handle.mcp_servers:
            if isinstance(server, str):
                if server not in connected:
                    logger.warning(
                        f"Agent {handle.id}: http MCP server {server} is not connected, skipping"
                    )
                    continue
                server = connected[server]
            servers.append(server)

        model, model_settings = split_model_settings(handle.model_settings, self.default_model)
        tools = [
            self.to_sdk_agent(tool.agent, connected).as_tool(
                tool_name=tool.name,
                tool_description=tool.description,
            )
            for tool in handle.tools
        ]
        return Agent(
            name=handle.name,
            instructions=handle.instructions,
            model=OpenAIResponsesModel(model=model, openai_client=self.client),
            model_settings=model_settings,
            output_type=ShapeOutputSchema(handle),
            mcp_servers=servers,
            tools=tools,
        )

    async def __call__(self, agent: AgentHandle, history: History) -> InvocationResult:
        # http servers are only connected for the duration of a call
        async with AsyncExitStack() as stack:
            connected = await self.connect_http_servers(agent, stack)
            sdk_agent = self.to_sdk_agent(agent, connected)
            logger.debug(f"Invoking agent {agent.id} with {len(history)} message(s)")
            try:
                result = await Runner.run(sdk_agent, input=list(history))
            except Exception as e:
                logger.error(f"LLM agent {agent.id} execution failed: {e}")
                raise

        return InvocationResult(output=result.final_output, history=result.to_input_list())

