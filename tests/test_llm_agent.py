from contextlib import AsyncExitStack
from types import SimpleNamespace

import openai
import pytest

from conftest import BASIC_SCHEMA
from multisync.agents import llm_agent
from multisync.agents.agent_registry import build_agents
from multisync.agents.llm_agent import OpenAIAgentsInvoker, ShapeOutputSchema, split_model_settings
from multisync.core.errors import OutputShapeError


@pytest.fixture()
def agents():
    return build_agents(
        {
            "helper": {"name": "Helper", "instructions": "Help", "outputSchemaRef": "basic"},
            "writer": {
                "name": "Writer",
                "instructions": "Write",
                "outputSchemaRef": "basic",
                "modelSettings": {"model": "gpt-4.1-mini", "temperature": 0.3, "maxTokens": 200},
                "tools": [{"kind": "agent", "ref": "helper", "id": "ask_helper"}],
            },
        },
        {}, {"basic": BASIC_SCHEMA},
    )


def test_split_model_settings():
    model, settings = split_model_settings(
        {"model": "gpt-4.1-mini", "temperature": 0.1, "topP": 0.9, "unknownKnob": 1}
    )
    assert model == "gpt-4.1-mini"
    assert settings.temperature == 0.1
    assert settings.top_p == 0.9


def test_split_model_settings_defaults():
    model, settings = split_model_settings({}, default_model="gpt-4o")
    assert model == "gpt-4o"
    assert settings.temperature is None


def test_output_schema_validates_json(agents):
    schema = ShapeOutputSchema(agents["writer"])
    assert schema.name() == "writer_output"
    assert schema.json_schema() == BASIC_SCHEMA
    assert schema.is_plain_text() is False
    assert schema.validate_json('{"result": "x", "noise": 1}') == {"result": "x"}


@pytest.mark.parametrize("payload", ['{"other": 1}', "not json", '{"result": 5}'])
def test_output_schema_rejects_bad_payloads(agents, payload):
    with pytest.raises(OutputShapeError):
        ShapeOutputSchema(agents["writer"]).validate_json(payload)


def test_sdk_agent_is_built_with_tools(agents):
    invoker = OpenAIAgentsInvoker("sk-test", client=openai.AsyncOpenAI(api_key="sk-test"))
    sdk_agent = invoker.to_sdk_agent(agents["writer"])

    assert sdk_agent.name == "Writer"
    assert sdk_agent.instructions == "Write"
    assert sdk_agent.model_settings.temperature == 0.3
    assert sdk_agent.model_settings.max_tokens == 200
    assert [tool.name for tool in sdk_agent.tools] == ["ask_helper"]
    assert sdk_agent.mcp_servers == []


class FakeHttpServer:
    opened = []

    def __init__(self, params, name):
        self.url = params["url"]
        self.name = name
        self.closed = False

    async def __aenter__(self):
        FakeHttpServer.opened.append(self)
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True


@pytest.fixture()
def http_servers(monkeypatch):
    FakeHttpServer.opened = []
    monkeypatch.setattr(llm_agent, "MCPServerStreamableHttp", FakeHttpServer)
    return FakeHttpServer.opened


@pytest.fixture()
def tool_agents_with_http_server():
    return build_agents(
        {
            "searcher": {"outputSchemaRef": "basic", "mcpServerRefs": ["web"]},
            "writer": {
                "outputSchemaRef": "basic",
                "mcpServerRefs": ["web"],
                "tools": [{"kind": "agent", "ref": "searcher"}],
            },
        },
        {"web": "http://localhost:9/mcp"}, {"basic": BASIC_SCHEMA},
    )


def _invoker():
    return OpenAIAgentsInvoker("sk-test", client=openai.AsyncOpenAI(api_key="sk-test"))


async def test_tool_agent_http_servers_are_connected(http_servers, tool_agents_with_http_server):
    writer = tool_agents_with_http_server["writer"]
    searcher_handle = writer.tools[0].agent
    invoker = _invoker()

    async with AsyncExitStack() as stack:
        connected = await invoker.connect_http_servers(writer, stack)
        (server,) = http_servers
        assert connected == {"http://localhost:9/mcp": server}
        assert invoker.to_sdk_agent(searcher_handle, connected).mcp_servers == [server]
        assert invoker.to_sdk_agent(writer, connected).mcp_servers == [server]
    assert server.closed


def test_unconnected_urls_are_not_passed_to_the_sdk(tool_agents_with_http_server):
    searcher = tool_agents_with_http_server["searcher"]
    assert _invoker().to_sdk_agent(searcher).mcp_servers == []


async def test_call_closes_http_servers_after_the_run(monkeypatch, http_servers,
                                                      tool_agents_with_http_server):
    seen = []

    async def fake_run(agent, input):
        seen.append((agent.mcp_servers, [server.closed for server in http_servers]))
        return SimpleNamespace(final_output={"result": "x"},
                               to_input_list=lambda: [*input, {"role": "assistant", "content": "x"}])

    monkeypatch.setattr(llm_agent, "Runner", SimpleNamespace(run=fake_run))
    history = [{"role": "user", "content": "go"}]
    result = await _invoker()(tool_agents_with_http_server["writer"], history)

    assert result.output == {"result": "x"}
    assert len(result.history) == 2
    (server,) = http_servers
    assert seen == [([server], [False])]
    assert server.closed
