"""Shared test fixtures."""

import copy
import json
from collections import defaultdict

import pytest

from multisync.agents.llm_agent import InvocationResult

BASIC_SCHEMA = {
    "type": "object",
    "required": ["result"],
    "properties": {"result": {"type": "string"}},
}

REVIEW_SCHEMA = {
    "type": "object",
    "required": ["result"],
    "properties": {
        "result": {"type": "string"},
        "score": {"type": "string", "enum": ["pass", "fail"]},
        "feedback": {"type": "string"},
    },
}


class ScriptedInvoker:
    """Stands in for the LLM call; answers per agent id.

    A script is a fixed value, a list consumed one entry per call (the last
    entry repeats), or a callable ``(agent, history, call_index) -> output``.
    Every call appends an assistant message to the returned history.
    """

    def __init__(self, scripts=None, return_history=True):
        self.scripts = scripts or {}
        self.return_history = return_history
        self.calls = []
        self._counts = defaultdict(int)

    def calls_for(self, agent_id):
        return [history for called_id, history in self.calls if called_id == agent_id]

    async def __call__(self, agent, history):
        index = self._counts[agent.id]
        self._counts[agent.id] += 1
        self.calls.append((agent.id, copy.deepcopy(history)))

        script = self.scripts.get(agent.id, {"result": "ok"})
        if callable(script):
            output = script(agent, history, index)
        elif isinstance(script, list):
            output = script[min(index, len(script) - 1)]
        else:
            output = script

        if not self.return_history:
            return InvocationResult(output=output, history=None)
        reply = {"role": "assistant", "content": json.dumps(output)}
        return InvocationResult(output=output, history=[*history, reply])


class FakeStdioServer:
    def __init__(self, name, command, args, fail=False):
        self.name = name
        self.command = command
        self.args = args
        self.fail = fail
        self.connected = False
        self.cleaned_up = False

    async def connect(self):
        if self.fail:
            raise ConnectionError(f"cannot start {self.command}")
        self.connected = True

    async def cleanup(self):
        self.cleaned_up = True


class StdioFactory:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.servers = []

    def __call__(self, name, command, args):
        server = FakeStdioServer(name, command, args, fail=name in self.failing)
        self.servers.append(server)
        return server


@pytest.fixture()
def invoker():
    return ScriptedInvoker()


@pytest.fixture()
def stdio_factory():
    return StdioFactory()


@pytest.fixture()
def single_step_config():
    return {
        "outputSchemas": {"basic": copy.deepcopy(BASIC_SCHEMA)},
        "agents": {
            "writer": {"name": "Writer", "instructions": "Write", "outputSchemaRef": "basic"},
        },
        "mcpServers": {},
        "flow": {"steps": [{"id": "s1", "type": "single_agent", "agentRef": "writer"}]},
    }


@pytest.fixture()
def review_config():
    return {
        "outputSchemas": {
            "basic": copy.deepcopy(BASIC_SCHEMA),
            "review": copy.deepcopy(REVIEW_SCHEMA),
        },
        "agents": {
            "proposer": {"name": "Proposer", "instructions": "Propose", "outputSchemaRef": "basic"},
            "reviewer": {"name": "Reviewer", "instructions": "Review", "outputSchemaRef": "review"},
        },
        "flow": {
            "steps": [{
                "id": "r1",
                "type": "agent_reviewer",
                "proposalAgentRef": "proposer",
                "reviewerAgentRef": "reviewer",
                "maxTurns": 3,
            }],
        },
    }
