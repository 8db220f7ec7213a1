"""
Flow engine driving a workflow's steps over a shared conversation history
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from multisync.agents.agent_registry import AgentHandle, build_agents
from multisync.agents.llm_agent import AgentInvoker, History, OpenAIAgentsInvoker
from multisync.core.diagnostics import Diagnostics
from multisync.core.errors import FlowOutputError, FlowReferenceError
from multisync.core.executors import (
    DEFAULT_MAX_TURNS,
    DEFAULT_PASS_CONDITION,
    FeedbackInjection,
    StepOutcome,
    execute_agent_reviewer,
    execute_single_agent,
)
from multisync.core.settings import DEFAULT_MODEL, resolve_api_key
from multisync.integration.file_store import OpenAIFileStore
from multisync.integration.mcp_registry import (
    StdioServerFactory,
    close_mcp_servers,
    connect_mcp_servers,
)
from multisync.schemas.validation import validate_config

logger = logging.getLogger(__name__)


class StepType(Enum):
    """Kinds of steps a flow can contain"""
    SINGLE_AGENT = "single_agent"
    AGENT_REVIEWER = "agent_reviewer"


@dataclass
class StepResult:
    """Result of one executed step"""
    step_id: str
    step_type: StepType
    output: Any = None
    passed: Optional[bool] = None
    turns: int = 0
    execution_time: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class FlowContext:
    """Explicit per-run configuration threaded into the engine"""
    api_key: str
    invoker: Optional[AgentInvoker] = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    stdio_factory: Optional[StdioServerFactory] = None
    default_model: str = DEFAULT_MODEL

    def get_invoker(self) -> AgentInvoker:
        if self.invoker is None:
            self.invoker = OpenAIAgentsInvoker(self.api_key, default_model=self.default_model)
        return self.invoker


@dataclass
class FlowRun:
    """State of one flow execution"""
    execution_id: str
    start_time: datetime
    history: History
    output: Any = None
    step_results: List[StepResult] = field(default_factory=list)


def carry_history(step: Mapping[str, Any]) -> bool:
    return ((step.get("io") or {}).get("carryHistory")) is not False


def user_message(content: Any) -> Dict[str, Any]:
    return {"role": "user", "content": content}


def standardize_output(output: Any) -> Dict[str, Any]:
    """Check the final flow output and return it as a result object"""
    if output is None:
        return {"result": ""}
    if isinstance(output, str):
        raise FlowOutputError('Output must be an object with a required "result" property')
    if not isinstance(output, dict) or not output.get("result"):
        raise FlowOutputError('Output must include "result"')
    return output


class Orchestrator:
    """Runs a validated workflow configuration step by step"""

    def __init__(self, context: FlowContext):
        self.context = context

    def _agent(self, agents: Dict[str, AgentHandle], step: Mapping[str, Any], key: str) -> AgentHandle:
        ref = step.get(key)
        agent = agents.get(ref)
        if agent is None:
            raise FlowReferenceError(
                f'Step "{step.get("id")}" references unknown agent "{ref}" ({key})'
            )
        return agent

    async def _execute_step(self, step: Mapping[str, Any], agents: Dict[str, AgentHandle],
                            history: History) -> StepOutcome:
        step_type = step.get("type")
        invoke = self.context.get_invoker()

        if step_type == StepType.SINGLE_AGENT.value:
            agent = self._agent(agents, step, "agentRef")
            return await execute_single_agent(invoke, agent, history, carry_history(step))

        if step_type == StepType.AGENT_REVIEWER.value:
            proposal = self._agent(agents, step, "proposalAgentRef")
            reviewer = self._agent(agents, step, "reviewerAgentRef")
            max_turns = step.get("maxTurns")
            if isinstance(max_turns, bool) or not isinstance(max_turns, int):
                max_turns = DEFAULT_MAX_TURNS
            return await execute_agent_reviewer(
                invoke,
                proposal,
                reviewer,
                history,
                pass_condition=step.get("passCondition") or DEFAULT_PASS_CONDITION,
                max_turns=max_turns,
                feedback_injection=FeedbackInjection(
                    step.get("feedbackInjection") or FeedbackInjection.AS_USER.value
                ),
                carry_history=carry_history(step),
            )

        raise FlowReferenceError(f"Unknown step type: {step_type}")

    async def execute(self, config: Dict[str, Any], history: History) -> FlowRun:
        """Build servers and agents, then run every step in order.

        A review step that never passes does not stop the flow.
        """
        validate_config(config)

        run = FlowRun(
            execution_id=f"flow_{uuid.uuid4().hex[:8]}",
            start_time=datetime.now(),
            history=list(history),
        )
        diagnostics = self.context.diagnostics

        mcp_registry = await connect_mcp_servers(
            config.get("mcpServers") or {}, diagnostics, self.context.stdio_factory
        )
        try:
            agents = build_agents(
                config.get("agents") or {}, mcp_registry,
                config.get("outputSchemas") or {}, diagnostics,
            )

            for step in config["flow"]["steps"]:
                step_id = step.get("id")
                logger.info(f"Executing step {step_id} of type {step.get('type')}")
                started = datetime.now()

                outcome = await self._execute_step(step, agents, run.history)
                run.output = outcome.output
                run.history = outcome.history

                run.step_results.append(StepResult(
                    step_id=step_id,
                    step_type=StepType(step["type"]),
                    output=outcome.output,
                    passed=outcome.passed,
                    turns=outcome.turns,
                    execution_time=(datetime.now() - started).total_seconds(),
                ))
                if outcome.passed is False:
                    logger.warning(f"Step {step_id} exhausted its review turns, continuing")
        finally:
            await close_mcp_servers(mcp_registry)

        elapsed = (datetime.now() - run.start_time).total_seconds()
        logger.info(f"Flow {run.execution_id} completed {len(run.step_results)} step(s) in {elapsed:.2f}s")
        return run

    async def run(self, config: Dict[str, Any], history: History) -> Dict[str, Any]:
        run = await self.execute(config, history)
        return standardize_output(run.output)


def make_context(api_key: Optional[str] = None, *, invoker: Optional[AgentInvoker] = None,
                 diagnostics: Optional[Diagnostics] = None,
                 stdio_factory: Optional[StdioServerFactory] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 default_model: str = DEFAULT_MODEL) -> FlowContext:
    """Resolve the credential and bundle per-run collaborators"""
    return FlowContext(
        api_key=resolve_api_key(api_key, environ),
        invoker=invoker,
        diagnostics=diagnostics if diagnostics is not None else Diagnostics(),
        stdio_factory=stdio_factory,
        default_model=default_model,
    )


async def run_flow(config: Dict[str, Any], user_prompt: str,
                   api_key: Optional[str] = None, **options) -> Dict[str, Any]:
    """Run a workflow for one user prompt and return its result object"""
    context = make_context(api_key, **options)
    return await Orchestrator(context).run(config, [user_message(user_prompt)])


def run_flow_sync(config: Dict[str, Any], user_prompt: str,
                  api_key: Optional[str] = None, **options) -> Dict[str, Any]:
    return asyncio.run(run_flow(config, user_prompt, api_key, **options))


async def _run_with_staged_file(context: FlowContext, config: Dict[str, Any], store,
                                file_id: str, user_prompt: str,
                                delete_file_after: bool) -> Dict[str, Any]:
    history = [user_message([
        {"type": "input_file", "file_id": file_id},
        {"type": "input_text", "text": user_prompt},
    ])]
    try:
        run = await Orchestrator(context).execute(config, history)
    finally:
        if delete_file_after:
            await store.delete_quietly(file_id)
    return {**standardize_output(run.output), "fileId": file_id}


async def run_flow_with_file(config: Dict[str, Any], file_path, user_prompt: str,
                             api_key: Optional[str] = None, *, delete_file_after: bool = True,
                             file_store=None, **options) -> Dict[str, Any]:
    """Upload ``file_path`` and run the flow with it attached to the prompt"""
    context = make_context(api_key, **options)
    validate_config(config)

    store = file_store or OpenAIFileStore(context.api_key)
    file_id = await store.create_from_path(Path(file_path))
    return await _run_with_staged_file(
        context, config, store, file_id, user_prompt, delete_file_after
    )


async def run_flow_with_file_bytes(config: Dict[str, Any], data: bytes, file_name: str,
                                   user_prompt: str, api_key: Optional[str] = None, *,
                                   mime_type: Optional[str] = None,
                                   delete_file_after: bool = True,
                                   file_store=None, **options) -> Dict[str, Any]:
    """Upload in-memory ``data`` and run the flow with it attached"""
    context = make_context(api_key, **options)
    validate_config(config)

    store = file_store or OpenAIFileStore(context.api_key)
    file_id = await store.create_from_bytes(data, file_name, mime_type=mime_type)
    return await _run_with_staged_file(
        context, config, store, file_id, user_prompt, delete_file_after
    )
