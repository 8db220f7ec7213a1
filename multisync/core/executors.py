"""
Step executors: single agent calls and the propose/review loop
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from multisync.agents.agent_registry import AgentHandle
from multisync.agents.llm_agent import AgentInvoker, History
from multisync.core.expression import evaluate

logger = logging.getLogger(__name__)

DEFAULT_PASS_CONDITION = "score == 'pass'"
DEFAULT_MAX_TURNS = 8


class FeedbackInjection(Enum):
    """How reviewer feedback is fed back to the proposer"""
    AS_USER = "as_user"
    AS_SYSTEM = "as_system"
    APPEND_ONLY = "append_only"


@dataclass
class StepOutcome:
    """Output and next history produced by one step"""
    output: Any
    history: History
    passed: Optional[bool] = None
    turns: int = 0


def _adopt(returned: Optional[History], current: History) -> History:
    return list(returned) if returned is not None else current


async def execute_single_agent(invoke: AgentInvoker, agent: AgentHandle,
                               history: History, carry_history: bool = True) -> StepOutcome:
    """Invoke ``agent`` once; keep its history only when carrying"""
    history = list(history)
    result = await invoke(agent, list(history))
    next_history = _adopt(result.history, history) if carry_history else history
    return StepOutcome(output=result.output, history=next_history, turns=1)


def feedback_message(review: Dict[str, Any], injection: FeedbackInjection) -> Optional[Dict[str, Any]]:
    """Build the message that carries review feedback, if any"""
    if injection == FeedbackInjection.APPEND_ONLY:
        return None
    feedback = review.get("feedback")
    if feedback is None:
        feedback = json.dumps(review, default=str)
    role = "system" if injection == FeedbackInjection.AS_SYSTEM else "user"
    return {"role": role, "content": f"Feedback: {feedback}"}


async def execute_agent_reviewer(invoke: AgentInvoker, proposal_agent: AgentHandle,
                                 reviewer_agent: AgentHandle, history: History, *,
                                 pass_condition: str = DEFAULT_PASS_CONDITION,
                                 max_turns: int = DEFAULT_MAX_TURNS,
                                 feedback_injection: FeedbackInjection = FeedbackInjection.AS_USER,
                                 carry_history: bool = True) -> StepOutcome:
    """Run the bounded propose/review loop.

    Each turn the proposer answers and the reviewer judges the answer. The
    loop stops when ``pass_condition`` holds over the review fields plus
    ``turn`` and ``maxTurns``, or when ``max_turns`` is spent. Either way
    the last proposal is returned; ``passed`` tells which.
    """
    injection = FeedbackInjection(feedback_injection)
    next_history: History = list(history)
    last_proposal = None
    turn = 0

    while turn < max_turns:
        turn += 1

        proposal = await invoke(proposal_agent, list(next_history))
        last_proposal = proposal.output
        if carry_history:
            next_history = _adopt(proposal.history, next_history)

        reviewed = await invoke(reviewer_agent, list(next_history))
        review = reviewed.output if isinstance(reviewed.output, dict) else {}
        if carry_history:
            next_history = _adopt(reviewed.history, next_history)

        if evaluate(pass_condition, {**review, "turn": turn, "maxTurns": max_turns}):
            logger.info(f"Review passed on turn {turn}/{max_turns}")
            return StepOutcome(output=last_proposal, history=next_history,
                               passed=True, turns=turn)

        logger.info(f"Review failed on turn {turn}/{max_turns}")
        if turn < max_turns:
            message = feedback_message(review, injection)
            if message is not None:
                next_history = [*next_history, message]

    logger.info(f"Review loop exhausted after {turn} turn(s)")
    return StepOutcome(output=last_proposal, history=next_history, passed=False, turns=turn)
