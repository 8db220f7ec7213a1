"""
Structured diagnostic channel for non-fatal wiring problems
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

logger = logging.getLogger(__name__)


class DiagnosticCode(Enum):
    """Kinds of degraded behaviour the engine tolerates"""
    UNKNOWN_MCP_REF = "unknown_mcp_ref"
    UNKNOWN_MCP_TYPE = "unknown_mcp_type"
    UNKNOWN_AGENT_TOOL = "unknown_agent_tool"
    FUNCTION_TOOL_UNSUPPORTED = "function_tool_unsupported"
    UNKNOWN_TOOL_KIND = "unknown_tool_kind"


@dataclass
class Diagnostic:
    """A single warning raised while wiring a flow"""
    code: DiagnosticCode
    message: str
    subject: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class Diagnostics:
    """Collects warnings for one flow run and mirrors them to the log"""

    def __init__(self):
        self._items: List[Diagnostic] = []

    def warn(self, code: DiagnosticCode, message: str,
             subject: Optional[str] = None) -> Diagnostic:
        diagnostic = Diagnostic(code=code, message=message, subject=subject)
        self._items.append(diagnostic)
        logger.warning(message)
        return diagnostic

    @property
    def warnings(self) -> List[Diagnostic]:
        return list(self._items)

    def codes(self) -> List[DiagnosticCode]:
        return [item.code for item in self._items]
