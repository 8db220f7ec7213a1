"""
Exception types raised by the flow engine
"""


class MultisyncError(Exception):
    """Base class for all flow engine errors"""


class MissingApiKeyError(MultisyncError, RuntimeError):
    """Raised when no API credential can be resolved"""


class FlowConfigError(MultisyncError, ValueError):
    """Raised when a workflow configuration is structurally invalid"""


class FlowReferenceError(MultisyncError, LookupError):
    """Raised when a step references an unknown agent or step type"""


class FlowOutputError(MultisyncError, ValueError):
    """Raised when the final flow output has the wrong shape"""


class OutputShapeError(FlowOutputError):
    """Raised when an agent output does not match its declared schema"""

    def __init__(self, message: str, path: str = "$"):
        super().__init__(f"{path}: {message}")
        self.path = path


class FileUploadError(MultisyncError):
    """Raised when staging a file for a flow fails"""
