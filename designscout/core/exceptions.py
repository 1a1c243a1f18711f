"""
Error taxonomy for design-scout

Protocol and workflow errors are recoverable at the route boundary;
connection-level errors are fatal to whatever run is using the browser.
"""

from typing import Any, Optional


class ScoutError(Exception):
    """Base class for every design-scout error"""


class BrowserConnectionError(ScoutError, ConnectionError):
    """The automation process could not be spawned or the handshake failed"""


class NotInitializedError(ScoutError):
    """A tool was called before the capability handshake completed"""


class ConnectionClosedError(ScoutError):
    """The automation process went away while a request was in flight"""


class RequestTimeoutError(ScoutError, TimeoutError):
    """No response arrived for a request within its deadline"""

    def __init__(self, message: str, request_id: Optional[int] = None, method: str = ""):
        self.request_id = request_id
        self.method = method
        super().__init__(message)


class StepTimeoutError(RequestTimeoutError):
    """A workflow step exceeded its own timeout"""


class ToolError(ScoutError):
    """The remote tool reported a failure"""

    def __init__(self, tool: str, message: str, data: Any = None):
        self.tool = tool
        self.data = data
        super().__init__(f"{tool} failed: {message}" if tool else message)


class WorkflowStepError(ScoutError):
    """A workflow aborted at the given step"""

    def __init__(self, step_index: int, step: Any, cause: BaseException):
        self.step_index = step_index
        self.step = step
        self.cause = cause
        description = getattr(step, "description", "") or getattr(step, "action", "")
        super().__init__(f"Step {step_index + 1} ({description}) failed: {cause}")


class StrategyExecutionError(ScoutError):
    """No suggestion strategy could be executed for a search"""


class CaptureWarning(ScoutError):
    """Non-fatal capture problem, collected rather than raised"""


# Errors that mean the browser itself is gone; retries and fallbacks are pointless
FATAL_ERRORS = (BrowserConnectionError, ConnectionClosedError, NotInitializedError)
