"""
Error taxonomy for the completion core.

Configuration and transport failures abort a run and reach the caller.
Tool and malformed-stream failures are absorbed into the transcript so the
model can react to them on its next turn.
"""


class MajordomoError(Exception):
    """Base class for all Majordomo errors."""


class ConfigurationError(MajordomoError):
    """No completion backend could be resolved or built."""


class TransportError(MajordomoError):
    """Talking to a completion backend failed mid-run."""


class ToolExecutionError(MajordomoError):
    """A tool invocation failed."""

    def __init__(self, tool: str, message: str):
        super().__init__(message)
        self.tool = tool


class MalformedStreamError(MajordomoError):
    """Buffered tool-call arguments could not be parsed."""


class PersistenceError(MajordomoError):
    """Reading or writing a session record failed."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id
