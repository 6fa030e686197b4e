"""Error taxonomy for the MongoDB MCP server.

Every failure surfaced to a caller is one of these. Each carries a ``kind``
label, a ``title`` and a flat ``context`` dict so the dispatcher can render
it into a failure envelope without inspecting the exception type.
"""

from typing import Any, Dict, Optional


class MongoMCPError(Exception):
    """Base error; ``kind`` is the label reported to callers."""

    kind = "MongoMCPError"
    title = "Tool Execution Failed"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}


class MalformedFragment(MongoMCPError):
    """Query text that does not decode into the expected structure."""

    kind = "MalformedFragment"

    def __init__(self, field: str, raw: Optional[str], reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}", field=field, raw=raw)
        self.field = field
        self.raw = raw


class InvalidArguments(MongoMCPError):
    kind = "InvalidArguments"


class UnknownOperation(MongoMCPError):
    kind = "UnknownOperation"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class UnknownPrompt(MongoMCPError):
    kind = "UnknownPrompt"
    title = "Prompt Lookup Failed"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown prompt: {name}", prompt=name)
        self.name = name


class InvalidResourceAddress(MongoMCPError):
    kind = "InvalidResourceAddress"
    title = "Resource Read Failed"

    def __init__(self, uri: str, reason: str) -> None:
        super().__init__(reason, uri=uri)
        self.uri = uri


class ConnectionUnavailable(MongoMCPError):
    kind = "ConnectionUnavailable"
    title = "MongoDB Connection Failed"


class StoreOperationFailed(MongoMCPError):
    """A driver error raised while executing an already-decoded operation."""

    kind = "StoreOperationFailed"

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__, driverError=type(cause).__name__)
        self.operation = operation
        self.cause = cause
