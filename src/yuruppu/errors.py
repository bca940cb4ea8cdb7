"""Exception hierarchy for yuruppu.

Every module imports from here. The hierarchy is:

    YuruppuError
    ├── ConfigError
    ├── DuplicateToolError(name)
    ├── ToolError
    │   └── ReplyHandleUsedError
    ├── ToolResponseSchemaError(tool_name)
    ├── ProviderError
    │   ├── ProviderTimeoutError
    │   ├── ProviderRateLimitError(retry_after)
    │   ├── ProviderNetworkError
    │   ├── ProviderAuthError(status_code)
    │   ├── ProviderResponseError
    │   ├── ProviderClosedError
    │   └── CacheNotFoundError
    ├── StorageError
    │   ├── StorageReadError
    │   ├── StorageWriteError
    │   ├── StorageTimeoutError
    │   ├── PreconditionFailedError(key)
    │   ├── ConflictError(key)
    │   └── CorruptDataError(key)
    ├── EventError
    │   ├── EventExistsError
    │   └── EventNotFoundError
    └── AgentError
        ├── AgentClosedError
        ├── AgentTimeoutError
        ├── ToolBudgetExhaustedError(rounds)
        └── HistoryConflictError(attempts)

``kind`` names the failure category reported to whoever invoked the agent.
"""

from __future__ import annotations


class YuruppuError(Exception):
    """Base exception for all yuruppu errors."""

    kind = "internal"


class ConfigError(YuruppuError):
    """Invalid or inconsistent configuration."""

    kind = "config"


# ─── Tool Errors ──────────────────────────────────────────────


class DuplicateToolError(YuruppuError):
    """A tool with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool already registered: {name}")


class ToolError(YuruppuError):
    """A tool failed to carry out its operation.

    The message is shown to the model, so it must stay short and must not
    include internal details.
    """

    kind = "tool"


class ReplyHandleUsedError(ToolError):
    """The reply handle of this delivery was already consumed."""


class ToolResponseSchemaError(YuruppuError):
    """A tool returned a result that violates its own response schema."""

    def __init__(self, tool_name: str, detail: str) -> None:
        self.tool_name = tool_name
        self.detail = detail
        super().__init__(f"{tool_name} returned an invalid response: {detail}")


# ─── Provider Errors ──────────────────────────────────────────


class ProviderError(YuruppuError):
    """Base for LLM provider errors."""

    kind = "provider"


class ProviderTimeoutError(ProviderError):
    """Model call timed out."""

    kind = "timeout"


class ProviderRateLimitError(ProviderError):
    """Rate limit exceeded. Includes retry_after if available."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class ProviderNetworkError(ProviderError):
    """Connection to the provider failed."""


class ProviderAuthError(ProviderError):
    """Invalid or missing API key."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        self.status_code = status_code
        super().__init__(message)


class ProviderResponseError(ProviderError):
    """Invalid, malformed or server-side failed response."""


class ProviderClosedError(ProviderError):
    """The provider was used after close()."""


class CacheNotFoundError(ProviderError):
    """The cache reference is unknown or has expired."""


# ─── Storage Errors ───────────────────────────────────────────


class StorageError(YuruppuError):
    """Base for persistence errors."""

    kind = "storage"


class StorageReadError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


class StorageTimeoutError(StorageError):
    kind = "timeout"


class PreconditionFailedError(StorageError):
    """The object's generation no longer matches the expected one."""

    kind = "conflict"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Generation precondition failed for {key}")


class ConflictError(StorageError):
    """History append was based on a stale revision."""

    kind = "conflict"

    def __init__(self, key: str, expected: int, actual: int) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"History for {key} changed (expected revision {expected}, found {actual})"
        )


class CorruptDataError(StorageError):
    """A stored object exists but cannot be decoded."""

    kind = "corruption"

    def __init__(self, key: str, detail: str) -> None:
        self.key = key
        super().__init__(f"Corrupt data in {key}: {detail}")


# ─── Event Errors ─────────────────────────────────────────────


class EventError(YuruppuError):
    kind = "event"


class EventExistsError(EventError):
    pass


class EventNotFoundError(EventError):
    pass


# ─── Agent Errors ─────────────────────────────────────────────


class AgentError(YuruppuError):
    """Base for agent invocation failures."""

    kind = "agent"


class AgentClosedError(AgentError):
    pass


class AgentTimeoutError(AgentError):
    kind = "timeout"


class ToolBudgetExhaustedError(AgentError):
    """The model kept calling tools without any of them ending the loop."""

    kind = "tool-call budget exhausted"

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds
        super().__init__(f"Tool-call budget exhausted after {rounds} rounds")


class HistoryConflictError(AgentError):
    """History append kept conflicting with concurrent writers."""

    kind = "conflict"

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(f"History append for {key} conflicted {attempts} times")
