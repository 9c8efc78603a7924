"""
Chat Error Taxonomy

Errors raised by the conversation model, the orchestration loop and the
transport layer. Each error carries the HTTP status it maps to when it reaches
the transport boundary; none of them are retried automatically.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chat errors."""

    status_code: int = 500

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ClientInputError(ChatError):
    """Malformed request body or unsupported provider."""

    status_code = 400


class ConfigurationError(ChatError):
    """Deployment is missing something only an operator can fix (e.g. credentials)."""

    status_code = 500


class ProviderError(ChatError):
    """The upstream model provider failed or returned an unusable stream."""

    status_code = 502

    def __init__(
        self,
        provider: str,
        message: str,
        upstream_status: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.provider = provider
        self.upstream_status = upstream_status


class ToolExecutionError(ChatError):
    """A tool failed; captured on the tool part as output-error."""

    def __init__(self, tool_name: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, cause)
        self.tool_name = tool_name


class ApprovalNotFound(ChatError):
    """No open approval request matches the given id."""

    status_code = 404

    def __init__(self, approval_id: str) -> None:
        super().__init__(f"No open approval request with id '{approval_id}'")
        self.approval_id = approval_id


class IllegalTransition(ChatError):
    """A tool part was asked to move to a state it cannot reach."""

    status_code = 409

    def __init__(self, tool_call_id: str, current: str, requested: str) -> None:
        super().__init__(f"Tool call '{tool_call_id}' cannot move from '{current}' to '{requested}'")
        self.tool_call_id = tool_call_id
        self.current = current
        self.requested = requested
