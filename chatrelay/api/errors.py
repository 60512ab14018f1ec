"""Fatal error kinds for a chat turn.

Tool failures are not here: web tools return ``{"error": ...}`` payloads
that the model sees as tool output.
"""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base error. The message is safe to show to the client."""


class ConfigurationError(ChatRelayError):
    """Upstream credentials or endpoint missing."""


class ProviderError(ChatRelayError):
    """Model API returned a non-success status or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IncompleteStreamError(ProviderError):
    """Stream ended without a final response event."""


class LoopLimitExceeded(ChatRelayError):
    """Model kept requesting tools past max_iterations."""

    def __init__(self, max_iterations: int) -> None:
        super().__init__(
            f"Tool loop exceeded {max_iterations} model calls without a final answer"
        )
        self.max_iterations = max_iterations
