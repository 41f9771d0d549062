"""
Error taxonomy for the dialog pipeline.

Only ContextUnavailable ever reaches a caller. The other conditions are
recorded (logged, counted, attached to handler outcomes) and the turn
degrades to a best-effort response instead.
"""

from __future__ import annotations


class HearthError(Exception):
    """Base class for all Hearth errors."""


class ContextUnavailable(HearthError):
    """Both context tiers are unreachable. Fatal for the turn."""

    def __init__(self, user_id: str, session_id: str, cause: Exception | None = None):
        self.user_id = user_id
        self.session_id = session_id
        self.cause = cause
        super().__init__(
            f"Context unavailable for {user_id}/{session_id}"
            + (f": {cause}" if cause else "")
        )


class StoreError(HearthError):
    """A single context tier failed (connection, query, decode)."""


class NLUError(HearthError):
    """The NLU collaborator failed (timeout, transport, 5xx, malformed body)."""


class IntentResolutionDegraded(HearthError):
    """NLU unavailable; the local matcher answered instead."""


class PluginTimeout(HearthError):
    """A capability handler exceeded its deadline."""

    def __init__(self, handler: str, timeout: float):
        self.handler = handler
        self.timeout = timeout
        super().__init__(f"Handler '{handler}' timed out after {timeout:.2f}s")


class PluginExecutionFailed(HearthError):
    """A capability handler raised or returned an invalid result."""

    def __init__(self, handler: str, cause: BaseException | None = None):
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler '{handler}' failed: {cause!r}")


class NoCandidateHandler(HearthError):
    """No registered handler accepts the resolved intent."""

    def __init__(self, intent: str):
        self.intent = intent
        super().__init__(f"No handler for intent '{intent}'")


class EnrichmentPartial(HearthError):
    """One or more enrichment sources failed; context returned without them."""

    def __init__(self, failed: dict[str, str]):
        self.failed = failed
        super().__init__(
            "Enrichment partial: "
            + ", ".join(f"{name} ({reason})" for name, reason in failed.items())
        )
