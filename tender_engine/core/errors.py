"""Error types shared by the analysis pipeline and the batch scheduler."""

from dataclasses import dataclass


class OperationCancelled(Exception):
    """Raised when a cancellation token fires.

    Distinct from ``asyncio.CancelledError``: it signals a cooperative abort
    requested by the caller (client disconnect, explicit abort), never a
    failure of the work itself.
    """

    def __init__(self, reason: str = "Operation cancelled"):
        super().__init__(reason)
        self.reason = reason


class ProviderError(Exception):
    """A single generation provider failed or returned nothing usable."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


@dataclass
class ProviderAttempt:
    """Outcome of one provider attempt inside a cascade call."""

    provider: str
    error: str


class AllProvidersFailedError(Exception):
    """No generation provider produced a result.

    The message names the last failure; ``attempts`` keeps every failure for
    diagnostics.
    """

    def __init__(self, attempts: list[ProviderAttempt]):
        self.attempts = attempts
        if attempts:
            last = attempts[-1]
            detail = "; ".join(f"{a.provider}: {a.error}" for a in attempts)
            message = f"All providers failed (last: {last.provider}: {last.error}) [{detail}]"
        else:
            message = "No generation provider is available"
        super().__init__(message)

    @property
    def last_error(self) -> str | None:
        return self.attempts[-1].error if self.attempts else None


class DeadlineExceeded(Exception):
    """A soft deadline was reached before work could start."""


class DocumentFetchError(Exception):
    """The tender document could not be retrieved."""

    def __init__(self, message: str, fetch_method: str | None = None):
        super().__init__(message)
        self.fetch_method = fetch_method


class MalformedResponseError(ValueError):
    """A provider answered, but not with the JSON shape that was asked for."""
