"""Provider cascade: ordered fallback across interchangeable generation providers.

Cascading is the retry strategy. A provider that raises or returns an empty
answer hands over to the next available one; there is no retry inside a single
provider. Each attempt is bounded by ``timeout_seconds`` and a provider that
runs over it counts as failed. Callers only ever see
``AllProvidersFailedError`` (or ``OperationCancelled``), never a
provider-specific error type.
"""

import asyncio
import time
from collections.abc import AsyncIterator

from tender_engine.core.cancellation import CancellationToken, ensure_token
from tender_engine.core.config import get_settings
from tender_engine.core.errors import (
    AllProvidersFailedError,
    OperationCancelled,
    ProviderAttempt,
)
from tender_engine.core.logging import get_logger
from tender_engine.core.metrics import ProviderMetrics, provider_metrics
from tender_engine.core.providers import BaseProvider, build_providers

logger = get_logger(__name__)


class ProviderCascade:
    """Try providers in priority order and return the first usable result."""

    def __init__(
        self,
        providers: list[BaseProvider],
        metrics: ProviderMetrics | None = None,
        operation: str = "generate",
        timeout_seconds: float | None = None,
    ):
        self.providers = providers
        self.metrics = metrics or provider_metrics
        self.operation = operation
        if timeout_seconds is None:
            timeout_seconds = get_settings().PROVIDER_TIMEOUT_SECONDS
        self.timeout_seconds = timeout_seconds

    async def run(self, prompt: str, token: CancellationToken | None = None) -> str:
        """
        Generate text with the first provider that succeeds.

        Args:
            prompt: Full prompt text
            token: Shared cancellation token

        Returns:
            Non-empty generated text

        Raises:
            OperationCancelled: If the token fires (no further provider is tried)
            AllProvidersFailedError: If no provider is available or all failed
        """
        token = ensure_token(token)
        attempts: list[ProviderAttempt] = []

        for provider in self.providers:
            token.raise_if_cancelled()
            if not provider.available():
                continue

            start = time.perf_counter()
            try:
                async with asyncio.timeout(self.timeout_seconds):
                    text = await token.guard(provider.generate(prompt))
            except OperationCancelled:
                self._record(provider, False, start, "cancelled")
                raise
            except Exception as e:
                error = self._describe(e)
                self._record(provider, False, start, error)
                attempts.append(ProviderAttempt(provider=provider.name, error=error))
                logger.warning(
                    f"Provider {provider.name} failed, falling back: {error}",
                    extra={"provider": provider.name},
                )
                continue

            if not text or not text.strip():
                self._record(provider, False, start, "empty response")
                attempts.append(ProviderAttempt(provider=provider.name, error="empty response"))
                continue

            self._record(provider, True, start)
            return text

        token.raise_if_cancelled()
        raise AllProvidersFailedError(attempts)

    async def stream(
        self, prompt: str, token: CancellationToken | None = None
    ) -> AsyncIterator[str]:
        """
        Stream text fragments from the first provider that produces output.

        Falls through to the next provider only while nothing has been yielded;
        once a fragment reached the caller, a mid-stream failure is final
        (re-drafting from another provider would duplicate text downstream).
        The timeout only applies until the first fragment arrives.

        Raises:
            OperationCancelled: If the token fires
            AllProvidersFailedError: If no provider produced any fragment, or
                the producing provider failed mid-stream
        """
        token = ensure_token(token)
        attempts: list[ProviderAttempt] = []

        for provider in self.providers:
            token.raise_if_cancelled()
            if not provider.available():
                continue

            start = time.perf_counter()
            yielded = False
            first_fragment_deadline = asyncio.get_running_loop().time() + self.timeout_seconds
            iterator = provider.stream(prompt).__aiter__()
            try:
                while True:
                    try:
                        async with asyncio.timeout_at(None if yielded else first_fragment_deadline):
                            fragment = await token.guard(iterator.__anext__())
                    except StopAsyncIteration:
                        break
                    if fragment:
                        yielded = True
                        yield fragment
            except OperationCancelled:
                self._record(provider, False, start, "cancelled")
                await _close(iterator)
                raise
            except Exception as e:
                error = self._describe(e)
                self._record(provider, False, start, error)
                attempts.append(ProviderAttempt(provider=provider.name, error=error))
                await _close(iterator)
                if yielded:
                    raise AllProvidersFailedError(attempts) from e
                logger.warning(
                    f"Provider {provider.name} stream failed, falling back: {error}",
                    extra={"provider": provider.name},
                )
                continue

            if not yielded:
                self._record(provider, False, start, "empty response")
                attempts.append(ProviderAttempt(provider=provider.name, error="empty response"))
                continue

            self._record(provider, True, start)
            return

        token.raise_if_cancelled()
        raise AllProvidersFailedError(attempts)

    def _describe(self, e: Exception) -> str:
        if isinstance(e, TimeoutError):
            return f"timed out after {self.timeout_seconds:g}s"
        return str(e) or e.__class__.__name__

    def _record(
        self, provider: BaseProvider, success: bool, start: float, error: str | None = None
    ) -> None:
        self.metrics.record(
            provider.name,
            success=success,
            latency_ms=(time.perf_counter() - start) * 1000,
            error=error,
            operation=self.operation,
        )


async def _close(iterator: AsyncIterator[str]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception as e:
            logger.debug(f"Ignoring error while closing provider stream: {e}")


def get_pipeline_cascade(operation: str = "pipeline") -> ProviderCascade:
    """Cascade for structured agent calls (parser, analyst, reviewer)."""
    settings = get_settings()
    order = settings.provider_order(settings.PIPELINE_PROVIDER_ORDER)
    return ProviderCascade(
        build_providers(order, settings),
        operation=operation,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def get_writer_cascade() -> ProviderCascade:
    """Cascade for streamed section drafting."""
    settings = get_settings()
    order = settings.provider_order(settings.WRITER_PROVIDER_ORDER)
    return ProviderCascade(
        build_providers(order, settings),
        operation="writer",
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def get_batch_cascade() -> ProviderCascade:
    """Cascade for single-pass batch analysis."""
    settings = get_settings()
    order = settings.provider_order(settings.BATCH_PROVIDER_ORDER)
    return ProviderCascade(
        build_providers(order, settings),
        operation="batch_analysis",
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )
