"""Backend error types and the retry supervisor for stream setup."""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from chatstream.errors import ChatError

logger = logging.getLogger(__name__)


class BackendError(ChatError):
    """Failure reported by a backend adapter."""

    code = "BACKEND_ERROR"
    status_code = 502


class AuthError(BackendError):
    """Backend rejected our credentials."""

    code = "INVALID_API_KEY"
    status_code = 500


class RateLimited(BackendError):
    """Backend asked us to slow down."""

    code = "RATE_LIMITED"
    status_code = 429


class ModelUnavailable(BackendError):
    """Backend does not serve the requested model or rejected the request."""

    code = "MODEL_UNAVAILABLE"
    status_code = 503


class Transient(BackendError):
    """Network or 5xx-class failure; safe to retry before output starts."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 502
    retryable = True


def error_for_status(status: int, message: str) -> BackendError:
    """Map an HTTP status from a backend to a typed error."""
    if status in (401, 403):
        return AuthError(message)
    if status == 429:
        return RateLimited(message)
    if status == 408 or status >= 500:
        return Transient(message)
    return ModelUnavailable(message)


async def _aclose(stream: AsyncIterator[str]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


async def _resume(stream: AsyncIterator[str], first: Optional[str]) -> AsyncIterator[str]:
    """Yield the already-observed first fragment, then the rest of `stream`."""
    try:
        if first is not None:
            yield first
        async for fragment in stream:
            yield fragment
    finally:
        await _aclose(stream)


class RetrySupervisor:
    """
    Retry policy around opening a backend stream.

    Only the setup phase is retried: a stream is considered open once its
    first fragment arrives (or it ends empty). After that, failures are raised
    to the consumer as-is because partial output cannot be replayed.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize retry supervisor.

        Args:
            max_retries: Maximum number of retries after the first attempt
            base_delay: Delay before the first retry in seconds, doubled each retry
            sleep: Awaitable sleep, injectable for tests
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the zero-based `attempt` failed."""
        return self.base_delay * (2**attempt)

    async def open(self, factory: Callable[[], AsyncIterator[str]]) -> AsyncIterator[str]:
        """
        Open a stream from `factory`, retrying transient setup failures.

        Returns:
            An async iterator over every fragment, starting with the first

        Raises:
            The first non-transient error, or the last Transient once retries run out
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            stream = factory()
            try:
                first = await stream.__anext__()
            except StopAsyncIteration:
                return _resume(stream, None)
            except Transient as e:
                await _aclose(stream)
                last_exception = e
                if attempt < self.max_retries:
                    delay = self.delay_for(attempt)
                    logger.warning(
                        f"Backend stream setup failed (attempt {attempt + 1}/{self.max_retries + 1}): {e}. "
                        f"Retrying in {delay}s..."
                    )
                    await self.sleep(delay)
                else:
                    logger.error(f"Backend stream setup failed after {self.max_retries + 1} attempts: {e}")
            except BaseException:
                await _aclose(stream)
                raise
            else:
                return _resume(stream, first)

        raise last_exception
