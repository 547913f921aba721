from typing import Any, Awaitable, Callable, Optional, Sequence, Type

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from tryon.core.settings import logger


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "[retry] attempt=%s failed, backing off %.2fs error=%s",
        state.attempt_number,
        state.next_action.sleep if state.next_action else 0.0,
        exc,
    )


class TenacityRetryAdapter:
    """Tenacity-based retry adapter implementing RetryPort.

    Exponential backoff for async callables. Call-time kwargs override the
    default policy (attempts, wait_initial, wait_max, exception_types,
    should_retry). `should_retry` narrows the exception types further, e.g.
    to retry 5xx answers but not 4xx rejections.
    """

    def __init__(
        self,
        attempts: int = 3,
        wait_initial: float = 0.2,
        wait_max: float = 1.0,
        exception_types: Sequence[Type[Exception]] = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ) -> None:
        self.attempts = attempts
        self.wait_initial = wait_initial
        self.wait_max = wait_max
        self.exception_types = tuple(exception_types)
        self.should_retry = should_retry

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        attempts = kwargs.pop("attempts", self.attempts)
        wait_initial = kwargs.pop("wait_initial", self.wait_initial)
        wait_max = kwargs.pop("wait_max", self.wait_max)
        exception_types = tuple(kwargs.pop("exception_types", self.exception_types))
        should_retry = kwargs.pop("should_retry", self.should_retry)

        def _retryable(exc: BaseException) -> bool:
            if not isinstance(exc, exception_types):
                return False
            return should_retry(exc) if should_retry else True

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=wait_initial, max=wait_max),
            retry=retry_if_exception(_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:  # pragma: no cover - control flow instrumentation
            with attempt:
                return await func(*args, **kwargs)
