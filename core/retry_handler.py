# core/retry_handler.py
import asyncio
import random
import time
from typing import Any, Callable, Dict, Optional
import logging

import aiohttp

from core.config import config
from core.errors import SourceFetchError

log = logging.getLogger("calbot.retry")


class ExponentialBackoff:
    """Exponential backoff calculator with jitter"""

    def __init__(self, base_delay: float = 2.0, max_delay: float = 300.0, jitter: bool = True):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-based)"""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)

        if self.jitter:
            # ±25% jitter
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0, delay)


class RetryContext:
    """Context for tracking retry attempts"""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        self.attempts = 0
        self.last_attempt = 0.0
        self.last_error: Optional[Exception] = None
        self.consecutive_failures = 0
        self.last_success = 0.0


class RetryHandler:
    """Handles retry logic with exponential backoff and failure tracking"""

    def __init__(self, max_retries: Optional[int] = None, base_delay: Optional[float] = None):
        self.max_retries = max_retries if max_retries is not None else config.max_retries
        self.backoff = ExponentialBackoff(
            base_delay=base_delay if base_delay is not None else config.base_retry_delay,
            max_delay=300.0,  # 5 minutes max
            jitter=True
        )
        self.contexts: Dict[str, RetryContext] = {}

    def get_context(self, operation_id: str) -> RetryContext:
        """Get or create retry context for operation"""
        if operation_id not in self.contexts:
            self.contexts[operation_id] = RetryContext(operation_id)
        return self.contexts[operation_id]

    def should_retry(self, operation_id: str, exception: Exception) -> bool:
        """Determine if operation should be retried"""
        context = self.get_context(operation_id)

        if context.attempts >= self.max_retries:
            log.warning(f"Max retries ({self.max_retries}) exceeded for {operation_id}")
            return False

        if not self._is_retryable_exception(exception):
            log.debug(f"Non-retryable exception for {operation_id}: {type(exception).__name__}")
            return False

        return True

    def _is_retryable_exception(self, exception: Exception) -> bool:
        """Determine if exception is retryable"""
        if isinstance(exception, SourceFetchError):
            return exception.is_transient

        if isinstance(exception, aiohttp.ClientResponseError):
            # Don't retry 4xx client errors (except 429 rate limit)
            if 400 <= exception.status < 500:
                return exception.status == 429
            return True

        return isinstance(exception, (
            asyncio.TimeoutError,
            ConnectionError,
            OSError,
            aiohttp.ClientError,
        ))

    async def execute_with_retry(
        self,
        operation_id: str,
        operation: Callable,
        *args,
        **kwargs
    ) -> Any:
        """Execute operation with retry logic"""
        context = self.get_context(operation_id)
        context.attempts = 0

        while True:
            try:
                context.attempts += 1
                context.last_attempt = time.time()

                result = await operation(*args, **kwargs)

                context.consecutive_failures = 0
                context.last_success = time.time()
                context.last_error = None

                log.debug(f"Operation {operation_id} succeeded on attempt {context.attempts}")
                return result

            except Exception as e:
                context.last_error = e
                context.consecutive_failures += 1

                if not self.should_retry(operation_id, e):
                    log.error(f"Operation {operation_id} failed permanently: {e}")
                    raise

                delay = self.backoff.calculate_delay(context.attempts - 1)

                log.warning(
                    f"Operation {operation_id} failed (attempt {context.attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )

                await asyncio.sleep(delay)

    def get_failure_count(self, operation_id: str) -> int:
        """Get consecutive failure count for operation"""
        if operation_id in self.contexts:
            return self.contexts[operation_id].consecutive_failures
        return 0

# Global retry handler instance
retry_handler = RetryHandler()
