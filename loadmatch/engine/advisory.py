"""
Bounded calls into the untrusted pricing advisor.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Optional, TypeVar

import structlog

from loadmatch.core.errors import AdvisoryFailure
from loadmatch.core.logs import get_logger

T = TypeVar("T")


class AdvisoryRunner:
    """
    Runs advisor calls on a small dedicated pool and stops waiting after a timeout.

    A timed-out call keeps running on its worker thread until it returns;
    the caller has already moved on with its fallback.
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        max_workers: int = 4,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="advisor")
        self.logger = get_logger("advisory_runner", logger)

    def call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Invoke func with a hard timeout.

        Args:
            operation: Name used in log events (e.g. "optimize_price")
            func: Advisor method to call

        Returns:
            Whatever func returned

        Raises:
            AdvisoryFailure: If func raised or did not finish in time
        """
        future = self._executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            future.cancel()
            self.logger.warning("advisor_timeout", operation=operation, timeout_seconds=self.timeout_seconds)
            raise AdvisoryFailure(f"{operation} timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            self.logger.warning("advisor_error", operation=operation, error=str(e))
            raise AdvisoryFailure(f"{operation} failed: {e}") from e

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
