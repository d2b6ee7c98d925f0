"""Retry policy shared by the registry client and the proxy dialer."""

import errno
import logging
import socket
import time
from typing import Callable, Iterator, Optional, TypeVar

import requests
import urllib3.exceptions


logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED_MARKERS = (
    "use of closed network connection",
    "connection reset by peer",
    "broken pipe",
    "bad file descriptor",
)


def exponential_backoff(base: float = 1.0) -> Callable[[int], float]:
    """1s, 2s, 4s... for base=1."""
    return lambda attempt: base * (2 ** (attempt - 1))


def linear_backoff(step: float = 1.0) -> Callable[[int], float]:
    """1s, 2s, 3s... for step=1."""
    return lambda attempt: step * attempt


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.append(getattr(current, "reason", None))
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def is_transient_error(exc: BaseException) -> bool:
    """Timeouts and dropped connections are worth retrying; nothing else is."""
    chain = list(_exception_chain(exc))
    if any(isinstance(error, (ConnectionRefusedError, socket.gaierror)) for error in chain):
        return False
    for error in chain:
        # urllib3 derives NewConnectionError from its timeout error; judge it by its cause.
        if isinstance(error, urllib3.exceptions.NewConnectionError):
            continue
        if isinstance(error, (requests.exceptions.Timeout, urllib3.exceptions.TimeoutError,
                              socket.timeout, TimeoutError)):
            return True
        if isinstance(error, (ConnectionResetError, BrokenPipeError, ConnectionAbortedError)):
            return True
        if isinstance(error, OSError) and error.errno in (errno.ECONNRESET, errno.EPIPE, errno.EBADF):
            return True
        message = str(error).lower()
        if any(marker in message for marker in _CLOSED_MARKERS):
            return True
    return False


class RetryPolicy:
    """Run a callable, retrying errors accepted by ``retryable`` with backoff."""

    def __init__(self, max_attempts: int = 3,
                 backoff: Optional[Callable[[int], float]] = None,
                 retryable: Callable[[BaseException], bool] = is_transient_error,
                 sleep: Callable[[float], None] = time.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or exponential_backoff()
        self.retryable = retryable
        self.sleep = sleep

    def with_attempts(self, max_attempts: int) -> 'RetryPolicy':
        return RetryPolicy(max_attempts, self.backoff, self.retryable, self.sleep)

    def call(self, fn: Callable[..., T], *args, description: str = "operation", **kwargs) -> T:
        attempt = 1
        while True:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if attempt >= self.max_attempts or not self.retryable(e):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"{description} failed: {e}, retrying in {delay:g}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                self.sleep(delay)
                attempt += 1
