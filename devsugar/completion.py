import logging
import queue
import threading
from typing import Optional

from .tokens import TokenSource
from .utils import FlowTimeoutError


class CompletionSignal:
    """
    Carries the outcome of a login flow from the HTTP handler thread to the
    thread waiting on it.

    Exactly one outcome is delivered: the first call to set_result or
    set_error wins and later calls are logged and dropped, so a reloaded
    callback page can never block the handler.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger(__name__)
        self._queue = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def _put(self, kind: str, value) -> bool:
        with self._lock:
            if self._done:
                self._log.warning("Login flow already completed; dropping %s: %s", kind, value)
                return False
            self._done = True
            self._queue.put_nowait((kind, value))
            return True

    def set_result(self, ts: TokenSource) -> bool:
        """Deliver the token source. Returns False if an outcome was already delivered."""
        return self._put('result', ts)

    def set_error(self, err: Exception) -> bool:
        """Deliver a failure. Returns False if an outcome was already delivered."""
        return self._put('error', err)

    def wait(self, timeout: Optional[float] = None) -> TokenSource:
        """
        Block until an outcome is delivered.

        Args:
            timeout: seconds to wait, None waits forever.

        Returns:
            the delivered token source.

        Raises:
            FlowTimeoutError: if nothing was delivered in time.
            Exception: the delivered error.
        """
        try:
            kind, value = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise FlowTimeoutError('Timeout waiting for login flow to complete')
        # Keep the outcome available to later waiters.
        self._queue.put_nowait((kind, value))
        if kind == 'error':
            raise value
        return value
