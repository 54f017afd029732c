from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from types import FrameType
from typing import Any, Iterator, Optional

from converge.core.errors import CancellationError

log = logging.getLogger(__name__)


class CancelToken:
    """Run-wide cancellation signal, passed explicitly to every check/apply call.

    Only the first ``cancel()`` has an effect; later calls return False.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
        log.info("cancellation requested: %s", reason)
        return True

    def raise_if_cancelled(self, path: Optional[str] = None) -> None:
        if self._event.is_set():
            raise CancellationError(
                code="E_CANCELLED",
                message=self._reason or "cancelled",
                path=path,
            )


@contextmanager
def graceful_exit(
    token: CancelToken, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)
) -> Iterator[CancelToken]:
    """Route interrupt signals to ``token.cancel`` for the duration of the block.

    In-flight checks/applies are left to finish; the engine stops scheduling new levels.
    Previous handlers are restored on exit.
    """

    def handler(signal_received: int, _frame: FrameType | None) -> None:
        token.cancel(f"received {signal.Signals(signal_received).name}")

    previous: dict[int, Any] = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, handler)
    try:
        yield token
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
