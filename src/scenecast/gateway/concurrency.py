"""Bounded-parallelism admission control for outbound provider calls."""

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, TypeVar


logger = logging.getLogger(__name__)


T = TypeVar('T')


@dataclass(frozen=True)
class ConcurrencyStatus:
    max_concurrency: int
    active: int
    queued: int


class ConcurrencyController:
    """Admits at most ``max_concurrency`` operations at a time.

    Callers beyond capacity block in a FIFO queue and are admitted strictly
    in the order they called ``execute``. A slot is released when the
    operation finishes, whether it returned or raised.
    """

    def __init__(self, max_concurrency: int = 3):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self._condition = threading.Condition()
        self._queue = deque()
        self._active = 0
        self._tickets = itertools.count()

    def execute(self, func: Callable[[], T]) -> T:
        self._acquire()
        try:
            return func()
        finally:
            self._release()

    def status(self) -> ConcurrencyStatus:
        with self._condition:
            return ConcurrencyStatus(
                max_concurrency=self.max_concurrency,
                active=self._active,
                queued=len(self._queue)
            )

    def _acquire(self) -> None:
        with self._condition:
            ticket = next(self._tickets)
            self._queue.append(ticket)
            if self._queue[0] != ticket or self._active >= self.max_concurrency:
                logger.debug(
                    f"Queued call {ticket}: {self._active} active, {len(self._queue)} waiting"
                )
            while self._queue[0] != ticket or self._active >= self.max_concurrency:
                self._condition.wait()
            self._queue.popleft()
            self._active += 1
            # The next ticket may also fit if more than one slot is free
            self._condition.notify_all()

    def _release(self) -> None:
        with self._condition:
            self._active -= 1
            self._condition.notify_all()
