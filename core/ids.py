"""
core/ids.py -- Time-ordered 64-bit unique identifiers for new accounts.

Bit layout (MSB -> LSB), relied on by downstream systems for ordering:

    0 | 41-bit ms since EPOCH_MS | 10-bit worker id | 12-bit sequence

One IdGenerator is constructed per process at startup with the worker id from
Settings.worker_id. Two generators with distinct worker ids cannot collide;
assigning those worker ids uniquely is the deployer's job.

Failure policy:
  A clock that moves backwards raises ClockMovedBackwardsError. Callers must
  not retry silently -- continuing could hand out an id that was already
  issued, which is worse than failing the request.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger("cypress.ids")

# 2022-01-01T00:00:00Z
EPOCH_MS = 1640995200000

TIMESTAMP_BITS = 41
WORKER_BITS = 10
SEQUENCE_BITS = 12

MAX_WORKER_ID = (1 << WORKER_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
MAX_TIMESTAMP_OFFSET = (1 << TIMESTAMP_BITS) - 1

WORKER_SHIFT = SEQUENCE_BITS
TIMESTAMP_SHIFT = SEQUENCE_BITS + WORKER_BITS


class ClockMovedBackwardsError(RuntimeError):
    """The wall clock reported a time earlier than the last issued id."""


class IdSpaceExhaustedError(RuntimeError):
    """The timestamp offset no longer fits in 41 bits (or precedes the epoch)."""


class IdParts(NamedTuple):
    timestamp_ms: int
    worker_id: int
    sequence: int


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def compose(timestamp_ms: int, worker_id: int, sequence: int, epoch_ms: int = EPOCH_MS) -> int:
    """Pack the three fields into one id. No range checks beyond masking."""
    return (
        ((timestamp_ms - epoch_ms) << TIMESTAMP_SHIFT)
        | ((worker_id & MAX_WORKER_ID) << WORKER_SHIFT)
        | (sequence & MAX_SEQUENCE)
    )


def decompose(value: int, epoch_ms: int = EPOCH_MS) -> IdParts:
    """Split an id back into (absolute timestamp ms, worker id, sequence)."""
    return IdParts(
        timestamp_ms=(value >> TIMESTAMP_SHIFT) + epoch_ms,
        worker_id=(value >> WORKER_SHIFT) & MAX_WORKER_ID,
        sequence=value & MAX_SEQUENCE,
    )


class IdGenerator:
    """Thread-safe generator of strictly increasing ids for one worker.

    Usage:
        ids = IdGenerator(worker_id=settings.worker_id)
        account_id = ids.next_id()

    `clock` returns the current time in integer milliseconds and exists so
    tests can drive the generator deterministically.
    """

    def __init__(
        self,
        worker_id: int,
        epoch_ms: int = EPOCH_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if not 0 <= worker_id <= MAX_WORKER_ID:
            raise ValueError(f"worker_id must be between 0 and {MAX_WORKER_ID}, got {worker_id}")
        self.worker_id = worker_id
        self.epoch_ms = epoch_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._last_timestamp = -1
        self._sequence = 0

    def next_id(self) -> int:
        """Return the next id. Raises ClockMovedBackwardsError on clock regression."""
        with self._lock:
            now = self._clock()

            if now < self._last_timestamp:
                logger.error(
                    "Clock moved backwards by %dms on worker %d; refusing to generate id",
                    self._last_timestamp - now,
                    self.worker_id,
                )
                raise ClockMovedBackwardsError(
                    f"Clock moved backwards: now={now} last={self._last_timestamp}. Refusing to generate id."
                )

            if now == self._last_timestamp:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    # 4096 ids already issued this millisecond.
                    now = self._wait_next_millis(self._last_timestamp)
            else:
                self._sequence = 0

            offset = now - self.epoch_ms
            if offset < 0 or offset > MAX_TIMESTAMP_OFFSET:
                raise IdSpaceExhaustedError(f"Timestamp offset {offset}ms is outside the 41-bit range")

            self._last_timestamp = now
            return compose(now, self.worker_id, self._sequence, self.epoch_ms)

    def _wait_next_millis(self, last: int) -> int:
        now = self._clock()
        while now <= last:
            now = self._clock()
        return now
