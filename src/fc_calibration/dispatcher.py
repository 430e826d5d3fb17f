"""
Event Dispatcher

Single consumer thread in front of the engine. Transport and UI producers
enqueue work; the worker applies it to the engine one item at a time, so
the engine is never called concurrently from those producers.

User actions (start, confirm, cancel) are applied ahead of inbound traffic
still waiting in the queue, in the order they were submitted. A cancel
therefore wins over a success notice or acknowledgement queued before it.
"""

import itertools
import logging
import threading
from concurrent.futures import Future
from queue import Empty, PriorityQueue
from typing import Any, Callable, Optional, Union

from .engine import CalibrationEngine, InboundMessage, StartResult
from .protocol.messages import SensorKind

logger = logging.getLogger(__name__)

USER_ACTION = 0
INBOUND = 1


class EventDispatcher:
    """Serialises inbound messages and user actions onto one worker thread."""

    def __init__(self, engine: CalibrationEngine, poll_interval: float = 0.5):
        self.engine = engine
        self.poll_interval = poll_interval
        self._queue: PriorityQueue = PriorityQueue()
        self._seq = itertools.count()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def _ensure_worker(self):
        with self._lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(target=self._loop, name="calibration-dispatcher", daemon=True)
            self._worker.start()
            logger.info("Calibration dispatcher started")

    def _put(self, action: Callable[[], Any], priority: int = INBOUND) -> Future:
        future: Future = Future()
        self._ensure_worker()
        # seq keeps FIFO order within a priority and keeps callables out of comparisons
        self._queue.put((priority, next(self._seq), action, future))
        return future

    # -------------------------------------------------------------------------
    # Producers
    # -------------------------------------------------------------------------

    def submit(self, message: InboundMessage) -> Future:
        """Queue an inbound protocol message."""
        return self._put(lambda: self.engine.handle_message(message))

    def start(self, sensor_kind: Union[SensorKind, str]) -> "Future[StartResult]":
        return self._put(lambda: self.engine.start(sensor_kind), USER_ACTION)

    def confirm(self) -> "Future[bool]":
        return self._put(self.engine.confirm_current_position, USER_ACTION)

    def cancel(self) -> "Future[bool]":
        return self._put(self.engine.cancel, USER_ACTION)

    def link_lost(self, reason: str = "Link to flight controller lost") -> "Future[bool]":
        return self._put(lambda: self.engine.handle_link_lost(reason))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def join(self):
        """Block until every queued item has been processed."""
        self._queue.join()

    def stop(self, timeout: float = 2.0):
        """Drain the queue and stop the worker."""
        if not self._running:
            return
        self.join()
        self._running = False
        if self._worker:
            self._worker.join(timeout=timeout)
        logger.info("Calibration dispatcher stopped")

    def _loop(self):
        while self._running:
            try:
                _, _, action, future = self._queue.get(timeout=self.poll_interval)
            except Empty:
                continue
            try:
                if future.set_running_or_notify_cancel():
                    future.set_result(action())
            except Exception as e:
                logger.error(f"Dispatcher action failed: {e}")
                future.set_exception(e)
            finally:
                self._queue.task_done()
