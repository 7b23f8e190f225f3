"""
In-process event bus between request handlers and the pipeline worker.

emit() puts (event, payload) on a queue and returns immediately. A dispatcher
thread takes events off the queue and submits every subscribed handler to a
thread pool, so a slow collaborator call for one job never blocks another.
Handler exceptions are logged and dropped; they never reach the publisher.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from queue import Empty, Queue
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

START_VALIDATING = "START_VALIDATING"
START_MINTING = "START_MINTING"
RESET = "RESET"

Handler = Callable[[Any], None]

_STOP = object()


class EventBus:
    def __init__(self, max_workers: int = 4):
        self.max_workers = max_workers
        self._queue: Queue = Queue()
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None

    def on(self, event: str, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, payload: Any = None) -> None:
        """Publish; returns before any handler runs."""
        logger.debug("Emit %s", event)
        self._queue.put((event, payload))

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="replyproof-worker")
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="replyproof-bus", daemon=True)
        self._dispatcher.start()
        logger.info("Event bus started (%d workers)", self.max_workers)

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Finish queued events, then shut the pool down."""
        if not self.running:
            return
        self._queue.put((_STOP, None))
        self._dispatcher.join(timeout)
        self._executor.shutdown(wait=True)
        self._dispatcher = None
        self._executor = None
        logger.info("Event bus stopped")

    def drain(self, timeout: float = 10.0) -> bool:
        """Block until the queue is empty and every handler task has finished."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                idle = self._queue.unfinished_tasks == 0 and not self._pending
            if idle:
                return True
            time.sleep(0.01)
        return False

    def _dispatch_loop(self) -> None:
        while True:
            try:
                event, payload = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                if event is _STOP:
                    return
                with self._lock:
                    handlers = list(self._handlers.get(event, ()))
                if not handlers:
                    logger.warning("No handler for event %s; dropped", event)
                for handler in handlers:
                    self._submit(event, handler, payload)
            finally:
                self._queue.task_done()

    def _submit(self, event: str, handler: Handler, payload: Any) -> None:
        future = self._executor.submit(handler, payload)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f, ev=event: self._done(ev, f))

    def _done(self, event: str, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Handler for %s failed: %s", event, exc, exc_info=exc)
        with self._lock:
            self._pending.discard(future)
