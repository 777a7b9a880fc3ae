"""Bounded worker pool that serves accepted client connections."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ClientJob = tuple[object, ClientAddress]
ClientHandler = Callable[[object, ClientAddress], None]


class ThreadPool:
    """Fixed number of connection workers fed from a bounded queue.

    Each accepted connection is handled start to finish by one worker, so a
    client slowly scrubbing through a large file only ties up its own worker.
    """

    def __init__(self, worker_count: int, queue_size: int, handler: ClientHandler) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._queue: queue.Queue[ClientJob] = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._worker_count = worker_count
        self._active_jobs = 0
        self._drain_condition = threading.Condition()
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._threads)

    @property
    def active_jobs(self) -> int:
        with self._drain_condition:
            return self._active_jobs

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"video-worker-{index}",
                daemon=True,
            )
            self._threads.append(worker)
            worker.start()

    def submit(self, client_socket: object, address: ClientAddress) -> bool:
        """Queue a connection; ``False`` means the pool is saturated or stopping."""
        if self._stop_event.is_set():
            return False
        try:
            self._queue.put_nowait((client_socket, address))
        except queue.Full:
            return False
        return True

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._drain_condition:
            while not (self._active_jobs == 0 and self._queue.empty()):
                if deadline is None:
                    self._drain_condition.wait(timeout=0.1)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._drain_condition.wait(timeout=min(remaining, 0.1))
        return True

    def shutdown(self, *, graceful: bool = False, timeout: float | None = None) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        if graceful and not self.wait_for_drain(timeout=timeout):
            logger.warning("Worker pool did not drain within %.1fs", timeout or 0.0)

        self._stop_event.set()
        self._discard_queued()
        for thread in self._threads:
            thread.join(timeout=1.0)

    def _discard_queued(self) -> None:
        while True:
            try:
                client_socket, _address = self._queue.get_nowait()
            except queue.Empty:
                return
            close = getattr(client_socket, "close", None)
            if close is not None:
                close()
            self._queue.task_done()

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                client_socket, address = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue

            with self._drain_condition:
                self._active_jobs += 1
            try:
                self._handler(client_socket, address)
            except Exception:
                logger.exception("Unhandled error while serving %s", address[0])
            finally:
                with self._drain_condition:
                    self._active_jobs -= 1
                    self._drain_condition.notify_all()
                self._queue.task_done()
