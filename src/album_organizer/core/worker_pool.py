"""
Bounded worker pool for album processing.

Albums are pulled lazily from an iterator and handed to a thread pool with a
small submission buffer. A stop request ends submission of new albums; albums
already running finish their move before the pool returns.
"""

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Generator, Iterable, Optional, Set, Tuple, TypeVar

from .constants import MAX_WORKER_THREADS

T = TypeVar('T')
U = TypeVar('U')


def default_worker_count() -> int:
    """Worker count derived from the available cores"""
    return max(1, min(os.cpu_count() or 1, MAX_WORKER_THREADS))


class ClaimSequencer:
    """
    Hand out turns in submission order.

    Albums still scan, classify and relocate in parallel; only the duplicate
    claim waits until every earlier album has claimed or given up, so claims
    are decided in the same order as in a single-worker run. Items start in
    submission order, so the earliest unfinished turn always belongs to a
    running item.
    """

    def __init__(self):
        self._condition = threading.Condition()
        self._next = 0
        self._finished: Set[int] = set()

    def turn(self, index: int) -> 'Turn':
        return Turn(self, index)

    def wait_for(self, index: int) -> None:
        """Block until every turn below index has finished"""
        with self._condition:
            self._condition.wait_for(lambda: self._next >= index)

    def finish(self, index: int) -> None:
        with self._condition:
            if index < self._next:
                return
            self._finished.add(index)
            while self._next in self._finished:
                self._finished.discard(self._next)
                self._next += 1
            self._condition.notify_all()


class Turn:
    """One item's place in a ClaimSequencer; release is idempotent"""

    def __init__(self, sequencer: ClaimSequencer, index: int):
        self.sequencer = sequencer
        self.index = index
        self._released = False

    def wait(self) -> None:
        self.sequencer.wait_for(self.index)

    def release(self) -> None:
        if not self._released:
            self._released = True
            self.sequencer.finish(self.index)


class WorkerPool:
    """Process items in parallel, one item per worker at a time"""

    def __init__(self, max_workers: Optional[int] = None, buffer_factor: int = 2):
        self.logger = logging.getLogger(__name__)
        self.max_workers = max_workers or default_worker_count()
        self.buffer_factor = max(1, buffer_factor)
        self._stop_event = threading.Event()

    def request_stop(self) -> None:
        """Take no new items; in-flight items still complete"""
        if not self._stop_event.is_set():
            self.logger.warning("Stop requested; finishing in-flight albums")
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def process(self, items: Iterable[T], processor_func: Callable[[T], U],
                on_error: Optional[Callable[[T, Exception], U]] = None
                ) -> Generator[Tuple[T, U], None, None]:
        """
        Yield (item, result) pairs in completion order.

        Args:
            items: Work items, consumed lazily
            processor_func: Called once per item on a worker thread
            on_error: Turns an unexpected exception into a result; without it
                the exception propagates after in-flight items finish
        """
        item_iterator = iter(items)
        pending: Dict[Future, T] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix='album-worker') as executor:

            def submit_next() -> bool:
                if self._stop_event.is_set():
                    return False
                try:
                    item = next(item_iterator)
                except StopIteration:
                    return False
                pending[executor.submit(processor_func, item)] = item
                return True

            # Fill initial queue
            for _ in range(self.max_workers * self.buffer_factor):
                if not submit_next():
                    break

            while pending:
                if self._stop_event.is_set():
                    # Queued albums that have not started are dropped
                    for future in [f for f in pending if f.cancel()]:
                        pending.pop(future)
                    if not pending:
                        break
                done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                for future in done:
                    item = pending.pop(future)
                    try:
                        result = future.result()
                    except Exception as e:
                        if on_error is None:
                            self._stop_event.set()
                            raise
                        self.logger.error(f"Error processing {item}: {e}")
                        result = on_error(item, e)
                    yield item, result
                    submit_next()
