"""
Unit tests for the worker pool and claim ordering.
"""

import threading
import time

import pytest

from album_organizer.core.worker_pool import ClaimSequencer, WorkerPool, default_worker_count


class TestWorkerPool:

    def test_processes_every_item(self):
        pool = WorkerPool(max_workers=4)
        results = dict(pool.process(range(20), lambda n: n * n))
        assert results == {n: n * n for n in range(20)}

    def test_on_error_turns_exception_into_result(self):
        def work(n):
            if n == 3:
                raise ValueError("bad item")
            return n

        pool = WorkerPool(max_workers=2)
        results = dict(pool.process(range(5), work, on_error=lambda item, e: f"error: {e}"))

        assert results[3] == "error: bad item"
        assert results[4] == 4

    def test_error_without_handler_propagates(self):
        def work(n):
            raise RuntimeError("boom")

        pool = WorkerPool(max_workers=1)
        with pytest.raises(RuntimeError):
            list(pool.process(range(3), work))
        assert pool.stopped

    def test_stop_drops_queued_items(self):
        pool = WorkerPool(max_workers=1, buffer_factor=1)
        seen = []

        for item, _ in pool.process(iter(range(10)), lambda n: n):
            seen.append(item)
            pool.request_stop()

        assert seen == [0]

    def test_concurrency_is_bounded(self):
        lock = threading.Lock()
        state = {'running': 0, 'peak': 0}

        def work(n):
            with lock:
                state['running'] += 1
                state['peak'] = max(state['peak'], state['running'])
            time.sleep(0.01)
            with lock:
                state['running'] -= 1
            return n

        pool = WorkerPool(max_workers=2)
        assert len(list(pool.process(range(12), work))) == 12
        assert 1 <= state['peak'] <= 2

    def test_default_worker_count(self):
        assert WorkerPool().max_workers == default_worker_count() >= 1


class TestClaimSequencer:

    def test_turns_run_in_index_order(self):
        sequencer = ClaimSequencer()
        order = []

        def claim(index):
            turn = sequencer.turn(index)
            turn.wait()
            order.append(index)
            turn.release()

        # Started in reverse so later turns are waiting first
        threads = [threading.Thread(target=claim, args=(i,)) for i in reversed(range(6))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert order == list(range(6))

    def test_out_of_order_release(self):
        sequencer = ClaimSequencer()
        sequencer.finish(1)
        sequencer.finish(2)
        assert sequencer._next == 0

        sequencer.finish(0)
        assert sequencer._next == 3

    def test_release_is_idempotent(self):
        sequencer = ClaimSequencer()
        turn = sequencer.turn(0)
        turn.release()
        turn.release()
        sequencer.finish(0)
        assert sequencer._next == 1

    def test_first_turn_never_waits(self):
        sequencer = ClaimSequencer()
        sequencer.turn(0).wait()
