from s3sidecar.gate import TransferGate
from s3sidecar.interfaces import ITransferGate

import pytest
import threading
import time


class TestInterface:
    def test_interface_provided(self):
        assert ITransferGate.providedBy(TransferGate(1))


class TestCapacity:
    @pytest.mark.parametrize("capacity", [0, -1])
    def test_capacity_must_be_positive(self, capacity):
        with pytest.raises(ValueError):
            TransferGate(capacity)

    def test_acquire_release_counts(self):
        gate = TransferGate(2)
        first = gate.acquire()
        second = gate.acquire()
        assert gate.active == 2
        gate.release(first)
        gate.release(second)
        assert gate.active == 0

    def test_release_twice_is_noop(self):
        gate = TransferGate(1)
        permit = gate.acquire()
        gate.release(permit)
        gate.release(permit)
        assert gate.active == 0
        # The slot is free exactly once.
        gate.release(gate.acquire())

    def test_foreign_permit_rejected(self):
        gate = TransferGate(1)
        permit = TransferGate(1).acquire()
        with pytest.raises(ValueError):
            gate.release(permit)

    def test_acquire_blocks_when_full(self):
        gate = TransferGate(1)
        held = gate.acquire()
        acquired = threading.Event()

        def _waiter():
            gate.release(gate.acquire())
            acquired.set()

        t = threading.Thread(target=_waiter)
        t.start()
        assert not acquired.wait(timeout=0.2)
        gate.release(held)
        assert acquired.wait(timeout=5)
        t.join()

    def test_slot_releases_on_error(self):
        gate = TransferGate(1)
        with pytest.raises(RuntimeError):
            with gate.slot():
                assert gate.active == 1
                raise RuntimeError("boom")
        assert gate.active == 0


class TestConcurrency:
    def test_peak_never_exceeds_capacity(self):
        capacity = 3
        gate = TransferGate(capacity)
        lock = threading.Lock()
        running = 0
        peak = 0

        def _transfer():
            nonlocal running, peak
            with gate.slot():
                with lock:
                    running += 1
                    peak = max(peak, running)
                time.sleep(0.05)
                with lock:
                    running -= 1

        threads = [threading.Thread(target=_transfer) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak <= capacity
        assert peak == capacity
        assert gate.active == 0
