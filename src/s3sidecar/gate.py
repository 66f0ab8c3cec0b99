from s3sidecar.interfaces import ITransferGate
from zope.interface import implementer

import contextlib
import logging
import threading


logger = logging.getLogger(__name__)


class Permit:
    __slots__ = ("gate", "released")

    def __init__(self, gate):
        self.gate = gate
        self.released = False


@implementer(ITransferGate)
class TransferGate:
    """Counting limit on concurrent transfers of one direction."""

    def __init__(self, capacity, name="transfer"):
        if capacity < 1:
            raise ValueError(f"{name} gate capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.name = name
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._active = 0

    @property
    def active(self):
        with self._lock:
            return self._active

    def acquire(self):
        self._semaphore.acquire()
        with self._lock:
            self._active += 1
        return Permit(self)

    def release(self, permit):
        if permit.gate is not self:
            raise ValueError("permit belongs to another gate")
        with self._lock:
            if permit.released:
                return
            permit.released = True
            self._active -= 1
        self._semaphore.release()

    @contextlib.contextmanager
    def slot(self):
        permit = self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)
