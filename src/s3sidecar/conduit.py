"""Bounded in-memory pipe joining a producer thread to a stream consumer.

``run_producer(fn)`` starts ``fn(writer)`` in a daemon thread and returns the
read end. Whatever ``fn`` raises is re-raised from the reader once the bytes
written before the failure have been consumed, so a broken producer is never
mistaken for a short stream.
"""

import io
import logging
import queue
import threading


logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNKS = 16

_POLL_INTERVAL = 0.1
_EOF = object()


class Conduit:
    def __init__(self, max_chunks=DEFAULT_MAX_CHUNKS):
        self._queue = queue.Queue(maxsize=max_chunks)
        self._reader_closed = threading.Event()
        self.reader = ConduitReader(self)
        self.writer = ConduitWriter(self)

    def _put(self, item):
        # Give up once the reader is gone, a full queue would block forever.
        while not self._reader_closed.is_set():
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue
        raise BrokenPipeError("conduit reader closed")

    def _get(self):
        return self._queue.get()

    def _close_reader(self):
        self._reader_closed.set()
        # Unblock a producer waiting on a full queue.
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break


class ConduitWriter:
    def __init__(self, conduit):
        self._conduit = conduit
        self.closed = False

    def writable(self):
        return True

    def write(self, data):
        if self.closed:
            raise ValueError("write to finished conduit")
        data = bytes(data)
        if data:
            self._conduit._put(data)
        return len(data)

    def flush(self):
        pass

    def finish(self, error=None):
        """Signal end of stream, or a producer failure when ``error`` is set."""
        if self.closed:
            return
        self.closed = True
        try:
            self._conduit._put((_EOF, error))
        except BrokenPipeError:
            pass


class ConduitReader(io.RawIOBase):
    def __init__(self, conduit):
        self._conduit = conduit
        self._pending = b""
        self._eof = False
        self._error = None
        self._thread = None

    def readable(self):
        return True

    def readinto(self, buffer):
        if not self._pending and not self._eof:
            item = self._conduit._get()
            if isinstance(item, tuple) and item[0] is _EOF:
                self._eof = True
                self._error = item[1]
            else:
                self._pending = item
        if not self._pending and self._error is not None:
            raise self._error
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self):
        if not self.closed:
            self._conduit._close_reader()
            if self._thread is not None:
                self._thread.join(timeout=10)
        super().close()


def run_producer(target, *args, name=None, max_chunks=DEFAULT_MAX_CHUNKS):
    """Run ``target(writer, *args)`` in a thread and return the read end."""
    conduit = Conduit(max_chunks)

    def _run():
        try:
            target(conduit.writer, *args)
        except BrokenPipeError as e:
            if not conduit._reader_closed.is_set():
                conduit.writer.finish(e)
            else:
                logger.debug("Producer %s stopped, reader closed", name)
        except BaseException as e:
            logger.debug("Producer %s failed: %s", name, e)
            conduit.writer.finish(e)
        else:
            conduit.writer.finish()

    thread = threading.Thread(target=_run, name=name, daemon=True)
    conduit.reader._thread = thread
    thread.start()
    # Buffered so that read(n) only comes back short at end of stream.
    return io.BufferedReader(conduit.reader)
