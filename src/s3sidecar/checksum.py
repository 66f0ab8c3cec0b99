from s3sidecar.errors import ChecksumMismatch

import hashlib
import io


class ChecksumGuard:
    """Writer that digests every byte before passing it on to ``target``.

    Without a target the guard only observes, see ``DigestingReader``.
    """

    def __init__(self, expected, target=None, name=""):
        self.expected = expected
        self.target = target
        self.name = name
        self._hash = hashlib.sha512()

    def writable(self):
        return True

    def write(self, data):
        self._hash.update(data)
        if self.target is not None:
            return self.target.write(data)
        return len(data)

    def flush(self):
        if self.target is not None:
            self.target.flush()

    def hexdigest(self):
        return self._hash.hexdigest()

    def verify(self):
        computed = self.hexdigest()
        if computed != self.expected:
            raise ChecksumMismatch(self.name, self.expected, computed)
        return computed


class NullChecksumGuard:
    """Pass-through used when no checksum was requested."""

    def __init__(self, target=None):
        self.target = target

    def writable(self):
        return True

    def write(self, data):
        if self.target is not None:
            return self.target.write(data)
        return len(data)

    def flush(self):
        if self.target is not None:
            self.target.flush()

    def verify(self):
        return None


def checksum_guard(expected, target=None, name=""):
    if not expected:
        return NullChecksumGuard(target)
    return ChecksumGuard(expected, target, name)


class DigestingReader(io.RawIOBase):
    """Copy everything read from ``source`` into ``guard``."""

    def __init__(self, source, guard):
        self._source = source
        self._guard = guard

    def readable(self):
        return True

    def readinto(self, buffer):
        data = self._source.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        if n:
            self._guard.write(data)
        return n

    def close(self):
        if not self.closed:
            self._source.close()
        super().close()
