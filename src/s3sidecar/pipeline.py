"""Stream stages applied between the local filesystem and the object store.

Uploads are encoded archive first, then compressed (the outermost layer is
the one on the wire). Downloads are decoded in the opposite order. Every
stage takes a readable stream and returns one; a disabled stage is left out.
"""

from s3sidecar.conduit import run_producer
from s3sidecar.errors import CorruptStream
from s3sidecar.errors import TruncatedArchive
from s3sidecar.errors import WriteConflict

import gzip
import io
import logging
import os
import shutil
import tarfile
import zlib


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_TRUNCATION_MESSAGES = ("unexpected end of data", "empty file", "truncated header")


def open_upload_stream(input_path, archive=False, compress=False):
    if archive:
        stream = archive_stream(input_path)
    else:
        stream = open(input_path, "rb")
    if compress:
        stream = compress_stream(stream)
    return stream


def open_download_stream(body, decompress=False):
    if decompress:
        return decompress_stream(body)
    return body


# -- Compression --


def compress_stream(source):
    """Gzip ``source`` in a producer thread; closes ``source`` when done."""

    def _produce(writer):
        try:
            with gzip.GzipFile(fileobj=writer, mode="wb") as gz:
                shutil.copyfileobj(source, gz, CHUNK_SIZE)
        finally:
            source.close()

    return run_producer(_produce, name="gzip-encode")


def decompress_stream(source):
    return _GzipDecodeReader(source)


class _CountingReader(io.RawIOBase):
    """Count bytes read from ``source``. Closing it leaves ``source`` open."""

    def __init__(self, source):
        self._source = source
        self.count = 0

    def readable(self):
        return True

    def readinto(self, buffer):
        data = self._source.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        self.count += n
        return n


class _GzipDecodeReader(io.RawIOBase):
    def __init__(self, source):
        self._raw = source
        self._source = _CountingReader(source)
        self._gzip = gzip.GzipFile(fileobj=self._source, mode="rb")

    def readable(self):
        return True

    def readinto(self, buffer):
        try:
            n = self._gzip.readinto(buffer)
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            raise CorruptStream(f"failed to decompress stream: {e}") from e
        if n == 0 and self._source.count == 0 and len(buffer):
            raise CorruptStream("failed to decompress stream: empty input")
        return n

    def close(self):
        if not self.closed:
            self._gzip.close()
            self._raw.close()
        super().close()


# -- Archive --


def archive_stream(path):
    """Tar the tree at ``path`` in a producer thread."""
    # Fail in the caller's thread when the input is missing.
    os.lstat(path)
    return run_producer(_write_archive, path, name="tar-encode")


def _raise(error):
    raise error


def walk_tree(path):
    """Yield ``(full_path, arcname)`` for every entry below ``path``.

    Parents come before their children and siblings are sorted by name.
    """
    if not os.path.isdir(path):
        yield path, os.path.basename(path)
        return
    for dirpath, dirnames, filenames in os.walk(path, onerror=_raise):
        dirnames.sort()
        for name in sorted(dirnames + filenames):
            full_path = os.path.join(dirpath, name)
            yield full_path, os.path.relpath(full_path, path)


def _write_archive(writer, path):
    with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        for full_path, arcname in walk_tree(path):
            info = tar.gettarinfo(full_path, arcname=arcname)
            if info is None:
                logger.debug("Skipping unsupported file type: %s", full_path)
                continue
            if info.isreg():
                with open(full_path, "rb") as f:
                    tar.addfile(info, f)
            else:
                tar.addfile(info)


def extract_archive(source, target_dir):
    """Materialize the tar stream ``source`` below ``target_dir``.

    Files are created exclusively, an entry that already exists raises
    WriteConflict. ``source`` is read to its end so that any reader
    wrapping it has seen every byte.
    """
    counter = _CountingReader(source)
    os.makedirs(target_dir, exist_ok=True)
    root = os.path.abspath(target_dir)
    directories = []
    try:
        with tarfile.open(fileobj=counter, mode="r|") as tar:
            for member in tar:
                target = _member_path(root, member.name)
                if member.isdir():
                    # Owner needs write access until children are in place.
                    os.makedirs(target, mode=0o700, exist_ok=True)
                    directories.append((target, member.mode & 0o777))
                elif member.isreg():
                    os.makedirs(os.path.dirname(target), exist_ok=True)
                    _write_member(tar, member, target)
                else:
                    logger.debug("Skipping tar entry %s of type %r", member.name, member.type)
    except tarfile.ReadError as e:
        if str(e) in _TRUNCATION_MESSAGES:
            raise TruncatedArchive(f"failed to untar stream: {e}") from e
        raise CorruptStream(f"failed to untar stream: {e}") from e
    except FileExistsError as e:
        raise WriteConflict(f"failed to untar stream, already exists: {e.filename}") from e

    while counter.read(CHUNK_SIZE):
        pass
    if counter.count % tarfile.BLOCKSIZE:
        raise TruncatedArchive(
            f"failed to untar stream: {counter.count} bytes is not a whole number of blocks"
        )

    for path, mode in reversed(directories):
        os.chmod(path, mode)


def _member_path(root, name):
    target = os.path.normpath(os.path.join(root, name))
    if os.path.commonpath([root, target]) != root:
        raise CorruptStream(f"failed to untar stream, unsafe entry: {name}")
    return target


def _write_member(tar, member, target):
    fd = os.open(target, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    with os.fdopen(fd, "wb") as f:
        shutil.copyfileobj(tar.extractfile(member), f, CHUNK_SIZE)
        os.fchmod(f.fileno(), member.mode & 0o777)
