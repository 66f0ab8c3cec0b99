from s3sidecar.checksum import checksum_guard
from s3sidecar.checksum import ChecksumGuard
from s3sidecar.checksum import DigestingReader
from s3sidecar.checksum import NullChecksumGuard
from s3sidecar.errors import ChecksumMismatch

import hashlib
import io
import os
import pytest


DATA = os.urandom(100000)
DIGEST = hashlib.sha512(DATA).hexdigest()


def _write_in_chunks(guard, data, size=4096):
    for i in range(0, len(data), size):
        guard.write(data[i : i + size])


class TestChecksumGuard:
    def test_digest_matches_independent_hash(self):
        guard = ChecksumGuard(DIGEST)
        _write_in_chunks(guard, DATA)
        assert guard.hexdigest() == DIGEST
        assert len(guard.hexdigest()) == 128

    def test_verify_success_returns_digest(self):
        guard = ChecksumGuard(DIGEST)
        _write_in_chunks(guard, DATA)
        assert guard.verify() == DIGEST

    def test_verify_mismatch(self):
        guard = ChecksumGuard("deadbeef", name="some/key")
        _write_in_chunks(guard, DATA)
        with pytest.raises(ChecksumMismatch) as exc_info:
            guard.verify()
        error = exc_info.value
        assert error.expected == "deadbeef"
        assert error.computed == DIGEST
        assert "some/key" in str(error)

    def test_comparison_is_case_sensitive(self):
        guard = ChecksumGuard(DIGEST.upper())
        guard.write(DATA)
        with pytest.raises(ChecksumMismatch):
            guard.verify()

    def test_partial_write_fails(self):
        guard = ChecksumGuard(DIGEST)
        guard.write(DATA[:-1])
        with pytest.raises(ChecksumMismatch):
            guard.verify()

    def test_forwards_to_target(self):
        target = io.BytesIO()
        guard = ChecksumGuard(DIGEST, target)
        _write_in_chunks(guard, DATA)
        guard.flush()
        assert target.getvalue() == DATA
        guard.verify()


class TestNullChecksumGuard:
    @pytest.mark.parametrize("expected", [None, ""])
    def test_no_checksum_means_no_guard(self, expected):
        guard = checksum_guard(expected)
        assert isinstance(guard, NullChecksumGuard)
        assert not hasattr(guard, "hexdigest")

    def test_passes_through_and_verifies(self):
        target = io.BytesIO()
        guard = checksum_guard(None, target)
        guard.write(b"anything")
        assert guard.verify() is None
        assert target.getvalue() == b"anything"

    def test_checksum_given_means_guard(self):
        assert isinstance(checksum_guard(DIGEST), ChecksumGuard)


class TestDigestingReader:
    def test_guard_sees_everything_read(self):
        guard = ChecksumGuard(DIGEST)
        reader = DigestingReader(io.BytesIO(DATA), guard)
        assert reader.read() == DATA
        guard.verify()

    def test_close_closes_source(self):
        source = io.BytesIO(b"x")
        DigestingReader(source, ChecksumGuard("x")).close()
        assert source.closed
