"""End-to-end tests: RPC client, FastAPI app, transfer service and moto S3."""

from fastapi.testclient import TestClient
from moto import mock_aws
from s3sidecar.client import RPCError
from s3sidecar.client import SidecarClient
from s3sidecar.config import parse_config
from s3sidecar.pipeline import archive_stream
from s3sidecar.rpc import create_app

import boto3
import gzip
import hashlib
import pytest


CONFIG = {
    "socketPath": "/tmp/unused.sock",
    "maxDownloadConcurrency": 2,
    "maxUploadConcurrency": 2,
    "awsRegion": "us-east-1",
    "awsAccessKeyId": "testing",
    "awsSecretAccessKey": "testing",
}


@pytest.fixture
def s3_env():
    with mock_aws():
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="test-bucket")
        yield


@pytest.fixture
def client(s3_env):
    service = parse_config(CONFIG).open()
    with TestClient(create_app(service)) as http_client:
        yield SidecarClient(http_client=http_client)


def _object_exists(key):
    listing = boto3.client("s3", region_name="us-east-1").list_objects_v2(
        Bucket="test-bucket", Prefix=key
    )
    return any(item["Key"] == key for item in listing.get("Contents", []))


def _make_tree(root):
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha")
    (root / "sub" / "b.bin").write_bytes(bytes(range(256)) * 64)
    (root / "sub" / "empty").write_bytes(b"")


class TestDirectoryRoundtrip:
    def test_archive_compress_then_extract(self, client, tmp_path):
        src = tmp_path / "src"
        _make_tree(src)
        with archive_stream(str(src)) as stream:
            digest = hashlib.sha512(stream.read()).hexdigest()

        uploaded = client.upload(
            "s3://test-bucket/trees/one.tar.gz", str(src), archive=True, compress=True
        )
        downloaded = client.download(
            "s3://test-bucket/trees/one.tar.gz",
            str(tmp_path / "dst"),
            checksum=digest,
            decompress=True,
            unarchive=True,
        )

        assert uploaded["uploaded"] is True
        assert downloaded["downloaded"] is True
        dst = tmp_path / "dst"
        assert (dst / "a.txt").read_bytes() == b"alpha"
        assert (dst / "sub" / "b.bin").read_bytes() == bytes(range(256)) * 64
        assert (dst / "sub" / "empty").read_bytes() == b""

    def test_stored_object_is_gzip(self, client, tmp_path):
        src = tmp_path / "plain.txt"
        src.write_bytes(b"compress me " * 100)

        client.upload("s3://test-bucket/plain.gz", str(src), compress=True)

        body = boto3.client("s3", region_name="us-east-1").get_object(
            Bucket="test-bucket", Key="plain.gz"
        )["Body"].read()
        assert gzip.decompress(body) == b"compress me " * 100


class TestUploadOnce:
    def test_second_upload_is_skipped(self, client, tmp_path):
        src = tmp_path / "f.bin"
        src.write_bytes(b"first")
        client.upload("s3://test-bucket/once", str(src))
        src.write_bytes(b"second")

        result = client.upload("s3://test-bucket/once", str(src))

        assert result["uploaded"] is False
        assert result["skipped"] is True
        out = tmp_path / "out.bin"
        client.download("s3://test-bucket/once", str(out))
        assert out.read_bytes() == b"first"


class TestChecksumMismatch:
    def test_mismatch_removes_remote_and_local(self, client, tmp_path):
        src = tmp_path / "f.bin"
        src.write_bytes(b"payload")
        client.upload("s3://test-bucket/bad", str(src))
        out = tmp_path / "out.bin"

        with pytest.raises(RPCError) as exc_info:
            client.download("s3://test-bucket/bad", str(out), checksum="0" * 128)

        assert exc_info.value.error_type == "ChecksumMismatch"
        assert not out.exists()
        assert not _object_exists("bad")

    def test_existing_file_survives_mismatch(self, client, tmp_path):
        src = tmp_path / "f.bin"
        src.write_bytes(b"payload")
        client.upload("s3://test-bucket/keep", str(src))
        out = tmp_path / "out.bin"
        out.write_bytes(b"previous")

        with pytest.raises(RPCError):
            client.download("s3://test-bucket/keep", str(out), checksum="0" * 128)

        assert out.read_bytes() == b"previous"
