from s3sidecar.address import parse_address
from s3sidecar.checksum import checksum_guard
from s3sidecar.checksum import DigestingReader
from s3sidecar.errors import ChecksumMismatch
from s3sidecar.errors import LocalIOError
from s3sidecar.gate import TransferGate
from s3sidecar.interfaces import ITransferService
from s3sidecar.pipeline import CHUNK_SIZE
from s3sidecar.pipeline import extract_archive
from s3sidecar.pipeline import open_download_stream
from s3sidecar.pipeline import open_upload_stream
from s3sidecar.placement import StagedOutput
from zope.interface import implementer

import contextlib
import dataclasses
import logging
import shutil


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class DownloadRequest:
    address: str
    output_path: str
    checksum: str = None
    decompress: bool = False
    unarchive: bool = False


@dataclasses.dataclass(frozen=True)
class UploadRequest:
    address: str
    input_path: str
    archive: bool = False
    compress: bool = False


@dataclasses.dataclass(frozen=True)
class DownloadResult:
    downloaded: bool
    message: str = ""


@dataclasses.dataclass(frozen=True)
class UploadResult:
    uploaded: bool
    skipped: bool = False
    message: str = ""


@implementer(ITransferService)
class TransferService:
    """Runs downloads and uploads, each direction behind its own gate.

    A missing object makes a download a no-op, an existing object makes
    an upload a no-op. Every other failure propagates as a TransferError.
    """

    def __init__(
        self, s3_client, max_downloads, max_uploads, delete_on_checksum_mismatch=True
    ):
        self._s3_client = s3_client
        self.download_gate = TransferGate(max_downloads, "download")
        self.upload_gate = TransferGate(max_uploads, "upload")
        self.delete_on_checksum_mismatch = delete_on_checksum_mismatch

    def ping(self):
        return "Pong"

    # -- Download --

    def download(self, request):
        with self.download_gate.slot():
            return self._download(request)

    def _download(self, request):
        address = parse_address(request.address)
        body = self._s3_client.get_object(address.bucket, address.key)
        if body is None:
            logger.info("Download of %s skipped, object not found", address)
            return DownloadResult(False, f"object not found: {address}")

        staged = StagedOutput(request.output_path)
        try:
            with contextlib.closing(body), contextlib.closing(
                open_download_stream(body, request.decompress)
            ) as stream:
                if request.unarchive:
                    guard = checksum_guard(request.checksum, name=address.key)
                    with DigestingReader(stream, guard) as reader:
                        extract_archive(reader, staged.path)
                else:
                    with staged.open() as f:
                        guard = checksum_guard(request.checksum, f, name=address.key)
                        shutil.copyfileobj(stream, guard, CHUNK_SIZE)
            guard.verify()
        except ChecksumMismatch as e:
            staged.discard()
            raise self._checksum_failed(address, e) from None
        except OSError as e:
            staged.discard()
            raise LocalIOError(
                f"failed to download {address} to {request.output_path}: {e}"
            ) from e
        except BaseException:
            staged.discard()
            raise

        staged.publish()
        logger.info("Downloaded %s to %s", address, request.output_path)
        return DownloadResult(True, "downloaded")

    def _checksum_failed(self, address, error):
        if not self.delete_on_checksum_mismatch:
            logger.warning("Checksum mismatch for %s, object kept", address)
            return error
        try:
            self._s3_client.delete_object(address.bucket, address.key)
        except Exception as e:
            logger.warning(
                "Failed to delete %s after checksum mismatch", address, exc_info=True
            )
            return ChecksumMismatch(
                error.key, error.expected, error.computed, delete_error=e
            )
        logger.warning("Checksum mismatch for %s, object deleted", address)
        return error

    # -- Upload --

    def upload(self, request):
        with self.upload_gate.slot():
            return self._upload(request)

    def _upload(self, request):
        address = parse_address(request.address)
        if self._s3_client.head_object(address.bucket, address.key) is not None:
            logger.info("Upload to %s skipped, object already exists", address)
            return UploadResult(False, True, f"object already exists: {address}")

        try:
            stream = open_upload_stream(
                request.input_path, archive=request.archive, compress=request.compress
            )
            with contextlib.closing(stream):
                self._s3_client.put_object(address.bucket, address.key, stream)
        except OSError as e:
            raise LocalIOError(
                f"failed to upload {request.input_path} to {address}: {e}"
            ) from e

        logger.info("Uploaded %s to %s", request.input_path, address)
        return UploadResult(True, False, "uploaded")
