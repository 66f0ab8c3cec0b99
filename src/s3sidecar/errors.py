class TransferError(Exception):
    """Base class for failures reported back to the RPC caller."""

    code = "TransferError"


class InvalidAddress(TransferError):
    code = "InvalidAddress"


class MissingKey(InvalidAddress):
    code = "MissingKey"


class ObjectNotFound(TransferError):
    code = "ObjectNotFound"


class StoreError(TransferError):
    """Wraps boto3 ClientError to avoid leaking AWS infrastructure details."""

    code = "StoreError"


class CorruptStream(TransferError):
    code = "CorruptStream"


class TruncatedArchive(TransferError):
    code = "TruncatedArchive"


class WriteConflict(TransferError):
    code = "WriteConflict"


class ChecksumMismatch(TransferError):
    code = "ChecksumMismatch"

    def __init__(self, key, expected, computed, delete_error=None):
        message = f"checksum mismatch: {key}, expected {expected}, got {computed}"
        if delete_error is not None:
            message += f", failed to delete object: {delete_error}"
        super().__init__(message)
        self.key = key
        self.expected = expected
        self.computed = computed
        self.delete_error = delete_error


class PlacementError(TransferError):
    """Publishing staged output failed; the staged artifact is left on disk."""

    code = "PlacementError"

    def __init__(self, message, staged_path):
        super().__init__(message)
        self.staged_path = staged_path


class LocalIOError(TransferError):
    code = "LocalIOError"


class ConfigError(Exception):
    """Startup configuration is missing or invalid."""
