from zope.interface import Attribute
from zope.interface import Interface


class IS3Client(Interface):
    """Abstraction over S3-compatible object storage."""

    def get_object(bucket, key):
        """Return a readable stream of the object body, or None if not found."""

    def put_object(bucket, key, stream):
        """Upload everything readable from stream as the object body."""

    def head_object(bucket, key):
        """Return metadata dict for an object, or None if not found."""

    def delete_object(bucket, key):
        """Delete an object."""


class ITransferGate(Interface):
    """Counting limit on transfers running at the same time."""

    capacity = Attribute("Maximum number of permits handed out at once")

    def acquire():
        """Block until a slot is free and return a permit for it."""

    def release(permit):
        """Free the slot held by permit."""

    def slot():
        """Context manager holding one permit for the duration of the block."""


class ITransferService(Interface):
    """Moves files between the object store and the local filesystem."""

    def ping():
        """Return a liveness message."""

    def download(request):
        """Fetch an object to a local path and return a DownloadResult."""

    def upload(request):
        """Store a local path as an object and return an UploadResult."""
