from s3sidecar.errors import InvalidAddress
from s3sidecar.errors import MissingKey

import collections


SCHEME = "s3://"


class ObjectAddress(collections.namedtuple("ObjectAddress", ["bucket", "key"])):
    """Bucket and key of one object in the store."""

    __slots__ = ()

    def __str__(self):
        return f"{SCHEME}{self.bucket}/{self.key}"


def parse_address(address):
    """Split ``s3://bucket/key`` into an ObjectAddress.

    The bucket is everything up to the first ``/`` after the scheme and the
    key is the verbatim remainder.
    """
    if not isinstance(address, str) or not address.startswith(SCHEME):
        raise InvalidAddress(f"invalid s3 path: {address}")
    parts = address[len(SCHEME) :].split("/", 1)
    if len(parts) < 2:
        raise MissingKey(f"invalid s3 path, missing key: {address}")
    return ObjectAddress(parts[0], parts[1])
