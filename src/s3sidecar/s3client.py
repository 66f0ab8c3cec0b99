from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError
from botocore.exceptions import ClientError
from s3sidecar.errors import StoreError
from s3sidecar.interfaces import IS3Client
from zope.interface import implementer

import boto3
import io
import logging


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


@implementer(IS3Client)
class S3Client:
    """Thin boto3 wrapper for S3-compatible object storage.

    Unlike a bucket-bound client, every call names its bucket: requests
    carry full ``s3://bucket/key`` addresses.
    """

    def __init__(
        self,
        endpoint_url=None,
        region_name=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
        max_pool_connections=10,
    ):
        config = Config(
            s3={"addressing_style": addressing_style},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            max_pool_connections=max_pool_connections,
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled, data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    def _wrap_client_error(self, e, operation, bucket, key):
        """Wrap ClientError in a generic error, logging the original at DEBUG."""
        logger.debug("S3 %s failed for s3://%s/%s: %s", operation, bucket, key, e)
        raise StoreError(
            f"S3 {operation} failed for s3://{bucket}/{key}: {_error_code(e)}"
        ) from e

    def get_object(self, bucket, key):
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            self._wrap_client_error(e, "get", bucket, key)
        except BotoCoreError as e:
            _wrap_botocore_error(e, "get", bucket, key)
        return ObjectBody(response["Body"], bucket, key)

    def put_object(self, bucket, key, stream):
        try:
            self._client.upload_fileobj(stream, bucket, key)
        except S3UploadFailedError as e:
            # boto3 flattens the ClientError into the message.
            logger.debug("S3 put failed for s3://%s/%s: %s", bucket, key, e)
            raise StoreError(f"S3 put failed for s3://{bucket}/{key}: {e}") from e
        except ClientError as e:
            self._wrap_client_error(e, "put", bucket, key)
        except BotoCoreError as e:
            _wrap_botocore_error(e, "put", bucket, key)

    def delete_object(self, bucket, key):
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            self._wrap_client_error(e, "delete", bucket, key)
        except BotoCoreError as e:
            _wrap_botocore_error(e, "delete", bucket, key)

    def head_object(self, bucket, key):
        try:
            return self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            self._wrap_client_error(e, "head", bucket, key)
        except BotoCoreError as e:
            _wrap_botocore_error(e, "head", bucket, key)


class ObjectBody(io.RawIOBase):
    """Readable object body; transport failures surface as StoreError."""

    def __init__(self, body, bucket, key):
        self._body = body
        self.bucket = bucket
        self.key = key

    def readable(self):
        return True

    def readinto(self, buffer):
        try:
            data = self._body.read(len(buffer))
        except BotoCoreError as e:
            _wrap_botocore_error(e, "read", self.bucket, self.key)
        n = len(data)
        buffer[:n] = data
        return n

    def close(self):
        if not self.closed:
            self._body.close()
        super().close()


def _error_code(e):
    return e.response.get("Error", {}).get("Code", "Unknown")


def _wrap_botocore_error(e, operation, bucket, key):
    logger.debug("S3 %s failed for s3://%s/%s: %s", operation, bucket, key, e)
    raise StoreError(
        f"S3 {operation} failed for s3://{bucket}/{key}: {type(e).__name__}"
    ) from e
