from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from s3sidecar.errors import ConfigError
from typing import Literal
from typing import Optional

import json
import os


CONFIG_ENV = "CONFIG"


class SidecarConfig(BaseModel):
    """Process-wide settings, passed once at startup as a JSON object."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    socket_path: str = Field(alias="socketPath", min_length=1)
    max_download_concurrency: int = Field(alias="maxDownloadConcurrency", ge=1)
    max_upload_concurrency: int = Field(alias="maxUploadConcurrency", ge=1)
    aws_region: str = Field(alias="awsRegion", min_length=1)
    aws_access_key_id: str = Field(alias="awsAccessKeyId", min_length=1)
    aws_secret_access_key: str = Field(alias="awsSecretAccessKey", min_length=1)
    endpoint_url: Optional[str] = Field(None, alias="endpointUrl")
    use_ssl: bool = Field(True, alias="useSsl")
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        "auto", alias="addressingStyle"
    )
    connect_timeout: int = Field(60, alias="connectTimeout", ge=1)
    read_timeout: int = Field(60, alias="readTimeout", ge=1)
    delete_on_checksum_mismatch: bool = Field(True, alias="deleteOnChecksumMismatch")
    log_level: str = Field("INFO", alias="logLevel")

    def open(self):
        """Build the transfer service described by this configuration."""
        from s3sidecar.s3client import S3Client
        from s3sidecar.service import TransferService

        s3_client = S3Client(
            endpoint_url=self.endpoint_url,
            region_name=self.aws_region,
            aws_access_key_id=self.aws_access_key_id,
            aws_secret_access_key=self.aws_secret_access_key,
            use_ssl=self.use_ssl,
            addressing_style=self.addressing_style,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            max_pool_connections=max(
                10, self.max_download_concurrency + self.max_upload_concurrency
            ),
        )
        return TransferService(
            s3_client,
            max_downloads=self.max_download_concurrency,
            max_uploads=self.max_upload_concurrency,
            delete_on_checksum_mismatch=self.delete_on_checksum_mismatch,
        )


def parse_config(data):
    """Validate a JSON document (str) or an already decoded mapping."""
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise ConfigError(f"failed to parse configuration: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("failed to parse configuration: expected a JSON object")
    try:
        return SidecarConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def load_config(raw=None, environ=None):
    """Use ``raw`` when given, else the CONFIG environment variable."""
    if raw is None:
        raw = (os.environ if environ is None else environ).get(CONFIG_ENV)
    if not raw:
        raise ConfigError(f"{CONFIG_ENV} environment variable is not set")
    return parse_config(raw)
