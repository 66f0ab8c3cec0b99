"""JSON-RPC 2.0 endpoint exposing the transfer service.

A single ``POST /rpc`` route accepts ``S3Service.Ping``, ``S3Service.Download``
and ``S3Service.Upload``. Ping is answered on the event loop. Transfers run
in worker threads, each direction behind its own thread limiter sized to
its gate, so requests queued in one direction wait without holding a
thread and never delay Ping or the other direction.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from s3sidecar.errors import InvalidAddress
from s3sidecar.errors import TransferError
from s3sidecar.service import DownloadRequest
from s3sidecar.service import UploadRequest
from typing import Optional

import anyio
import anyio.to_thread
import dataclasses
import logging


logger = logging.getLogger(__name__)

SERVICE_NAME = "S3Service"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TRANSFER_FAILED = -32000


class DownloadParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str = Field(validation_alias=AliasChoices("s3Path", "address"))
    output_path: str = Field(validation_alias=AliasChoices("outputPath", "output_path"))
    checksum: Optional[str] = None
    decompress: bool = False
    unarchive: bool = Field(False, validation_alias=AliasChoices("untar", "unarchive"))


class UploadParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str = Field(validation_alias=AliasChoices("s3Path", "address"))
    input_path: str = Field(validation_alias=AliasChoices("inputPath", "input_path"))
    archive: bool = Field(False, validation_alias=AliasChoices("createTar", "archive"))
    compress: bool = False


def _ping(service, params):
    return {"message": service.ping()}


def _download(service, params):
    args = DownloadParams.model_validate(params)
    result = service.download(DownloadRequest(**args.model_dump()))
    return dataclasses.asdict(result)


def _upload(service, params):
    args = UploadParams.model_validate(params)
    result = service.upload(UploadRequest(**args.model_dump()))
    return dataclasses.asdict(result)


METHODS = {
    "Ping": _ping,
    "Download": _download,
    "Upload": _upload,
}


def error_response(request_id, code, message, error_type=None):
    error = {"code": code, "message": message}
    if error_type is not None:
        error["data"] = {"type": error_type}
    return {"jsonrpc": "2.0", "error": error, "id": request_id}


def _params(raw):
    if raw is None:
        return {}
    if isinstance(raw, list):
        # Positional form: the request object is the only argument.
        return raw[0] if raw else {}
    return raw


def dispatch(service, payload):
    """Run one JSON-RPC request against ``service`` and build the response."""
    if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
        request_id = payload.get("id") if isinstance(payload, dict) else None
        return error_response(request_id, INVALID_REQUEST, "invalid request")

    request_id = payload.get("id")
    method = payload["method"]
    namespace, _, name = method.rpartition(".")
    handler = METHODS.get(name)
    if handler is None or namespace not in ("", SERVICE_NAME):
        return error_response(request_id, METHOD_NOT_FOUND, f"unknown method: {method}")

    params = _params(payload.get("params"))
    if not isinstance(params, dict):
        return error_response(request_id, INVALID_PARAMS, "params must be an object")

    try:
        result = handler(service, params)
    except ValidationError as e:
        return error_response(request_id, INVALID_PARAMS, f"invalid params: {e}")
    except InvalidAddress as e:
        logger.info("%s rejected: %s", method, e)
        return error_response(request_id, INVALID_PARAMS, str(e), e.code)
    except TransferError as e:
        logger.warning("%s failed: %s", method, e)
        return error_response(request_id, TRANSFER_FAILED, str(e), e.code)
    except Exception as e:
        logger.exception("%s failed unexpectedly", method)
        return error_response(request_id, INTERNAL_ERROR, f"internal error: {e}")
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def _method_name(payload):
    if isinstance(payload, dict) and isinstance(payload.get("method"), str):
        return payload["method"].rpartition(".")[2]
    return None


def create_app(service):
    """Create the FastAPI application serving ``service``."""
    capacities = {
        "Download": service.download_gate.capacity,
        "Upload": service.upload_gate.capacity,
    }
    # Limiters belong to the running event loop, so they are made on first use.
    limiters = {}

    def _limiter(name):
        if name not in limiters:
            limiters[name] = anyio.CapacityLimiter(capacities[name])
        return limiters[name]

    @asynccontextmanager
    async def lifespan(app):
        logger.info(
            "Transfer service ready: %d download slots, %d upload slots",
            service.download_gate.capacity,
            service.upload_gate.capacity,
        )
        yield
        logger.info("Transfer service shutting down")

    application = FastAPI(title="s3sidecar", lifespan=lifespan)
    application.state.service = service

    @application.post("/rpc")
    async def rpc(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse(error_response(None, PARSE_ERROR, "parse error"))
        name = _method_name(payload)
        if name not in capacities:
            # Ping and requests rejected before reaching a transfer.
            return JSONResponse(dispatch(service, payload))
        response = await anyio.to_thread.run_sync(
            dispatch, service, payload, limiter=_limiter(name)
        )
        return JSONResponse(response)

    return application
