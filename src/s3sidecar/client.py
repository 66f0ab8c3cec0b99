"""Caller side of the transfer service.

SidecarClient talks JSON-RPC to the service over its Unix socket.
SidecarProcess starts the service as a child process and waits until it
answers a ping.
"""

import httpx
import itertools
import json
import logging
import subprocess
import sys
import time


logger = logging.getLogger(__name__)

RPC_PATH = "/rpc"


class RPCError(Exception):
    """The service answered with a JSON-RPC error."""

    def __init__(self, code, message, error_type=None):
        super().__init__(message)
        self.code = code
        self.error_type = error_type


class SidecarClient:
    """JSON-RPC client for a running transfer service.

    Pass ``http_client`` to reuse a prebuilt httpx client instead of
    connecting to ``socket_path``.
    """

    def __init__(self, socket_path=None, timeout=None, http_client=None):
        if http_client is None:
            if socket_path is None:
                raise ValueError("socket_path or http_client is required")
            http_client = httpx.Client(
                transport=httpx.HTTPTransport(uds=socket_path),
                base_url="http://s3sidecar",
                timeout=timeout,
            )
        self._http = http_client
        self._ids = itertools.count(1)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._http.close()

    def call(self, method, params=None):
        payload = {
            "jsonrpc": "2.0",
            "method": f"S3Service.{method}",
            "params": [params or {}],
            "id": next(self._ids),
        }
        response = self._http.post(RPC_PATH, json=payload)
        response.raise_for_status()
        data = response.json()
        error = data.get("error")
        if error:
            error_type = (error.get("data") or {}).get("type")
            raise RPCError(error["code"], error["message"], error_type)
        return data["result"]

    def ping(self):
        return self.call("Ping")["message"]

    def download(
        self, address, output_path, checksum=None, decompress=False, unarchive=False
    ):
        params = {
            "s3Path": address,
            "outputPath": output_path,
            "decompress": decompress,
            "untar": unarchive,
        }
        if checksum:
            params["checksum"] = checksum
        return self.call("Download", params)

    def upload(self, address, input_path, archive=False, compress=False):
        return self.call(
            "Upload",
            {
                "s3Path": address,
                "inputPath": input_path,
                "createTar": archive,
                "compress": compress,
            },
        )


class SidecarProcess:
    """Child process running ``python -m s3sidecar serve``."""

    def __init__(self, config, startup_timeout=5.0, poll_interval=0.1):
        self.config = config
        self.socket_path = config.get("socketPath") or config["socket_path"]
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval
        self._process = None

    def start(self):
        """Spawn the service and return a client once it answers a ping."""
        self._process = subprocess.Popen(
            [sys.executable, "-m", "s3sidecar", "serve", json.dumps(self.config)]
        )
        deadline = time.monotonic() + self.startup_timeout
        with SidecarClient(self.socket_path, timeout=1.0) as probe:
            while True:
                if self._process.poll() is not None:
                    code = self._process.returncode
                    self._process = None
                    raise RuntimeError(f"s3sidecar exited during startup with code {code}")
                try:
                    probe.ping()
                    break
                except (httpx.TransportError, RPCError):
                    if time.monotonic() > deadline:
                        self.stop()
                        raise TimeoutError(
                            f"s3sidecar did not answer within {self.startup_timeout}s"
                        ) from None
                    time.sleep(self.poll_interval)
        logger.info("s3sidecar started on %s", self.socket_path)
        return SidecarClient(self.socket_path)

    def stop(self):
        if self._process is None:
            return
        self._process.terminate()
        try:
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()
        self._process = None
