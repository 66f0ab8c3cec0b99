"""Command line entry point.

Commands:
- serve: run the transfer service on a Unix domain socket
- ping: check that a running service answers
"""

from s3sidecar.config import CONFIG_ENV
from s3sidecar.config import load_config
from s3sidecar.errors import ConfigError

import click
import contextlib
import logging
import os
import sys


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level="INFO"):
    """Send s3sidecar and uvicorn logs to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger("s3sidecar")
    root_logger.setLevel(level.upper())
    root_logger.handlers[:] = [handler]

    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.handlers[:] = [handler]
        uvicorn_logger.propagate = False


@click.group()
def main():
    """Move files between S3 and the local filesystem over local RPC."""


@main.command()
@click.argument("config_json", required=False)
def serve(config_json):
    """Run the transfer service.

    CONFIG_JSON is the configuration object; when omitted it is read from
    the CONFIG environment variable.
    """
    import uvicorn

    from s3sidecar.rpc import create_app

    try:
        config = load_config(config_json)
        service = config.open()
    except (ConfigError, ValueError) as e:
        click.echo(f"s3sidecar: {e}", err=True)
        sys.exit(1)

    setup_logging(config.log_level)

    # Remove a socket left behind by a previous run.
    with contextlib.suppress(FileNotFoundError):
        os.unlink(config.socket_path)

    logger.info("RPC server is listening on unix socket %s", config.socket_path)
    uvicorn.run(
        create_app(service),
        uds=config.socket_path,
        log_config=None,
        access_log=False,
    )


@main.command()
@click.option(
    "--socket-path",
    envvar="S3SIDECAR_SOCKET",
    default=None,
    help=f"Socket of the running service (default: socketPath from {CONFIG_ENV}).",
)
def ping(socket_path):
    """Check that the service on SOCKET_PATH answers."""
    from s3sidecar.client import SidecarClient

    if socket_path is None:
        try:
            socket_path = load_config().socket_path
        except ConfigError as e:
            raise click.UsageError(f"no --socket-path given and {e}") from e

    with SidecarClient(socket_path) as client:
        try:
            click.echo(client.ping())
        except Exception as e:
            click.echo(f"s3sidecar: {e}", err=True)
            sys.exit(1)
