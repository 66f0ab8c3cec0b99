from s3sidecar.errors import PlacementError

import contextlib
import logging
import os
import shutil
import stat
import time


logger = logging.getLogger(__name__)


def staging_path(final_path):
    return f"{final_path}.{time.time_ns()}.tmp"


class StagedOutput:
    """Temporary location that is renamed onto ``final_path`` on success.

    Whatever was at ``final_path`` before is kept as ``<staged>.bak``.
    """

    def __init__(self, final_path):
        self.final_path = final_path
        self.path = staging_path(final_path)
        self.backup_path = self.path + ".bak"

    def open(self):
        """Create the staged file exclusively, with parent directories."""
        target_dir = os.path.dirname(self.path) or "."
        os.makedirs(target_dir, exist_ok=True)
        return open(self.path, "xb")

    def publish(self):
        try:
            if os.path.lexists(self.final_path):
                os.rename(self.final_path, self.backup_path)
        except OSError as e:
            raise PlacementError(
                f"failed to move {self.final_path} aside: {e}", self.path
            ) from e
        try:
            os.rename(self.path, self.final_path)
        except OSError as e:
            raise PlacementError(
                f"failed to rename {self.path} to {self.final_path}: {e}", self.path
            ) from e
        logger.debug("Published %s", self.final_path)
        return self.final_path

    def discard(self):
        """Remove a staged file or tree that will not be published."""
        if os.path.isdir(self.path) and not os.path.islink(self.path):
            _make_removable(self.path)
            shutil.rmtree(self.path, ignore_errors=True)
            if os.path.lexists(self.path):
                logger.warning("Staged tree %s was not fully removed", self.path)
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to remove staged file %s", self.path, exc_info=True)


def _make_removable(path):
    """Give the owner full access to every directory below ``path``.

    Extracted trees carry their archive modes, and entries inside a
    read-only directory cannot be unlinked.
    """
    _add_owner_access(path)
    for dirpath, dirnames, _filenames in os.walk(path):
        for name in dirnames:
            child = os.path.join(dirpath, name)
            if not os.path.islink(child):
                _add_owner_access(child)


def _add_owner_access(path):
    with contextlib.suppress(OSError):
        mode = os.lstat(path).st_mode
        if (stat.S_IMODE(mode) & stat.S_IRWXU) != stat.S_IRWXU:
            os.chmod(path, stat.S_IMODE(mode) | stat.S_IRWXU)
