"""Mirroring of the output tree with the external rsync tool."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List

from .config import RsyncConfig
from .exceptions import SitepushTransferError

logger = logging.getLogger(__name__)

RSYNC_BINARY = "rsync"
DEFAULT_RSYNC_OPTIONS = ["-a", "-z"]


class RsyncTransport:
    """Pushes the output tree to a host with rsync over ssh.

    rsync compares files itself, so no manifest is involved.
    """

    def __init__(self, config: RsyncConfig, binary: str = RSYNC_BINARY):
        self.config = config
        self.binary = binary

    @property
    def destination(self) -> str:
        """rsync destination in ``[user@]host:path/`` form."""
        host = self.config.hostname
        if self.config.user:
            host = f"{self.config.user}@{host}"
        path = self.config.path
        if not path.endswith("/"):
            path += "/"
        return f"{host}:{path}"

    def build_command(self, output_dir: Path, dry_run: bool = False) -> List[str]:
        """Build the rsync command line.

        The source gets a trailing slash so the contents of the output
        directory, not the directory itself, land in the destination.
        """
        command = [self.binary, *DEFAULT_RSYNC_OPTIONS]
        if dry_run:
            command.append("--dry-run")
        command.extend(self.config.options)
        command.append(str(output_dir).rstrip("/") + "/")
        command.append(self.destination)
        return command

    def mirror(self, output_dir: Path, dry_run: bool = False) -> str:
        """Run rsync.

        Args:
            output_dir: Local output tree to mirror
            dry_run: Ask rsync to only report what it would transfer

        Returns:
            rsync's standard output

        Raises:
            SitepushTransferError: If rsync is missing or exits non-zero
        """
        if shutil.which(self.binary) is None:
            raise SitepushTransferError(f"{self.binary} not found on PATH")

        command = self.build_command(output_dir, dry_run=dry_run)
        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(
                command, capture_output=True, text=True, check=True
            )
        except subprocess.CalledProcessError as e:
            logger.debug("rsync stdout: %s", e.stdout)
            raise SitepushTransferError(
                f"rsync failed with exit code {e.returncode}: {e.stderr.strip()}"
            ) from e
        except OSError as e:
            raise SitepushTransferError(f"Cannot run {self.binary}: {e}") from e

        logger.debug("rsync output:\n%s", result.stdout)
        return result.stdout
