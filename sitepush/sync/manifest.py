"""Manifest model and local manifest builder."""

import contextlib
import logging
import os
import re
from collections.abc import Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from ..exceptions import SitepushManifestError
from ..utils import MANIFEST_FILENAME
from .digest import digest_file, format_manifest_line, parse_manifest_line

logger = logging.getLogger(__name__)

# Editor swap files: vim (.swp, .swo, ...) and emacs backups (name~)
SWAP_FILE_RE = re.compile(r"\.sw[a-p]$|~$")


class Manifest(Mapping[str, str]):
    """Read-only mapping of relative path to content digest.

    Entries keep the order they were added in. A manifest is never
    modified once built; diffing produces a separate plan.

    Examples:
        >>> m = Manifest([("index.html", "d41d8cd98f00b204e9800998ecf8427e")])
        >>> m["index.html"]
        'd41d8cd98f00b204e9800998ecf8427e'
    """

    def __init__(self, entries: Iterable[tuple[str, str]] = ()):
        """Initialize manifest.

        Args:
            entries: (relative_path, digest) pairs; a repeated path keeps
                its last digest
        """
        self._entries: dict[str, str] = {}
        for relative_path, digest in entries:
            self._entries[relative_path] = digest

    def __getitem__(self, relative_path: str) -> str:
        return self._entries[relative_path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Manifest({len(self._entries)} entries)"

    def to_text(self) -> str:
        """Serialize the manifest, one line per entry."""
        return format_manifest(self._entries.items())


def format_manifest(entries: Iterable[tuple[str, str]]) -> str:
    """Format (relative_path, digest) pairs as manifest file content."""
    return "".join(format_manifest_line(digest, path) for path, digest in entries)


def parse_manifest(text: str) -> Manifest:
    """Parse manifest file content.

    Malformed lines are skipped. Empty content gives an empty manifest.
    """
    entries = []
    for line in text.splitlines():
        parsed = parse_manifest_line(line)
        if parsed is None:
            if line.strip():
                logger.debug("Skipping unrecognised manifest line: %r", line)
            continue
        entries.append(parsed)
    return Manifest(entries)


def _temp_name(manifest_name: str) -> str:
    return f".{manifest_name}.tmp"


def is_excluded(name: str, manifest_name: str = MANIFEST_FILENAME) -> bool:
    """Check whether a file name is left out of the manifest."""
    if name in (manifest_name, _temp_name(manifest_name)):
        return True
    return SWAP_FILE_RE.search(name) is not None


class ManifestBuilder:
    """Builds the manifest of a local output tree.

    Every regular file below the root is hashed, except the manifest file
    itself and editor swap files. Any file that cannot be read aborts the
    build, since an incomplete manifest cannot be trusted for diffing.

    Examples:
        >>> builder = ManifestBuilder(Path("/srv/site/output"))
        >>> manifest = builder.build()
        >>> builder.write(manifest)
    """

    def __init__(
        self,
        root: Path,
        max_workers: int = 1,
        manifest_name: str = MANIFEST_FILENAME,
    ):
        """Initialize manifest builder.

        Args:
            root: Root of the output tree
            max_workers: Number of threads used for hashing
            manifest_name: Reserved file name of the manifest
        """
        self.root = Path(root)
        self.max_workers = max(1, max_workers)
        self.manifest_name = manifest_name

    @property
    def manifest_path(self) -> Path:
        """Location of the persisted manifest inside the root."""
        return self.root / self.manifest_name

    def scan(self) -> list[Path]:
        """List all files that belong in the manifest, in sorted order.

        Raises:
            SitepushManifestError: If the root or a directory below it
                cannot be read
        """
        if not self.root.is_dir():
            raise SitepushManifestError(
                f"Output directory does not exist: {self.root}"
            )
        try:
            return list(self._iter_files(self.root))
        except OSError as e:
            raise SitepushManifestError(f"Cannot scan {self.root}: {e}") from e

    def _iter_files(self, directory: Path) -> Iterator[Path]:
        for item in sorted(directory.iterdir()):
            if item.is_dir():
                if item.is_symlink():
                    logger.debug("Not following directory symlink: %s", item)
                    continue
                yield from self._iter_files(item)
            elif item.is_file():
                if is_excluded(item.name, self.manifest_name):
                    logger.debug("Excluding from manifest: %s", item)
                    continue
                yield item

    def relative_path(self, file_path: Path) -> str:
        """Path of a file relative to the root, with forward slashes.

        Raises:
            SitepushManifestError: If the name cannot be stored in the
                UTF-8 manifest
        """
        relative = file_path.relative_to(self.root).as_posix()
        try:
            relative.encode("utf-8")
        except UnicodeEncodeError as e:
            raise SitepushManifestError(
                f"File name is not valid UTF-8: {file_path!r}"
            ) from e
        return relative

    def _hash(self, file_path: Path) -> tuple[str, str]:
        relative_path = self.relative_path(file_path)
        try:
            digest = digest_file(file_path)
        except OSError as e:
            raise SitepushManifestError(f"Cannot read {file_path}: {e}") from e
        return relative_path, digest

    def build(self, files: Optional[list[Path]] = None) -> Manifest:
        """Hash every file of the tree and return the manifest.

        Args:
            files: Files to hash (defaults to the result of scan())

        Returns:
            Manifest in traversal order

        Raises:
            SitepushManifestError: If any file cannot be read
        """
        if files is None:
            files = self.scan()

        if self.max_workers > 1 and len(files) > 1:
            # map() yields in submission order, so the result is deterministic
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                entries = list(executor.map(self._hash, files))
        else:
            entries = [self._hash(f) for f in files]

        manifest = Manifest(entries)
        logger.debug("Built manifest of %s with %d entries", self.root, len(manifest))
        return manifest

    def write(self, manifest: Manifest) -> Path:
        """Persist the manifest into the root, replacing any previous one.

        Raises:
            SitepushManifestError: If the manifest file cannot be written
        """
        path = self.manifest_path
        temp_path = path.with_name(_temp_name(self.manifest_name))
        try:
            temp_path.write_text(manifest.to_text(), encoding="utf-8")
            os.replace(temp_path, path)
        except (OSError, UnicodeEncodeError) as e:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            raise SitepushManifestError(f"Cannot write manifest {path}: {e}") from e
        logger.debug("Wrote manifest to %s", path)
        return path

    def build_and_write(self) -> Manifest:
        """Build the manifest and persist it."""
        manifest = self.build()
        self.write(manifest)
        return manifest
