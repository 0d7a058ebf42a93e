"""Content hashing and manifest line codec.

The digest algorithm is fixed to MD5 so that manifests written by any run,
locally or on the remote store, stay comparable. MD5 is used to detect
content changes, not for security.
"""

import hashlib
import re
from pathlib import Path
from typing import Optional

from ..utils import DEFAULT_READ_CHUNK_SIZE

DIGEST_ALGORITHM = "md5"

# <32+ lowercase hex chars><whitespace><path>, with an optional md5sum
# binary-mode marker in front of the path
_LINE_RE = re.compile(r"^(?P<digest>[0-9a-f]{32,})\s+\*?(?P<path>\S.*)$")


def digest_bytes(data: bytes) -> str:
    """Compute the content digest of a byte string.

    Examples:
        >>> digest_bytes(b"")
        'd41d8cd98f00b204e9800998ecf8427e'
    """
    return hashlib.new(DIGEST_ALGORITHM, data, usedforsecurity=False).hexdigest()


def digest_file(path: Path, chunk_size: int = DEFAULT_READ_CHUNK_SIZE) -> str:
    """Compute the content digest of a file.

    Args:
        path: File to hash
        chunk_size: Read buffer size in bytes

    Returns:
        Lowercase hexadecimal digest

    Raises:
        OSError: If the file cannot be read
    """
    hasher = hashlib.new(DIGEST_ALGORITHM, usedforsecurity=False)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def format_manifest_line(digest: str, relative_path: str) -> str:
    """Format one manifest entry, newline-terminated (md5sum compatible)."""
    return f"{digest}  {relative_path}\n"


def parse_manifest_line(line: str) -> Optional[tuple[str, str]]:
    """Parse one manifest line.

    Lines that do not match the expected format are not an error, they
    are skipped so newer manifest formats can be read by older versions.

    Args:
        line: A single line, with or without its line terminator

    Returns:
        Tuple of (relative_path, digest), or None if the line is skipped
    """
    match = _LINE_RE.match(line.rstrip("\r\n"))
    if match is None:
        return None
    return match.group("path"), match.group("digest")
