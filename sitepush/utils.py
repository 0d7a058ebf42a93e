"""Shared constants and helpers for sitepush."""

import posixpath

# =============================================================================
# Constants
# =============================================================================

# Reserved name of the manifest file, locally and on the remote store
MANIFEST_FILENAME: str = "digest.md5"

# Timeout for fetching the remote manifest over HTTP
DEFAULT_FETCH_TIMEOUT: float = 10.0  # seconds

# Timeout for remote store (FTP) operations
DEFAULT_SESSION_TIMEOUT: float = 60.0  # seconds

# Read buffer used when hashing files
DEFAULT_READ_CHUNK_SIZE: int = 1024 * 1024

# Directory key used for files that live in the output root
ROOT_DIR_KEY: str = "."


# =============================================================================
# Path utilities
# =============================================================================


def directory_key(relative_path: str) -> str:
    """Return the directory key a relative path is grouped under.

    This is a pure string operation, no filesystem lookup is made.

    Args:
        relative_path: POSIX-style path relative to the output root

    Returns:
        Parent directory of the path, or "." for root-level files

    Examples:
        >>> directory_key("a/b/index.html")
        'a/b'
        >>> directory_key("index.html")
        '.'
    """
    return posixpath.dirname(relative_path) or ROOT_DIR_KEY


def ensure_trailing_slash(path: str) -> str:
    """Normalize a remote directory path to end with a slash."""
    return path if path.endswith("/") else path + "/"


def parent_directories(directory: str) -> list[str]:
    """List a directory key and all its ancestors, shallowest first.

    Examples:
        >>> parent_directories("a/b/c")
        ['a', 'a/b', 'a/b/c']
        >>> parent_directories(".")
        []
    """
    if directory in ("", ROOT_DIR_KEY):
        return []
    parts = directory.strip("/").split("/")
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]
