"""Remote synchronization: manifests, diff planning and remote application."""

from .applier import ApplyResult, RemoteApplier
from .digest import (
    DIGEST_ALGORITHM,
    digest_bytes,
    digest_file,
    format_manifest_line,
    parse_manifest_line,
)
from .engine import SyncEngine
from .manifest import Manifest, ManifestBuilder, format_manifest, parse_manifest
from .planner import ActionKind, ActionPlan, DiffPlanner, TransferAction
from .remote import RemoteManifestFetcher
from .session import FtpSession, RemoteSession, open_ftp_session

__all__ = [
    "SyncEngine",
    "ManifestBuilder",
    "Manifest",
    "RemoteManifestFetcher",
    "DiffPlanner",
    "ActionPlan",
    "ActionKind",
    "TransferAction",
    "RemoteApplier",
    "ApplyResult",
    "RemoteSession",
    "FtpSession",
    "open_ftp_session",
    "DIGEST_ALGORITHM",
    "digest_bytes",
    "digest_file",
    "format_manifest",
    "format_manifest_line",
    "parse_manifest",
    "parse_manifest_line",
]
