"""Application of an action plan to a remote file store."""

import logging
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..exceptions import SitepushSessionError
from ..utils import (
    MANIFEST_FILENAME,
    ROOT_DIR_KEY,
    directory_key,
    ensure_trailing_slash,
    parent_directories,
)
from .manifest import Manifest, parse_manifest
from .planner import ActionKind, ActionPlan, TransferAction
from .session import RemoteSession, SessionFactory

logger = logging.getLogger(__name__)

ActionCallback = Callable[[TransferAction, bool], None]


@dataclass
class ApplyResult:
    """Outcome of applying a plan."""

    errors: int = 0
    """Number of failed remote operations (uploads, removals, manifest)"""

    attempted: int = 0
    """Number of uploads attempted (or planned, in a dry run)"""

    uploaded: int = 0
    """Number of files uploaded successfully"""

    directories_created: int = 0
    """Number of remote directories created"""

    removals_pending: int = 0
    """Remote-only files left in place because removal was not authorized"""

    removed: int = 0
    """Number of remote files removed"""

    manifest_uploaded: bool = False
    """Whether the remote manifest was advanced"""

    dry_run: bool = False
    """Whether this was a dry run (no remote changes)"""

    failed_paths: list[str] = field(default_factory=list)
    """Relative paths of failed operations"""

    @property
    def ok(self) -> bool:
        """True if every attempted remote operation succeeded."""
        return self.errors == 0

    def to_dict(self) -> dict:
        """Convert result to dictionary for JSON output."""
        return {
            "errors": self.errors,
            "attempted": self.attempted,
            "uploaded": self.uploaded,
            "directories_created": self.directories_created,
            "removals_pending": self.removals_pending,
            "removed": self.removed,
            "manifest_uploaded": self.manifest_uploaded,
            "dry_run": self.dry_run,
            "failed_paths": list(self.failed_paths),
        }


class RemoteApplier:
    """Executes an ActionPlan against a RemoteSession.

    Directories are provisioned shortest path first, then new and changed
    files are uploaded. A failed upload is counted and logged but does not
    stop the remaining ones. The manifest is uploaded last and only if
    nothing failed, so the remote manifest always describes the last
    fully successful sync.

    Remote-only files are never deleted unless ``allow_remove`` is set.
    Files below ignored remote directories are left out of the uploaded
    manifest, so they are planned again once the directory is no longer
    ignored.
    """

    def __init__(
        self,
        dry_run: bool = False,
        remote_ignore_dirs: Optional[set[str]] = None,
        allow_remove: bool = False,
        max_workers: int = 1,
        session_factory: Optional[SessionFactory] = None,
        manifest_name: str = MANIFEST_FILENAME,
        on_action: Optional[ActionCallback] = None,
    ):
        """Initialize remote applier.

        Args:
            dry_run: Report the plan without touching the remote store
            remote_ignore_dirs: Directories excluded from creation, upload
                and removal (subdirectories included)
            allow_remove: Authorize deletion of remote-only files
            max_workers: Number of parallel upload connections
            session_factory: Opens an extra connected session per upload
                worker; required when max_workers > 1
            manifest_name: File name of the manifest
            on_action: Called with (action, succeeded) after each transfer
        """
        if max_workers > 1 and session_factory is None:
            raise ValueError("Parallel uploads need a session_factory")
        self.dry_run = dry_run
        self.remote_ignore_dirs = {d.strip("/") for d in remote_ignore_dirs or set()}
        self.allow_remove = allow_remove
        self.max_workers = max(1, max_workers)
        self.session_factory = session_factory
        self.manifest_name = manifest_name
        self.on_action = on_action
        self._lock = threading.Lock()

    def is_ignored(self, directory: str) -> bool:
        """Check whether a directory key lies in an ignored remote directory."""
        for ignored in self.remote_ignore_dirs:
            if directory == ignored or directory.startswith(ignored + "/"):
                return True
        return False

    def apply(
        self,
        plan: ActionPlan,
        session: Optional[RemoteSession],
        remote_root: str,
        local_root: Path,
    ) -> ApplyResult:
        """Apply a plan.

        Args:
            plan: Actions to execute
            session: Connected session (may be None for a dry run)
            remote_root: Remote directory the output tree maps to
            local_root: Local output tree the plan was computed from

        Returns:
            ApplyResult with counts; ``errors`` is non-zero on partial failure

        Raises:
            SitepushSessionError: If the remote root cannot be entered
        """
        result = ApplyResult(dry_run=self.dry_run)
        local_root = Path(local_root)

        directories = []
        for directory in plan.directories():
            if self.is_ignored(directory):
                logger.debug("Ignoring remote directory: %s", directory)
                continue
            directories.append(directory)

        uploads = [a for d in directories for a in plan[d] if a.is_upload]
        removals = [
            a for d in directories for a in plan[d] if a.kind == ActionKind.REMOVE
        ]

        if self.dry_run:
            result.attempted = len(uploads)
            result.removals_pending = len(removals)
            return result

        if session is None:
            raise SitepushSessionError("No remote session to apply the plan with")

        if not session.change_directory(remote_root):
            raise SitepushSessionError(
                f"Cannot change into remote directory: {remote_root}"
            )
        default_dir = ensure_trailing_slash(session.current_directory())
        logger.debug("Remote root is %s", default_dir)

        self._create_directories(session, default_dir, directories, result)

        if self.max_workers > 1 and len(directories) > 1:
            self._upload_parallel(plan, directories, default_dir, local_root, result)
        else:
            for action in uploads:
                self._upload(session, action, default_dir, local_root, result)

        if removals:
            if self.allow_remove:
                for action in removals:
                    self._remove(session, action, default_dir, result)
            else:
                result.removals_pending = len(removals)
                logger.info(
                    "Leaving %d remote-only file(s) in place", len(removals)
                )

        # Everything else is finished at this point
        if result.errors == 0:
            self._upload_manifest(session, default_dir, local_root, result)
        else:
            logger.warning(
                "%d operation(s) failed, remote manifest not updated", result.errors
            )
        return result

    def _create_directories(
        self,
        session: RemoteSession,
        default_dir: str,
        directories: list[str],
        result: ApplyResult,
    ) -> None:
        wanted: set[str] = set()
        for directory in directories:
            if directory == ROOT_DIR_KEY:
                continue
            for parent in parent_directories(directory):
                if not self.is_ignored(parent):
                    wanted.add(parent)

        for directory in sorted(wanted, key=lambda d: (len(d), d)):
            target = default_dir + directory
            if session.change_directory(target):
                continue
            if session.make_directory(target):
                logger.debug("Created remote directory %s", target)
                result.directories_created += 1
            else:
                logger.warning("Could not create remote directory %s", target)

        if wanted and not session.change_directory(default_dir):
            logger.warning("Could not return to remote directory %s", default_dir)

    def _record(self, action: TransferAction, ok: bool, result: ApplyResult) -> None:
        with self._lock:
            if ok:
                if action.kind == ActionKind.REMOVE:
                    result.removed += 1
                else:
                    result.uploaded += 1
            else:
                result.errors += 1
                result.failed_paths.append(action.relative_path)
        if self.on_action is not None:
            self.on_action(action, ok)

    def _upload(
        self,
        session: RemoteSession,
        action: TransferAction,
        default_dir: str,
        local_root: Path,
        result: ApplyResult,
    ) -> None:
        with self._lock:
            result.attempted += 1
        local_path = local_root / action.relative_path
        remote_path = default_dir + action.relative_path
        try:
            ok = session.put(local_path, remote_path)
        except (OSError, SitepushSessionError) as e:
            logger.debug("Upload of %s raised: %s", action.relative_path, e)
            ok = False
        if ok:
            logger.debug("Uploaded %s (%s)", action.relative_path, action.kind.value)
        else:
            logger.error("Failed to upload %s", action.relative_path)
        self._record(action, ok, result)

    def _upload_parallel(
        self,
        plan: ActionPlan,
        directories: list[str],
        default_dir: str,
        local_root: Path,
        result: ApplyResult,
    ) -> None:
        """Upload each directory on its own worker connection."""
        assert self.session_factory is not None
        local = threading.local()
        opened: list[RemoteSession] = []

        def worker_session() -> RemoteSession:
            session = getattr(local, "session", None)
            if session is None:
                session = self.session_factory()
                local.session = session
                with self._lock:
                    opened.append(session)
            return session

        def upload_directory(directory: str) -> None:
            actions = [a for a in plan[directory] if a.is_upload]
            if not actions:
                return
            try:
                session = worker_session()
            except SitepushSessionError as e:
                logger.error("Could not open upload connection: %s", e)
                for action in actions:
                    with self._lock:
                        result.attempted += 1
                    self._record(action, False, result)
                return
            for action in actions:
                self._upload(session, action, default_dir, local_root, result)

        logger.debug(
            "Uploading %d directories with %d workers",
            len(directories),
            self.max_workers,
        )
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(upload_directory, d) for d in directories]
                for future in as_completed(futures):
                    future.result()
        finally:
            for session in opened:
                session.close()

    def _remove(
        self,
        session: RemoteSession,
        action: TransferAction,
        default_dir: str,
        result: ApplyResult,
    ) -> None:
        ok = session.delete(default_dir + action.relative_path)
        if ok:
            logger.debug("Removed remote file %s", action.relative_path)
        else:
            logger.error("Failed to remove remote file %s", action.relative_path)
        self._record(action, ok, result)

    def _upload_manifest(
        self,
        session: RemoteSession,
        default_dir: str,
        local_root: Path,
        result: ApplyResult,
    ) -> None:
        local_path = local_root / self.manifest_name
        remote_path = default_dir + self.manifest_name
        try:
            if self.remote_ignore_dirs:
                ok = self._put_filtered_manifest(session, local_path, remote_path)
            else:
                ok = session.put(local_path, remote_path)
        except (OSError, UnicodeDecodeError, SitepushSessionError) as e:
            logger.debug("Manifest upload raised: %s", e)
            ok = False
        if ok:
            result.manifest_uploaded = True
            logger.debug("Uploaded manifest to %s", default_dir)
        else:
            result.errors += 1
            result.failed_paths.append(self.manifest_name)
            logger.error("Failed to upload manifest %s", local_path)

    def _put_filtered_manifest(
        self, session: RemoteSession, local_path: Path, remote_path: str
    ) -> bool:
        """Upload the manifest without entries below ignored directories."""
        manifest = parse_manifest(local_path.read_text(encoding="utf-8"))
        kept = Manifest(
            (path, digest)
            for path, digest in manifest.items()
            if not self.is_ignored(directory_key(path))
        )
        logger.debug(
            "Leaving %d ignored path(s) out of the remote manifest",
            len(manifest) - len(kept),
        )
        with tempfile.TemporaryDirectory() as temp_dir:
            filtered_path = Path(temp_dir) / self.manifest_name
            filtered_path.write_text(kept.to_text(), encoding="utf-8")
            return session.put(filtered_path, remote_path)
