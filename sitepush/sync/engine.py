"""Core sync engine: build, fetch, diff and apply for one site."""

import logging
import time
from typing import Callable, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..config import FtpConfig, SiteConfig
from ..exceptions import SitepushConfigError
from ..output import OutputFormatter
from .applier import ApplyResult, RemoteApplier
from .manifest import Manifest, ManifestBuilder
from .planner import ActionKind, ActionPlan, DiffPlanner, TransferAction
from .remote import RemoteManifestFetcher
from .session import RemoteSession, open_ftp_session

logger = logging.getLogger(__name__)

SessionOpener = Callable[[FtpConfig], RemoteSession]

_ACTION_SYMBOLS = {
    ActionKind.NEW: "+",
    ActionKind.UPDATE: "↑",
    ActionKind.REMOVE: "✗",
}


class SyncEngine:
    """Pushes a site's output tree to its FTP server."""

    def __init__(
        self,
        output: Optional[OutputFormatter] = None,
        fetcher: Optional[RemoteManifestFetcher] = None,
        session_opener: SessionOpener = open_ftp_session,
    ):
        """Initialize sync engine.

        Args:
            output: Output formatter for displaying progress/status
            fetcher: Remote manifest fetcher
            session_opener: Opens a connected session from FTP settings
        """
        self.output = output or OutputFormatter()
        self.fetcher = fetcher or RemoteManifestFetcher()
        self.session_opener = session_opener
        self.planner = DiffPlanner()
        self.last_plan: Optional[ActionPlan] = None

    def build_local_manifest(self, site: SiteConfig, max_workers: int = 1) -> Manifest:
        """Hash the output tree and write the local manifest.

        Raises:
            SitepushManifestError: If any file cannot be read or the
                manifest cannot be written
        """
        builder = ManifestBuilder(site.output_dir, max_workers=max_workers)
        start = time.time()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self.output.quiet or self.output.json_output,
        ) as progress:
            task = progress.add_task("Scanning output directory...", total=None)
            manifest = builder.build_and_write()
            progress.update(task, description=f"Hashed {len(manifest)} file(s)")
        logger.debug(
            "Local manifest took %.2fs for %d files", time.time() - start, len(manifest)
        )
        return manifest

    def plan_site(self, site: SiteConfig, max_workers: int = 1) -> ActionPlan:
        """Compute the action plan for a site without touching the server.

        Raises:
            SitepushConfigError: If the site has no website URL or output dir
            SitepushManifestError: If the local manifest cannot be built
        """
        website = site.require_website()
        if not site.output_dir.is_dir():
            raise SitepushConfigError(
                f"Output directory does not exist: {site.output_dir}"
            )

        local = self.build_local_manifest(site, max_workers=max_workers)
        remote = self.fetcher.fetch(website)
        if not remote:
            logger.info("Remote manifest is empty; every file will be uploaded")
        return self.planner.plan(local, remote)

    def sync_site(
        self,
        site: SiteConfig,
        dry_run: bool = False,
        allow_remove: bool = False,
        max_workers: int = 1,
        emit_json: bool = True,
    ) -> ApplyResult:
        """Synchronize a site's output tree to its FTP server.

        Args:
            site: Site to synchronize
            dry_run: If True, only show what would be done
            allow_remove: Delete remote files that no longer exist locally
            max_workers: Number of parallel hashing threads and upload
                connections
            emit_json: In JSON mode, print the report; when False the
                caller builds it with sync_report() and last_plan

        Returns:
            ApplyResult; ``errors`` counts failed transfers

        Raises:
            SitepushConfigError: If the site configuration is incomplete
            SitepushManifestError: If the local manifest cannot be built
            SitepushSessionError: If the server cannot be reached or the
                remote root cannot be entered

        Examples:
            >>> engine = SyncEngine()
            >>> result = engine.sync_site(site, dry_run=True)
            >>> print(f"Would upload {result.attempted} files")
        """
        ftp = site.require_ftp()

        if not self.output.quiet and not self.output.json_output:
            self.output.info(f"Syncing: {site.output_dir} -> {ftp.hostname}:{ftp.path}")
            if dry_run:
                self.output.info("Dry run: No changes will be made")
            self.output.print("")

        plan = self.plan_site(site, max_workers=max_workers)
        self.last_plan = plan
        if not self.output.json_output:
            self.display_plan(plan, detailed=dry_run)

        applier = RemoteApplier(
            dry_run=dry_run,
            remote_ignore_dirs=ftp.remote_ignore,
            allow_remove=allow_remove,
            max_workers=max_workers,
            session_factory=(lambda: self.session_opener(ftp))
            if max_workers > 1
            else None,
            on_action=self._report_action,
        )

        if plan.is_empty:
            result = ApplyResult(dry_run=dry_run)
        elif dry_run:
            result = applier.apply(plan, None, ftp.path, site.output_dir)
        else:
            session = self.session_opener(ftp)
            try:
                result = applier.apply(plan, session, ftp.path, site.output_dir)
            finally:
                session.close()

        if self.output.json_output:
            if emit_json:
                self.output.print_json(self.sync_report(result, plan))
        elif not self.output.quiet:
            self._display_summary(result, plan)
        elif not result.ok:
            self.output.warning(
                f"{result.errors} of {result.attempted} transfer(s) failed"
            )
        return result

    def _report_action(self, action: TransferAction, ok: bool) -> None:
        if ok:
            if not self.output.quiet:
                symbol = _ACTION_SYMBOLS[action.kind]
                self.output.info(f"  {symbol} {action.relative_path}")
        else:
            self.output.error(f"Failed to sync {action.relative_path}")

    def display_plan(self, plan: ActionPlan, detailed: bool = False) -> None:
        """Display the sync plan, optionally listing every action."""
        if self.output.quiet:
            return

        if self.output.json_output:
            self.output.print_json(plan.to_dict())
            return

        new = plan.count(ActionKind.NEW)
        update = plan.count(ActionKind.UPDATE)
        remove = plan.count(ActionKind.REMOVE)

        self.output.info("Sync plan:")
        if new:
            self.output.info(f"  + New: {new} file(s)")
        if update:
            self.output.info(f"  ↑ Update: {update} file(s)")
        if remove:
            self.output.info(f"  ✗ Remote only: {remove} file(s)")
        if plan.is_empty:
            self.output.info("  = Nothing to do")

        if detailed:
            for directory in plan.directories():
                self.output.info(f"  {directory}/")
                for action in plan[directory]:
                    symbol = _ACTION_SYMBOLS[action.kind]
                    self.output.info(f"    {symbol} {action.relative_path}")
        self.output.print("")

    def sync_report(self, result: ApplyResult, plan: ActionPlan) -> dict:
        """JSON-ready report of one sync."""
        return {"plan": plan.to_dict(), "result": result.to_dict()}

    def _display_summary(self, result: ApplyResult, plan: ActionPlan) -> None:
        """Display the result of a sync."""
        self.output.print("")
        if result.dry_run:
            self.output.success("Dry run complete!")
        elif result.ok:
            self.output.success("Sync complete!")
        else:
            self.output.warning(f"Sync finished with {result.errors} error(s)")

        items = [
            ("Attempted", str(result.attempted)),
            ("Uploaded", str(result.uploaded)),
            ("Failed", str(result.errors)),
        ]
        if result.directories_created:
            items.append(("Directories created", str(result.directories_created)))
        if result.removed:
            items.append(("Removed", str(result.removed)))
        if result.removals_pending:
            items.append(("Remote-only (kept)", str(result.removals_pending)))
        if not result.dry_run:
            manifest_state = "updated" if result.manifest_uploaded else "unchanged"
            items.append(("Remote manifest", manifest_state))
        self.output.print_summary("Sync Summary", items)
