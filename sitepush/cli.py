"""CLI interface for sitepush."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .config import SiteConfig, default_config_path, load_config
from .exceptions import SitepushError
from .output import OutputFormatter
from .render import RenderStats, SiteRenderer
from .rsync import RsyncTransport
from .sync import ManifestBuilder, SyncEngine
from .sync.applier import ApplyResult

logger = logging.getLogger(__name__)


def _load_site(ctx: Any) -> SiteConfig:
    """Load the configuration and select the requested site."""
    config = load_config(ctx.obj["config_path"])
    site = config.get_site(ctx.obj["site"])
    logger.debug("Using site %s", site.name)
    return site


def _render(
    site: SiteConfig, force: bool, out: OutputFormatter, emit_json: bool = True
) -> RenderStats:
    stats = SiteRenderer(site, force=force).render_site()
    if out.json_output:
        if emit_json:
            out.print_json(stats.to_dict())
    else:
        for path in stats.rendered:
            out.info(f"  rendered {path}")
        for path in stats.copied:
            out.info(f"  copied   {path}")
        out.print_summary(
            "Render Complete",
            [
                ("Rendered", str(len(stats.rendered))),
                ("Copied", str(len(stats.copied))),
                ("Up to date", str(stats.skipped)),
            ],
        )
    return stats


def _sync_ftp(
    site: SiteConfig,
    out: OutputFormatter,
    dry_run: bool,
    prune: bool,
    workers: int,
) -> ApplyResult:
    engine = SyncEngine(output=out)
    return engine.sync_site(
        site, dry_run=dry_run, allow_remove=prune, max_workers=workers
    )


def _sync_rsync(
    site: SiteConfig, out: OutputFormatter, dry_run: bool, emit_json: bool = True
) -> dict:
    transport = RsyncTransport(site.require_rsync())
    out.info(f"Mirroring {site.output_dir} -> {transport.destination}")
    output = transport.mirror(site.output_dir, dry_run=dry_run)
    report = {
        "destination": transport.destination,
        "dry_run": dry_run,
        "output": output,
    }
    if out.json_output:
        if emit_json:
            out.print_json(report)
        return report

    if output.strip():
        out.print(output.rstrip())
    out.success("Dry run complete!" if dry_run else "Mirror complete!")
    return report


def _validate_workers(ctx: Any, workers: int, out: OutputFormatter) -> None:
    if workers < 1:
        out.error("Workers must be at least 1")
        ctx.exit(1)
    if workers > 16:
        out.error("Workers cannot exceed 16")
        ctx.exit(1)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Site configuration file (default: {default_config_path()})",
)
@click.option("--site", "-s", default=None, help="Site to operate on")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    site: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """sitepush - Render templates into a static website and publish it."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["site"] = site
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("sitepush").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Regenerate every file")
@click.pass_context
def render(ctx: Any, force: bool) -> None:
    """Render templates into the output directory.

    Only templates newer than their generated file are processed,
    unless --force is given.
    """
    out: OutputFormatter = ctx.obj["out"]
    try:
        site = _load_site(ctx)
        _render(site, force, out)
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)


@main.command()
@click.pass_context
def manifest(ctx: Any) -> None:
    """Write the content manifest of the output directory."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        site = _load_site(ctx)
        builder = ManifestBuilder(site.output_dir)
        built = builder.build_and_write()
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    if out.json_output:
        out.print_json(dict(built))
    else:
        out.success(f"Wrote {len(built)} entries to {builder.manifest_path}")


@main.command()
@click.pass_context
def diff(ctx: Any) -> None:
    """Show which files differ from the published website."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        site = _load_site(ctx)
        engine = SyncEngine(output=out)
        plan = engine.plan_site(site)
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)
        return  # Unreachable, but helps type checker

    if out.quiet:
        for action in plan.actions():
            click.echo(f"{action.kind.value}\t{action.relative_path}")
    else:
        engine.display_plan(plan, detailed=True)


@main.command()
@click.option(
    "--dry-run", is_flag=True, help="Show what would be uploaded without uploading"
)
@click.option(
    "--prune",
    is_flag=True,
    help="Also delete remote files that no longer exist locally",
)
@click.option(
    "--workers",
    type=int,
    default=1,
    help="Number of parallel FTP connections (default: 1)",
)
@click.pass_context
def ftp(ctx: Any, dry_run: bool, prune: bool, workers: int) -> None:
    """Upload changed files to the FTP server.

    Compares the output directory with the manifest published on the
    website and uploads only new and changed files. The remote manifest
    is updated only when every upload succeeded.

    Examples:
        sitepush ftp                  # Upload changes
        sitepush ftp --dry-run        # Preview the upload
        sitepush -s blog ftp --prune  # Upload and delete stale remote files
    """
    out: OutputFormatter = ctx.obj["out"]
    _validate_workers(ctx, workers, out)
    try:
        site = _load_site(ctx)
        result = _sync_ftp(site, out, dry_run, prune, workers)
    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
        return
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if not result.ok:
        ctx.exit(1)


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what rsync would transfer")
@click.pass_context
def rsync(ctx: Any, dry_run: bool) -> None:
    """Mirror the output directory with rsync."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        site = _load_site(ctx)
        _sync_rsync(site, out, dry_run)
    except KeyboardInterrupt:
        out.warning("\nMirror cancelled by user")
        ctx.exit(130)
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Regenerate every file")
@click.option("--dry-run", is_flag=True, help="Render, but only preview the upload")
@click.option(
    "--prune",
    is_flag=True,
    help="Also delete remote files that no longer exist locally",
)
@click.option("--rsync", "use_rsync", is_flag=True, help="Publish with rsync")
@click.option(
    "--workers",
    type=int,
    default=1,
    help="Number of parallel FTP connections (default: 1)",
)
@click.pass_context
def publish(
    ctx: Any,
    force: bool,
    dry_run: bool,
    prune: bool,
    use_rsync: bool,
    workers: int,
) -> None:
    """Render the site, then upload it (FTP by default)."""
    out: OutputFormatter = ctx.obj["out"]
    _validate_workers(ctx, workers, out)
    # In JSON mode both steps go into one document
    emit_json = not out.json_output
    try:
        site = _load_site(ctx)
        stats = _render(site, force, out, emit_json=emit_json)
        if use_rsync:
            mirrored = _sync_rsync(site, out, dry_run, emit_json=emit_json)
            if out.json_output:
                out.print_json({"render": stats.to_dict(), "rsync": mirrored})
            return
        engine = SyncEngine(output=out)
        result = engine.sync_site(
            site,
            dry_run=dry_run,
            allow_remove=prune,
            max_workers=workers,
            emit_json=emit_json,
        )
    except KeyboardInterrupt:
        out.warning("\nPublish cancelled by user")
        ctx.exit(130)
        return
    except SitepushError as e:
        out.error(str(e))
        ctx.exit(1)
        return

    if out.json_output and engine.last_plan is not None:
        out.print_json(
            {
                "render": stats.to_dict(),
                "sync": engine.sync_report(result, engine.last_plan),
            }
        )
    if not result.ok:
        ctx.exit(1)


if __name__ == "__main__":
    main()
