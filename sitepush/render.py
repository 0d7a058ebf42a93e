"""Rendering of template sources into the output tree."""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import jinja2

from .config import SiteConfig
from .exceptions import SitepushConfigError, SitepushRenderError

logger = logging.getLogger(__name__)


def is_stale(source: Path, output: Path) -> bool:
    """Check whether an output file needs regenerating from its source.

    Args:
        source: Template or static source file
        output: Generated file in the output tree

    Returns:
        True if the output is missing or older than the source
    """
    try:
        output_mtime = output.stat().st_mtime
    except FileNotFoundError:
        return True
    return source.stat().st_mtime > output_mtime


@dataclass
class RenderStats:
    """What a render run did."""

    rendered: list[str] = field(default_factory=list)
    """Templates rendered (relative paths)"""

    copied: list[str] = field(default_factory=list)
    """Static files copied verbatim"""

    skipped: int = 0
    """Files already up to date"""

    def to_dict(self) -> dict:
        return {
            "rendered": self.rendered,
            "copied": self.copied,
            "skipped": self.skipped,
        }


class SiteRenderer:
    """Renders a site's source tree into its output tree.

    Files matching the site's ``template_files`` patterns are rendered with
    Jinja2, using the site's ``tags`` as variables; all other files are
    copied as they are. One Jinja2 environment is created per renderer and
    shared by every template of the run.

    Examples:
        >>> renderer = SiteRenderer(site)
        >>> stats = renderer.render_site()
        >>> print(f"Rendered {len(stats.rendered)} template(s)")
    """

    def __init__(self, site: SiteConfig, force: bool = False):
        """Initialize renderer.

        Args:
            site: Site to render
            force: Regenerate every file, even if it is up to date

        Raises:
            SitepushConfigError: If the source directory does not exist
        """
        if not site.source_dir.is_dir():
            raise SitepushConfigError(
                f"Source directory does not exist: {site.source_dir}"
            )
        if site.includes_dir is not None and not site.includes_dir.is_dir():
            raise SitepushConfigError(
                f"Includes directory does not exist: {site.includes_dir}"
            )
        self.site = site
        self.force = force
        self.environment = self._create_environment()

    def _create_environment(self) -> jinja2.Environment:
        search_path = [str(self.site.source_dir)]
        if self.site.includes_dir is not None:
            search_path.append(str(self.site.includes_dir))
        return jinja2.Environment(
            loader=jinja2.FileSystemLoader(search_path),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def iter_sources(self) -> Iterator[Path]:
        """Yield source files to process, skipping ignored dirs and files."""
        yield from self._walk(self.site.source_dir)

    def _walk(self, directory: Path) -> Iterator[Path]:
        for item in sorted(directory.iterdir()):
            if item.is_dir():
                if self.site.ignore_dirs.matches(item.name):
                    logger.debug("Ignoring directory: %s", item)
                    continue
                yield from self._walk(item)
            elif item.is_file():
                if self.site.ignore_files.matches(item.name):
                    logger.debug("Ignoring file: %s", item)
                    continue
                yield item

    def is_template(self, relative_path: str) -> bool:
        """Whether a source file is rendered (True) or copied (False)."""
        return self.site.template_files.matches(Path(relative_path).name)

    def needs_processing(self, source: Path, output: Path) -> bool:
        """Check whether a source file should be (re)generated."""
        if self.force:
            return True
        if self.site.always_process.matches(source.name):
            return True
        return is_stale(source, output)

    def render_file(self, relative_path: str, output_path: Path) -> None:
        """Render one template to a file.

        Args:
            relative_path: Template path relative to the source directory
            output_path: File to write

        Raises:
            SitepushRenderError: If the template cannot be loaded or rendered
                or the output cannot be written
        """
        try:
            template = self.environment.get_template(relative_path)
            content = template.render(**self.site.tags)
        except jinja2.TemplateError as e:
            raise SitepushRenderError(f"Failed to render {relative_path}: {e}") from e

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise SitepushRenderError(f"Cannot write {output_path}: {e}") from e

    def render_site(self, stats: Optional[RenderStats] = None) -> RenderStats:
        """Process every source file of the site.

        Any failure aborts the whole run: a half-rendered site must not be
        published.

        Raises:
            SitepushRenderError: If a template fails or a file cannot be written
        """
        stats = stats or RenderStats()
        for source in self.iter_sources():
            relative_path = source.relative_to(self.site.source_dir).as_posix()
            output_path = self.site.output_dir / relative_path

            if not self.needs_processing(source, output_path):
                stats.skipped += 1
                continue

            if self.is_template(relative_path):
                logger.debug("Rendering %s", relative_path)
                self.render_file(relative_path, output_path)
                stats.rendered.append(relative_path)
            else:
                logger.debug("Copying %s", relative_path)
                try:
                    output_path.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(source, output_path)
                except OSError as e:
                    raise SitepushRenderError(
                        f"Cannot copy {relative_path}: {e}"
                    ) from e
                stats.copied.append(relative_path)

        logger.debug(
            "Rendered %d, copied %d, skipped %d",
            len(stats.rendered),
            len(stats.copied),
            stats.skipped,
        )
        return stats
