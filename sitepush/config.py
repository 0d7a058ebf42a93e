"""Site configuration loading.

Sites are described in a JSON file, by default
``~/.config/sitepush/sites.json``::

    {
      "default_site": "mysite",
      "sites": {
        "mysite": {
          "source_dir": "~/www/mysite/templates",
          "includes_dir": "~/www/mysite/includes",
          "output_dir": "~/www/mysite/htdocs",
          "template_files": ["*.html"],
          "ignore_dirs": ["CVS", ".git"],
          "ignore_files": [".*.swp"],
          "always_process": ["index.html"],
          "website": "http://www.example.com/",
          "tags": {"author": "Jane Doe"},
          "ftp": {
            "hostname": "ftp.example.com",
            "username": "jane",
            "path": "/htdocs",
            "passive": true
          },
          "rsync": {"hostname": "www.example.com", "path": "/var/www/mysite"}
        }
      }
    }

All validation happens here, at load time, so a bad configuration is
reported before anything is rendered or transferred.
"""

import fnmatch
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import SitepushConfigError
from .utils import DEFAULT_SESSION_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SITEPUSH_CONFIG"
PASSWORD_ENV_VAR = "SITEPUSH_FTP_PASSWORD"


def default_config_path() -> Path:
    """Config file location, honouring the SITEPUSH_CONFIG variable."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".config" / "sitepush" / "sites.json"


class PatternSet:
    """Precompiled set of glob patterns matched against names or paths.

    Examples:
        >>> patterns = PatternSet(["*.html", "*.htm"])
        >>> patterns.matches("index.html")
        True
        >>> patterns.matches("logo.png")
        False
    """

    def __init__(self, patterns: Optional[list[str]] = None):
        """Compile patterns.

        Raises:
            SitepushConfigError: If a pattern cannot be compiled
        """
        self.patterns = list(patterns or [])
        self._compiled: list[re.Pattern[str]] = []
        for pattern in self.patterns:
            try:
                self._compiled.append(re.compile(fnmatch.translate(pattern)))
            except re.error as e:
                raise SitepushConfigError(f"Invalid pattern {pattern!r}: {e}") from e

    def matches(self, name: str) -> bool:
        """Check whether a name matches any pattern."""
        return any(regex.match(name) for regex in self._compiled)

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def __repr__(self) -> str:
        return f"PatternSet({self.patterns!r})"


def _require(data: dict[str, Any], key: str, where: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise SitepushConfigError(f"Missing required setting '{key}' in {where}")
    return value


def _string_list(data: dict[str, Any], key: str, where: str) -> list[str]:
    value = data.get(key, [])
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise SitepushConfigError(f"'{key}' in {where} must be a list of strings")
    return value


def _path(value: str) -> Path:
    return Path(value).expanduser()


@dataclass
class FtpConfig:
    """Connection settings for the FTP remote store."""

    hostname: str
    """FTP server host name"""

    username: str
    """Login name"""

    password: Optional[str] = None
    """Login password (falls back to SITEPUSH_FTP_PASSWORD)"""

    path: str = "/"
    """Remote root directory the output tree is mirrored into"""

    passive: bool = True
    """Use passive mode data connections"""

    port: int = 21
    """Server port"""

    tls: bool = False
    """Use explicit FTPS"""

    timeout: float = DEFAULT_SESSION_TIMEOUT
    """Timeout in seconds for each FTP operation"""

    remote_ignore: set[str] = field(default_factory=set)
    """Output directories that are never created or uploaded remotely"""

    @classmethod
    def from_dict(cls, data: dict[str, Any], where: str = "ftp") -> "FtpConfig":
        """Create FtpConfig from a dictionary.

        Raises:
            SitepushConfigError: If required settings are missing or invalid
        """
        if not isinstance(data, dict):
            raise SitepushConfigError(f"'{where}' must be an object")
        try:
            port = int(data.get("port", 21))
            timeout = float(data.get("timeout", DEFAULT_SESSION_TIMEOUT))
        except (TypeError, ValueError) as e:
            raise SitepushConfigError(f"Invalid number in {where}: {e}") from e

        return cls(
            hostname=_require(data, "hostname", where),
            username=_require(data, "username", where),
            password=data.get("password") or os.environ.get(PASSWORD_ENV_VAR),
            path=data.get("path", "/") or "/",
            passive=bool(data.get("passive", True)),
            port=port,
            tls=bool(data.get("tls", False)),
            timeout=timeout,
            remote_ignore={
                d.strip("/") for d in _string_list(data, "remote_ignore", where)
            },
        )


@dataclass
class RsyncConfig:
    """Destination for mirroring with rsync."""

    hostname: str
    """Host to mirror to"""

    path: str
    """Destination directory on the host"""

    user: Optional[str] = None
    """Remote login name"""

    options: list[str] = field(default_factory=list)
    """Extra command line options passed to rsync"""

    @classmethod
    def from_dict(cls, data: dict[str, Any], where: str = "rsync") -> "RsyncConfig":
        """Create RsyncConfig from a dictionary."""
        if not isinstance(data, dict):
            raise SitepushConfigError(f"'{where}' must be an object")
        return cls(
            hostname=_require(data, "hostname", where),
            path=_require(data, "path", where),
            user=data.get("user"),
            options=_string_list(data, "options", where),
        )


@dataclass
class SiteConfig:
    """Everything needed to render and publish one website."""

    name: str
    source_dir: Path
    output_dir: Path
    includes_dir: Optional[Path] = None
    template_files: PatternSet = field(default_factory=lambda: PatternSet(["*.html"]))
    ignore_dirs: PatternSet = field(default_factory=PatternSet)
    ignore_files: PatternSet = field(default_factory=PatternSet)
    always_process: PatternSet = field(default_factory=PatternSet)
    tags: dict[str, Any] = field(default_factory=dict)
    website: Optional[str] = None
    ftp: Optional[FtpConfig] = None
    rsync: Optional[RsyncConfig] = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "SiteConfig":
        """Create SiteConfig from a dictionary.

        Args:
            name: Site name (key in the config file)
            data: Site settings

        Raises:
            SitepushConfigError: If required settings are missing or invalid
        """
        where = f"site '{name}'"
        if not isinstance(data, dict):
            raise SitepushConfigError(f"{where} must be an object")

        tags = data.get("tags", {})
        if not isinstance(tags, dict):
            raise SitepushConfigError(f"'tags' in {where} must be an object")

        includes_dir = data.get("includes_dir")
        ftp_data = data.get("ftp")
        rsync_data = data.get("rsync")

        return cls(
            name=name,
            source_dir=_path(_require(data, "source_dir", where)),
            output_dir=_path(_require(data, "output_dir", where)),
            includes_dir=_path(includes_dir) if includes_dir else None,
            template_files=PatternSet(
                _string_list(data, "template_files", where) or ["*.html"]
            ),
            ignore_dirs=PatternSet(_string_list(data, "ignore_dirs", where)),
            ignore_files=PatternSet(_string_list(data, "ignore_files", where)),
            always_process=PatternSet(_string_list(data, "always_process", where)),
            tags=tags,
            website=data.get("website"),
            ftp=FtpConfig.from_dict(ftp_data, f"{where} ftp") if ftp_data else None,
            rsync=(
                RsyncConfig.from_dict(rsync_data, f"{where} rsync")
                if rsync_data
                else None
            ),
        )

    def require_ftp(self) -> FtpConfig:
        """Return the FTP settings or fail if the site has none."""
        if self.ftp is None:
            raise SitepushConfigError(f"Site '{self.name}' has no ftp section")
        return self.ftp

    def require_rsync(self) -> RsyncConfig:
        """Return the rsync settings or fail if the site has none."""
        if self.rsync is None:
            raise SitepushConfigError(f"Site '{self.name}' has no rsync section")
        return self.rsync

    def require_website(self) -> str:
        """Return the website base URL or fail if none is configured."""
        if not self.website:
            raise SitepushConfigError(f"Site '{self.name}' has no website URL")
        return self.website


@dataclass
class SitepushConfig:
    """All configured sites."""

    sites: dict[str, SiteConfig]
    default_site: Optional[str] = None
    path: Optional[Path] = None

    def get_site(self, name: Optional[str] = None) -> SiteConfig:
        """Look up a site by name.

        Without a name the configured default site is used, or the only
        site if there is exactly one.

        Raises:
            SitepushConfigError: If the site cannot be determined
        """
        if name is None:
            name = self.default_site
        if name is None:
            if len(self.sites) == 1:
                return next(iter(self.sites.values()))
            raise SitepushConfigError(
                "No site given and no default_site configured; "
                f"choose one of: {', '.join(sorted(self.sites))}"
            )
        site = self.sites.get(name)
        if site is None:
            raise SitepushConfigError(f"Unknown site: {name}")
        return site

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], path: Optional[Path] = None
    ) -> "SitepushConfig":
        """Create SitepushConfig from the parsed config file."""
        if not isinstance(data, dict):
            raise SitepushConfigError("Config file must contain a JSON object")
        sites_data = data.get("sites")
        if not isinstance(sites_data, dict) or not sites_data:
            raise SitepushConfigError("Config file defines no sites")

        sites = {
            name: SiteConfig.from_dict(name, site_data)
            for name, site_data in sites_data.items()
        }
        default_site = data.get("default_site")
        if default_site is not None and default_site not in sites:
            raise SitepushConfigError(f"default_site '{default_site}' is not defined")
        return cls(sites=sites, default_site=default_site, path=path)


def load_config(path: Optional[Path] = None) -> SitepushConfig:
    """Load and validate the site configuration file.

    Args:
        path: Config file (defaults to default_config_path())

    Returns:
        Validated configuration

    Raises:
        SitepushConfigError: If the file is missing, unreadable or invalid
    """
    if path is None:
        path = default_config_path()
    path = Path(path).expanduser()

    if not path.exists():
        raise SitepushConfigError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SitepushConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise SitepushConfigError(f"Cannot read {path}: {e}") from e

    config = SitepushConfig.from_dict(data, path=path)
    logger.debug("Loaded %d site(s) from %s", len(config.sites), path)
    return config
