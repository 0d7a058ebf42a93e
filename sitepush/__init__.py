"""sitepush - render templates into a static website and publish it."""

__version__ = "0.1.0"

from .config import SiteConfig, SitepushConfig, load_config
from .exceptions import (
    SitepushConfigError,
    SitepushError,
    SitepushManifestError,
    SitepushRenderError,
    SitepushSessionError,
    SitepushTransferError,
)
from .render import SiteRenderer
from .rsync import RsyncTransport
from .sync import (
    ActionKind,
    ActionPlan,
    ApplyResult,
    DiffPlanner,
    ManifestBuilder,
    RemoteApplier,
    RemoteManifestFetcher,
    SyncEngine,
)

__all__ = [
    "__version__",
    "SiteConfig",
    "SitepushConfig",
    "load_config",
    "SitepushError",
    "SitepushConfigError",
    "SitepushManifestError",
    "SitepushRenderError",
    "SitepushSessionError",
    "SitepushTransferError",
    "SiteRenderer",
    "RsyncTransport",
    "SyncEngine",
    "ManifestBuilder",
    "DiffPlanner",
    "ActionPlan",
    "ActionKind",
    "RemoteApplier",
    "ApplyResult",
    "RemoteManifestFetcher",
]
