"""Exception hierarchy for sitepush."""


class SitepushError(Exception):
    """Base exception for all sitepush errors."""


class SitepushConfigError(SitepushError):
    """Configuration is missing, malformed or incomplete.

    Raised before any network or remote-store activity takes place.
    """


class SitepushManifestError(SitepushError):
    """The local manifest could not be built or written.

    A manifest that might be incomplete must not be used for diffing,
    so this is always fatal for the synchronization run.
    """


class SitepushSessionError(SitepushError):
    """The remote store session could not be established.

    Covers connect, authentication and changing into the remote root.
    """


class SitepushRenderError(SitepushError):
    """A template failed to render."""


class SitepushTransferError(SitepushError):
    """A bulk transfer via an external tool (rsync) failed."""
