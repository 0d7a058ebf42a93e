"""Remote file store sessions.

The applier talks to the remote store through the small RemoteSession
contract. Navigation and transfer operations report failure by returning
False; only establishing the session raises.
"""

from __future__ import annotations

import ftplib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Protocol

from ..exceptions import SitepushSessionError
from ..utils import DEFAULT_SESSION_TIMEOUT

if TYPE_CHECKING:
    from ..config import FtpConfig

logger = logging.getLogger(__name__)


class RemoteSession(Protocol):
    """Authenticated, stateful connection to a remote file store."""

    def connect(self, host: str, **options: Any) -> None: ...

    def authenticate(self, user: str, password: str) -> None: ...

    def change_directory(self, path: str) -> bool: ...

    def current_directory(self) -> str: ...

    def make_directory(self, path: str) -> bool: ...

    def set_binary_mode(self) -> bool: ...

    def put(self, local_path: Path, remote_path: str) -> bool: ...

    def delete(self, remote_path: str) -> bool: ...

    def close(self) -> None: ...


SessionFactory = Callable[[], RemoteSession]


class FtpSession:
    """RemoteSession backed by ftplib.

    Examples:
        >>> with FtpSession(timeout=30) as session:
        ...     session.connect("ftp.example.com")
        ...     session.authenticate("user", "secret")
        ...     session.set_binary_mode()
        ...     session.put(Path("index.html"), "/htdocs/index.html")
    """

    def __init__(
        self,
        timeout: float = DEFAULT_SESSION_TIMEOUT,
        passive: bool = True,
        tls: bool = False,
    ):
        """Initialize FTP session.

        Args:
            timeout: Socket timeout in seconds for every operation
            passive: Use passive mode data connections
            tls: Use explicit FTPS (AUTH TLS) with a protected data channel
        """
        self.timeout = timeout
        self.passive = passive
        self.tls = tls
        self._ftp: ftplib.FTP | None = None

    def __enter__(self) -> FtpSession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise SitepushSessionError("FTP session is not connected")
        return self._ftp

    def connect(self, host: str, **options: Any) -> None:
        """Connect to an FTP server.

        Args:
            host: Server host name
            **options: ``port`` (default 21)

        Raises:
            SitepushSessionError: If the connection fails
        """
        port = int(options.get("port", 21))
        ftp = ftplib.FTP_TLS(timeout=self.timeout) if self.tls else ftplib.FTP(
            timeout=self.timeout
        )
        try:
            ftp.connect(host, port)
        except ftplib.all_errors as e:
            raise SitepushSessionError(f"Cannot connect to {host}:{port}: {e}") from e
        ftp.set_pasv(self.passive)
        self._ftp = ftp
        logger.debug("Connected to %s:%d (passive=%s)", host, port, self.passive)

    def authenticate(self, user: str, password: str) -> None:
        """Log in to the server.

        Raises:
            SitepushSessionError: If the login is rejected
        """
        try:
            self.ftp.login(user, password)
            if isinstance(self.ftp, ftplib.FTP_TLS):
                self.ftp.prot_p()
        except ftplib.all_errors as e:
            raise SitepushSessionError(f"Login failed for {user}: {e}") from e
        logger.debug("Logged in as %s", user)

    def change_directory(self, path: str) -> bool:
        try:
            self.ftp.cwd(path)
        except ftplib.all_errors as e:
            logger.debug("CWD %s failed: %s", path, e)
            return False
        return True

    def current_directory(self) -> str:
        try:
            return self.ftp.pwd()
        except ftplib.all_errors as e:
            raise SitepushSessionError(f"Cannot determine remote directory: {e}") from e

    def make_directory(self, path: str) -> bool:
        try:
            self.ftp.mkd(path)
        except ftplib.all_errors as e:
            logger.debug("MKD %s failed: %s", path, e)
            return False
        return True

    def set_binary_mode(self) -> bool:
        try:
            self.ftp.voidcmd("TYPE I")
        except ftplib.all_errors as e:
            logger.debug("TYPE I failed: %s", e)
            return False
        return True

    def put(self, local_path: Path, remote_path: str) -> bool:
        """Upload a local file; a timeout counts as failure."""
        try:
            with open(local_path, "rb") as f:
                self.ftp.storbinary(f"STOR {remote_path}", f)
        except ftplib.all_errors as e:
            logger.debug("STOR %s failed: %s", remote_path, e)
            return False
        return True

    def delete(self, remote_path: str) -> bool:
        try:
            self.ftp.delete(remote_path)
        except ftplib.all_errors as e:
            logger.debug("DELE %s failed: %s", remote_path, e)
            return False
        return True

    def close(self) -> None:
        """Say goodbye to the server and drop the connection."""
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except ftplib.all_errors:
            self._ftp.close()
        self._ftp = None


def open_ftp_session(config: FtpConfig) -> FtpSession:
    """Create a connected, authenticated, binary-mode FTP session.

    Args:
        config: FTP section of a site configuration

    Returns:
        Ready-to-use session; the caller must close it

    Raises:
        SitepushSessionError: If connecting or logging in fails
    """
    session = FtpSession(timeout=config.timeout, passive=config.passive, tls=config.tls)
    try:
        session.connect(config.hostname, port=config.port)
        session.authenticate(config.username, config.password or "")
        if not session.set_binary_mode():
            raise SitepushSessionError("Server refused binary transfer mode")
    except SitepushSessionError:
        session.close()
        raise
    return session
