"""Retrieval of the manifest published on the remote website."""

from __future__ import annotations

import logging

import httpx

from ..exceptions import SitepushConfigError
from ..utils import DEFAULT_FETCH_TIMEOUT, MANIFEST_FILENAME, ensure_trailing_slash
from .manifest import Manifest, parse_manifest

logger = logging.getLogger(__name__)


class RemoteManifestFetcher:
    """Fetches the manifest of the last successful sync from the website.

    A website that has never been synced has no manifest, so every
    failure (timeout, HTTP error status, connection error, undecodable
    body) yields an empty manifest instead of an error. Every local file
    is then planned as new.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        manifest_name: str = MANIFEST_FILENAME,
        client: httpx.Client | None = None,
    ):
        """Initialize remote manifest fetcher.

        Args:
            timeout: Request timeout in seconds
            manifest_name: File name of the manifest below the base URL
            client: Optional preconfigured httpx client (owned by the caller)
        """
        self.timeout = timeout
        self.manifest_name = manifest_name
        self._client = client

    def manifest_url(self, remote_base_url: str) -> str:
        """URL of the manifest below the given website base URL."""
        return ensure_trailing_slash(remote_base_url) + self.manifest_name

    def fetch(self, remote_base_url: str | None) -> Manifest:
        """Fetch and parse the remote manifest.

        Args:
            remote_base_url: Base URL of the published website

        Returns:
            Parsed manifest, empty if it could not be retrieved

        Raises:
            SitepushConfigError: If no base URL is configured
        """
        if not remote_base_url:
            raise SitepushConfigError(
                "No website URL configured; it is required to fetch the "
                "remote manifest"
            )

        url = self.manifest_url(remote_base_url)
        logger.debug("Fetching remote manifest from %s", url)
        try:
            text = self._get(url)
        except httpx.HTTPStatusError as e:
            logger.info(
                "Remote manifest unavailable (HTTP %d), assuming empty remote",
                e.response.status_code,
            )
            return Manifest()
        except httpx.TimeoutException as e:
            logger.warning("Timed out fetching %s: %s", url, e)
            return Manifest()
        except httpx.HTTPError as e:
            logger.warning("Could not fetch %s: %s", url, e)
            return Manifest()
        except UnicodeDecodeError as e:
            logger.warning("Remote manifest at %s is not valid text: %s", url, e)
            return Manifest()

        manifest = parse_manifest(text)
        logger.debug("Remote manifest has %d entries", len(manifest))
        return manifest

    def _get(self, url: str) -> str:
        if self._client is not None:
            response = self._client.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.content.decode("utf-8")

        with httpx.Client(
            timeout=httpx.Timeout(self.timeout), follow_redirects=True
        ) as client:
            response = client.get(url)
            response.raise_for_status()
            return response.content.decode("utf-8")
