"""HTTP image fetcher with timestamp-based cache reuse (like ``wget -N``).

When the cached file exists, the request carries ``If-Modified-Since`` set to
the file's mtime; a 304 reply means the cache is current and no bytes move.
Downloads stream into a temporary file next to the destination and are moved
into place only once complete. The file's mtime is set from the server's
``Last-Modified`` header so later conditional requests compare like for like.
"""

from __future__ import annotations

import logging
import os
import tempfile
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path

import httpx

from templateforge.collaborators.base import (
    CollaboratorError,
    CollaboratorTimeoutError,
    FetchResult,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800.0


class HttpFetcher:
    """``Fetcher`` backed by ``httpx``.

    Parameters
    ----------
    timeout:
        Overall per-request timeout in seconds.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    def fetch(self, url: str, dest: Path) -> FetchResult:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        headers: dict[str, str] = {}
        if dest.exists():
            headers["If-Modified-Since"] = formatdate(dest.stat().st_mtime, usegmt=True)
            logger.debug("Local image %s exists, checking for updates...", dest.name)
        else:
            logger.debug("No local image %s, downloading...", dest.name)

        try:
            with httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                with client.stream("GET", url, headers=headers) as response:
                    if response.status_code == 304:
                        logger.debug("%s is up to date.", dest.name)
                        return FetchResult(path=dest, downloaded=False)
                    response.raise_for_status()
                    self._write(response, dest)
        except httpx.TimeoutException as exc:
            raise CollaboratorTimeoutError(
                f"Download of {url} did not finish within {self.timeout:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError(f"Download failed for {url}: {exc}") from exc

        logger.debug("Downloaded %s", dest)
        return FetchResult(path=dest, downloaded=True)

    @staticmethod
    def _write(response: httpx.Response, dest: Path) -> None:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            delete=False,
            dir=str(dest.parent),
            prefix=dest.name + ".",
            suffix=".part",
        ) as tmp:
            temp_path = Path(tmp.name)
            try:
                for chunk in response.iter_bytes():
                    tmp.write(chunk)
            except BaseException:
                tmp.close()
                temp_path.unlink(missing_ok=True)
                raise
        os.replace(temp_path, dest)

        last_modified = response.headers.get("Last-Modified")
        if last_modified:
            try:
                stamp = parsedate_to_datetime(last_modified).timestamp()
            except (TypeError, ValueError):
                logger.debug("Ignoring unparsable Last-Modified %r", last_modified)
            else:
                os.utime(dest, (stamp, stamp))
