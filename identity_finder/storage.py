import io
import logging
import time
from typing import Optional

from webdav4.client import Client

from .constants import INITIAL_WEBDAV_BACKOFF, MAX_WEBDAV_RETRY_ATTEMPTS

logger = logging.getLogger(__name__)


def _remote(path: str) -> str:
    return path if str(path).startswith('/') else '/' + str(path).lstrip('/')


class WebDavStorage:
    """Object store for uploaded attachments, backed by a WebDAV collection."""

    def __init__(self, base_url: str, auth: Optional[tuple] = None):
        self.base_url = base_url.rstrip('/')
        self.client = Client(self.base_url, auth=auth)

    def ensure_dir(self, path: str) -> None:
        """Create the collection at `path` if it does not exist yet."""
        remote = _remote(path).rstrip('/')
        if not remote:
            return
        try:
            if self.client.exists(remote):
                return
            self.client.mkdir(remote)
            logger.info("Created WebDAV collection %s", remote)
        except Exception as exc:
            raise IOError(f"Failed to create collection {remote}: {exc}") from exc

    def upload_fileobj(self, path: str, data: bytes, overwrite: bool = True) -> str:
        """Upload bytes to `path`, retrying while the resource is locked (423)."""
        remote = _remote(path)
        parent = remote.rsplit('/', 1)[0]
        if parent:
            self.ensure_dir(parent)

        last_exc = None
        for attempt in range(MAX_WEBDAV_RETRY_ATTEMPTS):
            try:
                self.client.upload_fileobj(io.BytesIO(data), remote, overwrite=overwrite)
                logger.debug("Uploaded %d bytes to %s", len(data), remote)
                return remote
            except FileNotFoundError:
                raise
            except Exception as exc:
                last_exc = exc
                exc_str = str(exc).lower()
                if ('423' in str(exc) or 'locked' in exc_str) and attempt < MAX_WEBDAV_RETRY_ATTEMPTS - 1:
                    backoff = INITIAL_WEBDAV_BACKOFF * (2 ** attempt)
                    logger.debug(
                        "WebDAV locked on attempt %d; retrying after %.2fs", attempt + 1, backoff
                    )
                    time.sleep(backoff)
                    continue
                raise IOError(f"Failed to upload {remote}: {exc}") from exc

        raise IOError(f"Failed to upload {remote} after {MAX_WEBDAV_RETRY_ATTEMPTS} attempts: {last_exc}") from last_exc

