"""HTTP tarball fetcher.

Downloads gzipped (or plain) tar artifacts with ``httpx`` and extracts
them into a staging directory.
"""

import io
import tarfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Dict, Any, Optional, Union

import httpx

from ..common.context import ContextError, OperationContext
from ..common.logger import get_logger
from .base import ArtifactFetcher
from .errors import FetchError, UnpackError

logger = get_logger("tar_consumer")


def _is_unsafe_member(name: str) -> bool:
    """Check for absolute paths and parent traversal in a member name."""
    return name.startswith("/") or ".." in PurePosixPath(name).parts


def unpack_tar(data: bytes, dest: Union[str, Path]) -> None:
    """Extract a tar archive held in memory.

    Compression is auto-detected. Members with absolute paths or ``..``
    components are rejected before anything is written.

    Args:
        data: Archive bytes
        dest: Destination directory, created if missing

    Raises:
        UnpackError: If the archive is invalid, unsafe or cannot be written
    """
    dest = Path(dest)
    try:
        dest.mkdir(parents=True, exist_ok=True)
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            members = tar.getmembers()
            for member in members:
                if _is_unsafe_member(member.name):
                    raise UnpackError(f"Unsafe path in archive: {member.name}", str(dest))
            tar.extractall(dest, members=members, filter="data")
    except (tarfile.TarError, EOFError, zlib.error) as e:
        raise UnpackError(f"Invalid tar archive: {e}", str(dest)) from e
    except OSError as e:
        raise UnpackError(f"Failed to extract archive into {dest}: {e}", str(dest)) from e


class TarConsumer(ArtifactFetcher):
    """Artifact fetcher for tarballs served over HTTP(S).

    The HTTP client is shared with other repos and is never closed here.
    Cancellation is checked between body chunks, so a stalled read is
    bounded by the per-request timeout derived from the context deadline.
    """

    def __init__(self, client: httpx.Client, url: str = "", chunk_size: int = 65536):
        """Initialize the tar consumer.

        Args:
            client: HTTP client used for downloads
            url: Initial artifact URL
            chunk_size: Bytes read per body chunk
        """
        self._client = client
        self._url = url
        self.chunk_size = chunk_size

    @property
    def url(self) -> str:
        """Return the current artifact URL."""
        return self._url

    def set_url(self, url: str) -> None:
        self._url = url

    def fetch_bytes(self, ctx: OperationContext) -> bytes:
        """Download the artifact at the current URL.

        Args:
            ctx: Context bounding the download

        Returns:
            Response body

        Raises:
            FetchError: On transport errors, non-2xx responses, cancellation
                or deadline expiry
        """
        url = self._url
        if not url:
            raise FetchError("No artifact URL set", url)

        request_kwargs: Dict[str, Any] = {}
        try:
            ctx.check()
            remaining: Optional[float] = ctx.remaining()
            if remaining is not None:
                request_kwargs["timeout"] = remaining

            with self._client.stream("GET", url, **request_kwargs) as response:
                if not response.is_success:
                    raise FetchError(
                        f"Unexpected status {response.status_code} fetching {url}",
                        url,
                        status_code=response.status_code,
                    )
                buffer = bytearray()
                for chunk in response.iter_bytes(chunk_size=self.chunk_size):
                    ctx.check()
                    buffer.extend(chunk)
        except ContextError as e:
            raise FetchError(f"Fetch of {url} aborted: {e}", url) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {e}", url) from e

        logger.debug(f"Fetched {len(buffer)} bytes from {url}")
        return bytes(buffer)

    def unpack(self, data: bytes, dest: Union[str, Path]) -> None:
        unpack_tar(data, dest)
