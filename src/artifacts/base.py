"""Base classes and protocols for artifact fetchers.

A fetcher knows how to download a repository artifact from a URL and
unpack it into a directory. The repo synchronizer treats both steps as
fallible, retry-free primitives.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Protocol, Union

import httpx

from ..common.context import OperationContext


class ArtifactFetcher(ABC):
    """Abstract base class for artifact fetchers."""

    @property
    @abstractmethod
    def url(self) -> str:
        """Return the URL the next fetch will use."""
        pass

    @abstractmethod
    def set_url(self, url: str) -> None:
        """Point the fetcher at a new artifact URL."""
        pass

    @abstractmethod
    def fetch_bytes(self, ctx: OperationContext) -> bytes:
        """Download the artifact.

        Args:
            ctx: Context bounding the download by deadline and cancellation

        Returns:
            Raw artifact bytes

        Raises:
            FetchError: If the transfer fails, is cancelled or times out
        """
        pass

    @abstractmethod
    def unpack(self, data: bytes, dest: Union[str, Path]) -> None:
        """Unpack artifact bytes into a directory.

        Args:
            data: Raw artifact bytes
            dest: Destination directory, created if missing

        Raises:
            UnpackError: If the archive is invalid or unsafe
        """
        pass


class ArtifactFetcherProtocol(Protocol):
    """Protocol for type checking artifact fetchers."""

    @property
    def url(self) -> str: ...

    def set_url(self, url: str) -> None: ...

    def fetch_bytes(self, ctx: OperationContext) -> bytes: ...

    def unpack(self, data: bytes, dest: Union[str, Path]) -> None: ...


# Builds a fetcher for a repo from the HTTP client and initial artifact URL
FetcherFactory = Callable[[httpx.Client, str], ArtifactFetcherProtocol]
