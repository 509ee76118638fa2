"""Artifact retrieval for tracked repositories.

Provides the fetcher abstraction the repo synchronizer depends on, plus
the default HTTP tarball implementation.
"""

from .base import ArtifactFetcher, ArtifactFetcherProtocol, FetcherFactory
from .errors import ArtifactError, FetchError, UnpackError
from .tar_consumer import TarConsumer, unpack_tar

__all__ = [
    "ArtifactError",
    "ArtifactFetcher",
    "ArtifactFetcherProtocol",
    "FetchError",
    "FetcherFactory",
    "TarConsumer",
    "UnpackError",
    "unpack_tar",
]
