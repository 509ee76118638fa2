"""Local mirror of remote repository artifacts.

This module provides the registry of tracked repositories and the
per-repository synchronizer that atomically replaces each repository's
committed tree and links parts of it into addon layers.
"""

from .base import (
    ArtifactInfo,
    RepoDescriptor,
    RepoProtocol,
    RepoRegistryProtocol,
    SyncState,
    path_key,
)
from .errors import (
    ArtifactMissingError,
    LinkValidationError,
    RepoError,
    RepoIOError,
)
from .registry import RepoRegistry
from .repo import Repo, mirror_url

__all__ = [
    "ArtifactInfo",
    "ArtifactMissingError",
    "LinkValidationError",
    "Repo",
    "RepoDescriptor",
    "RepoError",
    "RepoIOError",
    "RepoProtocol",
    "RepoRegistry",
    "RepoRegistryProtocol",
    "SyncState",
    "mirror_url",
    "path_key",
]
