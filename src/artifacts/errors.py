"""Errors raised while retrieving and unpacking artifacts."""

from typing import Optional


class ArtifactError(RuntimeError):
    """Base class for artifact retrieval failures."""


class FetchError(ArtifactError):
    """Raised when artifact bytes cannot be downloaded."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UnpackError(ArtifactError):
    """Raised when an artifact cannot be decoded or extracted."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path
