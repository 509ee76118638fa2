"""Errors raised by the repo registry and synchronizer."""


class RepoError(RuntimeError):
    """Base class for repository synchronization failures."""


class ArtifactMissingError(RepoError):
    """Raised when a descriptor carries no artifact to sync."""

    def __init__(self, key: str):
        super().__init__(f"repository {key} does not contain an artifact")
        self.key = key


class LinkValidationError(RepoError):
    """Raised when a layer link target is missing or not a directory."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class RepoIOError(RepoError):
    """Raised when a filesystem operation on repo data fails."""

    def __init__(self, operation: str, path: str, cause: OSError):
        super().__init__(f"failed to {operation}: {path}: {cause}")
        self.operation = operation
        self.path = path
