"""Data model and capability protocols for tracked repositories.

A repository is identified by its namespace/name pair and periodically
publishes a tarball artifact. Descriptors are immutable snapshots of what
the reconciliation loop last observed.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

import httpx

from ..artifacts.base import ArtifactFetcherProtocol
from ..common.context import OperationContext


_DNS_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS_LABEL_RE = re.compile(_DNS_LABEL)
_DNS_SUBDOMAIN_RE = re.compile(rf"{_DNS_LABEL}(\.{_DNS_LABEL})*")


def _is_dns_label(value: str) -> bool:
    """Check for an RFC 1123 label, the form of a namespace."""
    return isinstance(value, str) and len(value) <= 63 and bool(_DNS_LABEL_RE.fullmatch(value))


def _is_dns_subdomain(value: str) -> bool:
    """Check for an RFC 1123 subdomain, the form of a resource name."""
    return isinstance(value, str) and len(value) <= 253 and bool(_DNS_SUBDOMAIN_RE.fullmatch(value))


class SyncState(Enum):
    """State of a repo's synchronizer."""

    IDLE = auto()
    SYNCING = auto()


@dataclass(frozen=True)
class ArtifactInfo:
    """Location and revision of a published artifact."""

    url: str
    revision: str = ""


@dataclass(frozen=True)
class RepoDescriptor:
    """Identity and latest artifact of a tracked repository."""

    namespace: str
    name: str
    artifact: Optional[ArtifactInfo] = None

    def __post_init__(self) -> None:
        # Both values become path segments under the registry root
        if not _is_dns_label(self.namespace):
            raise ValueError(f"invalid repository namespace: {self.namespace!r}")
        if not _is_dns_subdomain(self.name):
            raise ValueError(f"invalid repository name: {self.name!r}")

    @property
    def key(self) -> str:
        return path_key(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoDescriptor":
        """Build a descriptor from a mapping.

        Accepts either the flat form ``{namespace, name, artifact}`` or the
        source-controller resource form with ``metadata`` and
        ``status.artifact`` sections.

        Args:
            data: Descriptor mapping

        Returns:
            RepoDescriptor instance
        """
        if "metadata" in data:
            metadata = data.get("metadata") or {}
            artifact_dict = (data.get("status") or {}).get("artifact")
            namespace = metadata.get("namespace", "")
            name = metadata.get("name", "")
        else:
            artifact_dict = data.get("artifact")
            namespace = data.get("namespace", "")
            name = data.get("name", "")

        artifact = None
        if artifact_dict:
            artifact = ArtifactInfo(
                url=artifact_dict.get("url", ""),
                revision=artifact_dict.get("revision", ""),
            )
        return cls(namespace=namespace, name=name, artifact=artifact)


def path_key(descriptor: RepoDescriptor) -> str:
    """Return the ``namespace/name`` key used for lookups and paths."""
    if descriptor is None:
        raise ValueError("descriptor must not be None")
    return f"{descriptor.namespace}/{descriptor.name}"


class RepoProtocol(Protocol):
    """Capabilities of a single synchronized repository."""

    def get_source_name(self) -> str: ...

    def get_source_namespace(self) -> str: ...

    def get_path(self) -> str: ...

    def get_data_path(self) -> str: ...

    def get_load_path(self) -> str: ...

    def get_descriptor(self) -> RepoDescriptor: ...

    def sync(
        self,
        descriptor: Optional[RepoDescriptor] = None,
        ctx: Optional[OperationContext] = None,
    ) -> None: ...

    def link_data(self, layer_path: Union[str, Path], source_path: str) -> None: ...

    def set_host_name(self, host_name: str) -> None: ...

    def set_http_client(self, client: httpx.Client) -> None: ...

    def set_fetcher(self, fetcher: ArtifactFetcherProtocol) -> None: ...


class RepoRegistryProtocol(Protocol):
    """Capabilities of the registry of tracked repositories."""

    def add(self, descriptor: RepoDescriptor) -> RepoProtocol: ...

    def get(self, key: str) -> Optional[RepoProtocol]: ...

    def delete(self, key: str) -> None: ...

    def list(self) -> Dict[str, RepoProtocol]: ...

    def path_key(self, descriptor: RepoDescriptor) -> str: ...

    def set_root_path(self, path: str) -> None: ...

    def set_host_name(self, host_name: str) -> None: ...

    def set_timeout(self, timeout: float) -> None: ...

    def set_http_client(self, client: httpx.Client) -> None: ...
