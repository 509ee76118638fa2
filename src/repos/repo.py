"""Per-repository synchronizer.

Each ``Repo`` owns two directories under the registry root:

- ``{root}/{namespace}/{name}``: the committed tree read by consumers
- ``{root}/load/{namespace}/{name}``: scratch space for an in-progress sync

A sync downloads and unpacks the artifact into the scratch directory and
then swaps it onto the committed path with a single rename while holding
the data lock. Readers going through the same lock therefore see either
the old tree or the new one, never a partial extraction.

The namespace ``load`` is reserved because its committed trees would sit
inside the scratch area.
"""

import os
import shutil
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

import httpx

from ..artifacts.base import ArtifactFetcherProtocol, FetcherFactory
from ..artifacts.tar_consumer import TarConsumer
from ..common.config import DEFAULT_DIR_MODE, DEFAULT_TIMEOUT
from ..common.context import OperationContext
from ..common.locks import ReadWriteLock
from ..common.logger import get_logger
from .base import RepoDescriptor, SyncState, path_key
from .errors import ArtifactMissingError, LinkValidationError, RepoIOError

logger = get_logger("repo_sync")

LOAD_DIR = "load"

MIRROR_URL_TEMPLATE = "http://{host}/gitrepository/{namespace}/{name}/latest.tar.gz"


def mirror_url(host_name: str, descriptor: RepoDescriptor) -> str:
    """Build the artifact URL served by a source mirror host."""
    return MIRROR_URL_TEMPLATE.format(
        host=host_name, namespace=descriptor.namespace, name=descriptor.name
    )


def _require_directory(path: str) -> None:
    """Ensure ``path`` exists and is a directory.

    Raises:
        LinkValidationError: If the path is missing or not a directory
    """
    if not os.path.exists(path):
        raise LinkValidationError(f"target directory does not exist: {path}", path)
    if not os.path.isdir(path):
        raise LinkValidationError(f"addons data path: {path}, is not a directory", path)


def _remove_path(path: str) -> None:
    """Remove a file, symlink or directory tree if present."""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


class Repo:
    """Synchronizer and layer linker for one tracked repository.

    Two independent locks protect a repo:

    - the sync lock serializes whole sync attempts (fetch, unpack, commit)
    - the data lock guards the descriptor, the commit rename and links

    The data lock is only held for the commit and link steps, so accessors
    never wait for a network fetch.
    """

    def __init__(
        self,
        key: str,
        descriptor: RepoDescriptor,
        root_path: str,
        host_name: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        dir_mode: int = DEFAULT_DIR_MODE,
        client: Optional[httpx.Client] = None,
        fetcher: Optional[ArtifactFetcherProtocol] = None,
        fetcher_factory: FetcherFactory = TarConsumer,
        ctx: Optional[OperationContext] = None,
    ):
        """Initialize a repo.

        Args:
            key: ``namespace/name`` key of the repository
            descriptor: Latest known descriptor
            root_path: Root directory holding committed and scratch trees
            host_name: Source mirror host; empty to use the artifact URL
            timeout: Seconds allowed for fetching one artifact
            dir_mode: Mode for directories this repo creates
            client: HTTP client handed to the fetcher factory
            fetcher: Explicit fetcher; built from ``fetcher_factory`` when None
            fetcher_factory: Callable building a fetcher from client and URL
            ctx: Parent context whose cancellation aborts every sync
        """
        if descriptor is None:
            raise ValueError("descriptor must not be None")
        if path_key(descriptor) != key:
            raise ValueError(f"descriptor {path_key(descriptor)} does not belong to repo {key}")
        if descriptor.namespace == LOAD_DIR:
            raise ValueError(f"namespace {LOAD_DIR!r} is reserved for scratch directories")
        self._key = key
        self._descriptor = descriptor
        self._data_path = os.path.join(root_path, key)
        self._load_path = os.path.join(root_path, LOAD_DIR, key)
        self._host_name = host_name
        self._timeout = timeout
        self._dir_mode = dir_mode
        self._owned_client: Optional[httpx.Client] = None
        if client is None:
            client = httpx.Client(follow_redirects=True)
            self._owned_client = client
        self._client = client
        self._fetcher_factory = fetcher_factory
        if fetcher is None:
            initial_url = descriptor.artifact.url if descriptor.artifact else ""
            fetcher = fetcher_factory(self._client, initial_url)
        self._fetcher = fetcher
        self._ctx = ctx if ctx is not None else OperationContext.background()
        self._state = SyncState.IDLE
        self._last_revision: Optional[str] = None

        self._data_lock = ReadWriteLock()
        self._sync_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Repo(key={self._key!r}, data_path={self._data_path!r})"

    # Accessors

    def get_source_name(self) -> str:
        with self._data_lock.read_locked():
            return self._descriptor.name

    def get_source_namespace(self) -> str:
        with self._data_lock.read_locked():
            return self._descriptor.namespace

    def get_descriptor(self) -> RepoDescriptor:
        with self._data_lock.read_locked():
            return self._descriptor

    def get_path(self) -> str:
        return self._key

    def get_data_path(self) -> str:
        return self._data_path

    def get_load_path(self) -> str:
        return self._load_path

    @property
    def state(self) -> SyncState:
        with self._data_lock.read_locked():
            return self._state

    @property
    def last_revision(self) -> Optional[str]:
        """Revision of the artifact currently committed, None before the first sync."""
        with self._data_lock.read_locked():
            return self._last_revision

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def host_name(self) -> str:
        return self._host_name

    @property
    def http_client(self) -> httpx.Client:
        return self._client

    def close(self) -> None:
        """Close the HTTP client the repo created, if any."""
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None

    def __enter__(self) -> "Repo":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def reading_data(self) -> Iterator[str]:
        """Hold the data lock for reading while the committed tree is used.

        Yields:
            Path of the committed tree, stable until the block exits
        """
        with self._data_lock.read_locked():
            yield self._data_path

    # Per-repo overrides. These wait for an in-flight sync to finish.

    def set_host_name(self, host_name: str) -> None:
        with self._sync_lock:
            self._host_name = host_name

    def set_timeout(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        with self._sync_lock:
            self._timeout = timeout

    def set_http_client(self, client: httpx.Client) -> None:
        """Switch transport, rebuilding the fetcher around the new client."""
        with self._sync_lock:
            if self._owned_client is not client:
                self.close()
            self._client = client
            self._fetcher = self._fetcher_factory(client, self._fetcher.url)

    def set_fetcher(self, fetcher: ArtifactFetcherProtocol) -> None:
        with self._sync_lock:
            self._fetcher = fetcher

    def set_descriptor(self, descriptor: RepoDescriptor) -> None:
        """Record a newer descriptor without syncing it."""
        self._check_key(descriptor)
        with self._data_lock.write_locked():
            self._descriptor = descriptor

    def _check_key(self, descriptor: RepoDescriptor) -> None:
        if descriptor is None:
            raise ValueError("descriptor must not be None")
        if path_key(descriptor) != self._key:
            raise ValueError(
                f"descriptor {path_key(descriptor)} does not belong to repo {self._key}"
            )

    def _set_state(self, state: SyncState) -> None:
        with self._data_lock.write_locked():
            self._state = state

    # Synchronization

    def sync(
        self,
        descriptor: Optional[RepoDescriptor] = None,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Fetch the descriptor's artifact and commit it as the data tree.

        On any failure the committed tree is left exactly as it was; the
        scratch directory may hold a partial extraction until the next
        attempt resets it.

        Args:
            descriptor: Descriptor to sync; the stored one when None
            ctx: Caller context; cancelling it aborts the fetch

        Raises:
            ArtifactMissingError: If the descriptor has no artifact
            FetchError: If the artifact cannot be downloaded
            UnpackError: If the artifact cannot be extracted
            RepoIOError: If preparing or committing directories fails
        """
        if descriptor is not None:
            self._check_key(descriptor)

        with self._sync_lock:
            if descriptor is None:
                descriptor = self.get_descriptor()

            # Validated before touching the filesystem so scratch and data are unchanged
            if descriptor.artifact is None:
                raise ArtifactMissingError(self._key)

            self._set_state(SyncState.SYNCING)
            op_ctx = (ctx if ctx is not None else self._ctx).with_timeout(self._timeout)
            try:
                logger.info(
                    f"New revision detected namespace={descriptor.namespace} "
                    f"name={descriptor.name} revision={descriptor.artifact.revision}"
                )
                self._reset_load_path()
                self._fetch_artifact(descriptor, op_ctx)
                self._commit(descriptor)
            finally:
                op_ctx.release()
                self._set_state(SyncState.IDLE)

        logger.info(f"Committed {self._key} at revision {descriptor.artifact.revision}")

    def _reset_load_path(self) -> None:
        """Bring the scratch directory to a known-empty state."""
        try:
            _remove_path(self._load_path)
        except OSError as e:
            raise RepoIOError("remove directory", self._load_path, e) from e
        try:
            os.makedirs(self._load_path, mode=self._dir_mode)
        except OSError as e:
            raise RepoIOError("make directory", self._load_path, e) from e

    def artifact_url(self, descriptor: RepoDescriptor) -> str:
        """Return the URL a sync of ``descriptor`` downloads from.

        A configured mirror host always wins over the descriptor's URL.
        """
        if descriptor.artifact is None:
            raise ArtifactMissingError(self._key)
        if self._host_name:
            return mirror_url(self._host_name, descriptor)
        return descriptor.artifact.url

    def _fetch_artifact(self, descriptor: RepoDescriptor, ctx: OperationContext) -> None:
        url = self.artifact_url(descriptor)
        self._fetcher.set_url(url)

        try:
            data = self._fetcher.fetch_bytes(ctx)
        except Exception as e:
            logger.warning(f"Failed to download artifact for {self._key} from {url}: {e}")
            raise

        logger.debug(f"tar data length={len(data)} namespace={descriptor.namespace} name={descriptor.name}")

        try:
            self._fetcher.unpack(data, self._load_path)
        except Exception as e:
            logger.warning(f"Failed to untar artifact for {self._key} into {self._load_path}: {e}")
            raise

    def _commit(self, descriptor: RepoDescriptor) -> None:
        """Swap the populated scratch tree onto the committed path."""
        parent = os.path.dirname(self._data_path)
        with self._data_lock.write_locked():
            try:
                os.makedirs(parent, mode=self._dir_mode, exist_ok=True)
            except OSError as e:
                raise RepoIOError("make directory", parent, e) from e
            try:
                _remove_path(self._data_path)
            except OSError as e:
                raise RepoIOError("remove data path", self._data_path, e) from e
            try:
                os.rename(self._load_path, self._data_path)
            except OSError as e:
                raise RepoIOError("rename load path", self._load_path, e) from e
            self._descriptor = descriptor
            self._last_revision = descriptor.artifact.revision

    # Layering

    def link_data(self, layer_path: Union[str, Path], source_path: str) -> None:
        """Expose a committed subdirectory at ``layer_path`` via a symlink.

        Anything already at ``layer_path`` is replaced. Nothing is touched
        when the target is invalid.

        Args:
            layer_path: Where the symlink is created
            source_path: Directory relative to the committed tree

        Raises:
            LinkValidationError: If the target is missing, not a directory
                or outside the committed tree
            RepoIOError: If creating directories or the link fails
        """
        layer_path = os.fspath(layer_path)
        relative = source_path.strip("/")
        base = os.path.normpath(self._data_path)
        target = os.path.normpath(os.path.join(base, relative))
        if target != base and not target.startswith(base + os.sep):
            raise LinkValidationError(
                f"target {target} is outside the repository data path", target
            )
        with self._data_lock.write_locked():
            _require_directory(target)

            layer_dir = os.path.dirname(layer_path)
            if layer_dir:
                try:
                    os.makedirs(layer_dir, mode=self._dir_mode, exist_ok=True)
                except OSError as e:
                    raise RepoIOError("make directory", layer_dir, e) from e
            try:
                _remove_path(layer_path)
            except OSError as e:
                raise RepoIOError("remove link", layer_path, e) from e
            try:
                os.symlink(target, layer_path)
            except OSError as e:
                raise RepoIOError("create link", layer_path, e) from e

        logger.debug(f"Linked {layer_path} -> {target}")
