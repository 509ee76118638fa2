"""Registry of tracked repositories.

Maps ``namespace/name`` keys to ``Repo`` instances and holds the defaults
new repos are created with. Defaults are captured by value: changing them
only affects repos added afterwards.
"""

import dataclasses
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

import httpx

from ..artifacts.base import FetcherFactory
from ..artifacts.tar_consumer import TarConsumer
from ..common.config import DEFAULT_CONFIG_PATH, RegistryConfig, load_typed_config
from ..common.context import OperationContext
from ..common.locks import ReadWriteLock
from ..common.logger import get_logger, setup_logger
from .base import RepoDescriptor, path_key
from .repo import Repo

logger = get_logger("repo_registry")


class RepoRegistry:
    """Concurrency-safe mapping of repository keys to repos."""

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        client: Optional[httpx.Client] = None,
        ctx: Optional[OperationContext] = None,
        fetcher_factory: FetcherFactory = TarConsumer,
    ):
        """Initialize the registry.

        Args:
            config: Defaults for newly created repos
            client: Shared HTTP client; one is created (and owned) when None
            ctx: Parent context for every repo's syncs
            fetcher_factory: Callable building a fetcher from client and URL
        """
        self._config = config if config is not None else RegistryConfig()
        self._owned_client: Optional[httpx.Client] = None
        if client is None:
            client = httpx.Client(follow_redirects=True)
            self._owned_client = client
        self._client = client
        self._ctx = ctx if ctx is not None else OperationContext.background()
        self._fetcher_factory = fetcher_factory
        self._repos: Dict[str, Repo] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def from_config_file(
        cls,
        config_path: str = DEFAULT_CONFIG_PATH,
        client: Optional[httpx.Client] = None,
        ctx: Optional[OperationContext] = None,
        fetcher_factory: FetcherFactory = TarConsumer,
    ) -> "RepoRegistry":
        """Create a registry from a YAML config file.

        The configured ``log_level`` is applied to the ``addon_mirror``
        logger hierarchy.

        Raises:
            FileNotFoundError: If the config file does not exist
            ValueError: If a config value is invalid
            TypeError: If the config file is not a mapping
        """
        config = load_typed_config(config_path)
        setup_logger("addon_mirror", level=config.log_level)
        logger.info(f"Loaded registry config from {config_path}")
        return cls(config, client=client, ctx=ctx, fetcher_factory=fetcher_factory)

    @property
    def config(self) -> RegistryConfig:
        with self._lock.read_locked():
            return self._config

    @property
    def http_client(self) -> httpx.Client:
        with self._lock.read_locked():
            return self._client

    def path_key(self, descriptor: RepoDescriptor) -> str:
        return path_key(descriptor)

    def _update_config(self, **changes) -> None:
        with self._lock.write_locked():
            self._config = dataclasses.replace(self._config, **changes)

    def set_root_path(self, path: str) -> None:
        self._update_config(root_path=path)

    def set_host_name(self, host_name: str) -> None:
        self._update_config(host_name=host_name)

    def set_timeout(self, timeout: float) -> None:
        self._update_config(timeout=timeout)

    def set_http_client(self, client: httpx.Client) -> None:
        """Use ``client`` for repos added from now on.

        Existing repos keep the client they were created with, so the
        previous client is not closed here.
        """
        with self._lock.write_locked():
            self._client = client

    def add(self, descriptor: RepoDescriptor) -> Repo:
        """Return the repo for ``descriptor``'s key, creating it if absent.

        An existing repo is returned unchanged; its descriptor and settings
        are not replaced.

        Args:
            descriptor: Repository descriptor

        Returns:
            Repo registered under the descriptor's key
        """
        if descriptor is None:
            raise ValueError("descriptor must not be None")
        key = path_key(descriptor)
        with self._lock.write_locked():
            repo = self._repos.get(key)
            if repo is None:
                repo = self._new_repo(key, descriptor)
                self._repos[key] = repo
                logger.debug(f"Added repository {key} at {repo.get_data_path()}")
            return repo

    def _new_repo(self, key: str, descriptor: RepoDescriptor) -> Repo:
        config = self._config
        return Repo(
            key,
            descriptor,
            root_path=config.root_path,
            host_name=config.host_name,
            timeout=config.timeout,
            dir_mode=config.dir_mode,
            client=self._client,
            fetcher_factory=self._fetcher_factory,
            ctx=self._ctx,
        )

    def get(self, key: str) -> Optional[Repo]:
        """Get a repo by key.

        Returns:
            Repo or None if not registered
        """
        with self._lock.read_locked():
            return self._repos.get(key)

    def delete(self, key: str) -> None:
        """Forget a repo. Its directories on disk are left in place."""
        with self._lock.write_locked():
            if self._repos.pop(key, None) is not None:
                logger.debug(f"Deleted repository {key}")

    def list(self) -> Dict[str, Repo]:
        """Return a point-in-time copy of the key to repo mapping."""
        with self._lock.read_locked():
            return dict(self._repos)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._repos)

    def __contains__(self, key: object) -> bool:
        with self._lock.read_locked():
            return key in self._repos

    def sync_all(
        self,
        ctx: Optional[OperationContext] = None,
        max_workers: Optional[int] = None,
    ) -> Dict[str, Optional[Exception]]:
        """Sync every registered repo in parallel.

        Repos are synced with their stored descriptors. Failures do not
        stop the other syncs.

        Args:
            ctx: Context passed to each sync
            max_workers: Thread pool size

        Returns:
            Mapping of key to the raised exception, or None on success
        """
        repos = self.list()
        results: Dict[str, Optional[Exception]] = {}
        if not repos:
            return results

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="repo-sync") as pool:
            futures = {key: pool.submit(repo.sync, None, ctx) for key, repo in repos.items()}
            for key, future in futures.items():
                error = future.exception()
                if error is not None:
                    logger.warning(f"Sync of {key} failed: {error}")
                results[key] = error

        return results

    def close(self) -> None:
        """Close the HTTP client the registry created, if any."""
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None

    def __enter__(self) -> "RepoRegistry":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
