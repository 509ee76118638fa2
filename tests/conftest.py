"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from src.common.config import RegistryConfig
from src.repos.base import RepoDescriptor
from src.repos.registry import RepoRegistry
from tests.factories import FakeFetcher, build_tarball, make_descriptor


ADDON_FILES = {
    "addons/app/kustomization.yaml": b"kind: Kustomization\n",
    "addons/app/deploy.yaml": b"kind: Deployment\n",
    "README.md": b"addons\n",
}


@pytest.fixture
def descriptor() -> RepoDescriptor:
    """Descriptor with a published artifact."""
    return make_descriptor()


@pytest.fixture
def root_path(tmp_path) -> Path:
    """Root directory for committed and scratch trees."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    """Fetcher serving a small addon tree."""
    return FakeFetcher(payload=build_tarball(ADDON_FILES))


@pytest.fixture
def registry(root_path):
    """Registry rooted in a temporary directory."""
    with RepoRegistry(RegistryConfig(root_path=str(root_path), timeout=5.0)) as reg:
        yield reg
