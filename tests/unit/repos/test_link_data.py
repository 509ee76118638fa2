"""Tests for symlink layering of committed repository trees."""

import os
from unittest.mock import MagicMock

import pytest

from src.repos.errors import LinkValidationError
from src.repos.repo import Repo
from tests.factories import build_tarball


@pytest.fixture
def synced_repo(root_path, descriptor, fake_fetcher):
    """Repo with a committed snapshot."""
    repo = Repo(
        "a/b",
        descriptor,
        root_path=str(root_path),
        client=MagicMock(),
        fetcher=fake_fetcher,
    )
    repo.sync()
    return repo


@pytest.fixture
def layer_root(tmp_path):
    return tmp_path / "layers"


class TestLinkData:
    """Tests for Repo.link_data."""

    def test_creates_link(self, synced_repo, layer_root):
        """Test the link points at the committed subdirectory."""
        layer = layer_root / "bootstrap" / "0.1.01" / "app"

        synced_repo.link_data(layer, "addons/app")

        target = os.path.join(synced_repo.get_data_path(), "addons/app")
        assert layer.is_symlink()
        assert os.readlink(layer) == target
        assert (layer / "deploy.yaml").read_bytes() == b"kind: Deployment\n"

    def test_idempotent(self, synced_repo, layer_root):
        """Test linking twice leaves exactly one link."""
        layer = layer_root / "app"

        synced_repo.link_data(layer, "addons/app")
        synced_repo.link_data(layer, "addons/app")

        assert os.listdir(layer_root) == ["app"]
        assert os.readlink(layer) == os.path.join(synced_repo.get_data_path(), "addons/app")

    def test_relink_to_new_target(self, synced_repo, layer_root):
        """Test a link is repointed at the latest target."""
        layer = layer_root / "app"
        synced_repo.link_data(layer, "addons/app")

        synced_repo.link_data(layer, "addons")

        assert os.readlink(layer) == os.path.join(synced_repo.get_data_path(), "addons")

    def test_replaces_existing_file(self, synced_repo, layer_root):
        """Test a regular file in the way is replaced."""
        layer_root.mkdir()
        layer = layer_root / "app"
        layer.write_text("not a link")

        synced_repo.link_data(layer, "addons/app")

        assert layer.is_symlink()

    def test_replaces_existing_directory(self, synced_repo, layer_root):
        """Test a real directory in the way is replaced."""
        layer = layer_root / "app"
        (layer / "nested").mkdir(parents=True)

        synced_repo.link_data(layer, "addons/app")

        assert layer.is_symlink()

    def test_string_layer_path(self, synced_repo, layer_root):
        """Test layer paths may be plain strings."""
        layer = str(layer_root / "app")

        synced_repo.link_data(layer, "/addons/app/")

        assert os.path.islink(layer)

    def test_missing_target(self, synced_repo, layer_root):
        """Test a missing target fails without touching the layer tree."""
        layer = layer_root / "deep" / "app"

        with pytest.raises(LinkValidationError) as exc_info:
            synced_repo.link_data(layer, "addons/missing")

        assert exc_info.value.path.endswith("addons/missing")
        assert not layer_root.exists()

    def test_target_not_directory(self, synced_repo, layer_root):
        """Test a file target is rejected."""
        layer_root.mkdir()
        existing = layer_root / "app"
        existing.write_text("keep")

        with pytest.raises(LinkValidationError):
            synced_repo.link_data(existing, "README.md")

        assert existing.read_text() == "keep"

    @pytest.mark.parametrize("source_path", ["../../other", "..", "addons/../../b-sibling"])
    def test_rejects_escaping_source_path(self, synced_repo, root_path, layer_root, source_path):
        """Test a source path cannot leave the committed tree."""
        (root_path / "other").mkdir()
        (root_path / "a" / "b-sibling").mkdir()
        layer = layer_root / "app"

        with pytest.raises(LinkValidationError):
            synced_repo.link_data(layer, source_path)

        assert not layer_root.exists()

    def test_dot_segments_inside_tree(self, synced_repo, layer_root):
        """Test dot segments that stay inside the committed tree are resolved."""
        layer = layer_root / "app"

        synced_repo.link_data(layer, "addons/./other/../app")

        assert os.readlink(layer) == os.path.join(synced_repo.get_data_path(), "addons", "app")

    def test_before_first_sync(self, root_path, descriptor, fake_fetcher, layer_root):
        """Test linking fails while nothing has been committed."""
        repo = Repo(
            "a/b", descriptor, root_path=str(root_path), client=MagicMock(), fetcher=fake_fetcher
        )

        with pytest.raises(LinkValidationError):
            repo.link_data(layer_root / "app", "addons/app")

    def test_link_survives_resync(self, synced_repo, layer_root, fake_fetcher):
        """Test a link resolves to the new snapshot after a resync."""
        layer = layer_root / "app"
        synced_repo.link_data(layer, "addons/app")
        fake_fetcher.payload = build_tarball({"addons/app/deploy.yaml": b"kind: StatefulSet\n"})

        synced_repo.sync()

        assert (layer / "deploy.yaml").read_bytes() == b"kind: StatefulSet\n"
