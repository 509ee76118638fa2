"""Tests for the HTTP tarball fetcher."""

import tarfile
import time

import httpx
import pytest

from src.artifacts.errors import FetchError, UnpackError
from src.artifacts.tar_consumer import TarConsumer, unpack_tar
from src.common.context import OperationContext
from tests.factories import build_tarball, snapshot_tree


ARTIFACT_URL = "http://source-controller/gitrepository/a/b/latest.tar.gz"


def make_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestFetchBytes:
    """Tests for TarConsumer.fetch_bytes."""

    def test_fetch(self):
        """Test the body of a successful response is returned."""
        payload = build_tarball({"a.yaml": b"a"})
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, content=payload)

        consumer = TarConsumer(make_client(handler), ARTIFACT_URL)

        assert consumer.fetch_bytes(OperationContext.background().with_timeout(5)) == payload
        assert requested == [ARTIFACT_URL]

    def test_set_url(self):
        """Test set_url changes the requested URL."""
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, content=b"x")

        consumer = TarConsumer(make_client(handler))
        consumer.set_url("http://mirror.local/gitrepository/a/b/latest.tar.gz")
        consumer.fetch_bytes(OperationContext.background())

        assert consumer.url == "http://mirror.local/gitrepository/a/b/latest.tar.gz"
        assert requested == ["http://mirror.local/gitrepository/a/b/latest.tar.gz"]

    def test_error_status(self):
        """Test non-2xx responses raise FetchError."""
        consumer = TarConsumer(make_client(lambda request: httpx.Response(404)), ARTIFACT_URL)

        with pytest.raises(FetchError) as exc_info:
            consumer.fetch_bytes(OperationContext.background())

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == ARTIFACT_URL

    def test_transport_error(self):
        """Test transport failures are wrapped."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        consumer = TarConsumer(make_client(handler), ARTIFACT_URL)

        with pytest.raises(FetchError) as exc_info:
            consumer.fetch_bytes(OperationContext.background())

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_cancelled_context(self):
        """Test a cancelled context aborts before any request."""
        requested = []

        def handler(request):
            requested.append(request)
            return httpx.Response(200, content=b"x")

        ctx = OperationContext.background()
        ctx.cancel()
        consumer = TarConsumer(make_client(handler), ARTIFACT_URL)

        with pytest.raises(FetchError):
            consumer.fetch_bytes(ctx)
        assert requested == []

    def test_expired_deadline(self):
        """Test an expired deadline aborts the fetch."""
        consumer = TarConsumer(
            make_client(lambda request: httpx.Response(200, content=b"x")), ARTIFACT_URL
        )

        with pytest.raises(FetchError):
            consumer.fetch_bytes(OperationContext(deadline=time.monotonic() - 1))

    def test_no_url(self):
        """Test fetching without a URL fails."""
        consumer = TarConsumer(make_client(lambda request: httpx.Response(200)))

        with pytest.raises(FetchError):
            consumer.fetch_bytes(OperationContext.background())


class TestUnpackTar:
    """Tests for unpack_tar."""

    def test_unpack_gzip(self, tmp_path):
        """Test a gzipped archive is extracted into a new directory."""
        dest = tmp_path / "load" / "a" / "b"

        unpack_tar(build_tarball({"addons/app/deploy.yaml": b"kind: Deployment\n"}), dest)

        assert snapshot_tree(dest) == {"addons/app/deploy.yaml": b"kind: Deployment\n"}

    def test_unpack_plain_tar(self, tmp_path):
        """Test uncompressed archives are accepted."""
        unpack_tar(build_tarball({"a.yaml": b"a"}, gzip=False), tmp_path)

        assert (tmp_path / "a.yaml").read_bytes() == b"a"

    def test_consumer_unpack(self, tmp_path):
        """Test TarConsumer.unpack delegates to unpack_tar."""
        consumer = TarConsumer(make_client(lambda request: httpx.Response(200)))

        consumer.unpack(build_tarball({"a.yaml": b"a"}), tmp_path / "out")

        assert (tmp_path / "out" / "a.yaml").exists()

    @pytest.mark.parametrize("name", ["../escape.yaml", "addons/../../escape.yaml", "/etc/escape.yaml"])
    def test_unsafe_member(self, tmp_path, name):
        """Test traversal and absolute members are rejected before extraction."""
        dest = tmp_path / "dest"
        data = build_tarball({"ok.yaml": b"ok", name: b"evil"})

        with pytest.raises(UnpackError):
            unpack_tar(data, dest)

        assert not (dest / "ok.yaml").exists()
        assert not (tmp_path / "escape.yaml").exists()

    def test_corrupt_archive(self, tmp_path):
        """Test garbage bytes raise UnpackError."""
        with pytest.raises(UnpackError) as exc_info:
            unpack_tar(b"this is not a tarball", tmp_path)

        assert isinstance(exc_info.value.__cause__, tarfile.TarError)

    def test_truncated_archive(self, tmp_path):
        """Test a truncated gzip stream raises UnpackError."""
        data = build_tarball({"a.yaml": b"a" * 4096})

        with pytest.raises(UnpackError):
            unpack_tar(data[: len(data) // 2], tmp_path / "dest")
