"""Tests for importing local images into cluster nodes."""

from __future__ import annotations

import io
import tarfile
from datetime import datetime

import pytest
from conftest import FakeRuntime

from pyk3d.errors import NotFoundError, ProvisionError, ValidationError
from pyk3d.images.importer import (
    ImageImporter,
    pack_file,
    split_image_args,
    tarball_name,
)
from pyk3d.models import CreateOptions

STAMP = datetime(2024, 5, 1, 12, 30, 0)
NGINX = "k3d-demo-images-20240501123000-nginx_1.25.tar"
REDIS = "k3d-demo-images-20240501123000-redis_7.tar"


@pytest.fixture()
def importer(runtime: FakeRuntime) -> ImageImporter:
    runtime.images["nginx:1.25"] = b"nginx-image"
    runtime.images["redis:7"] = b"redis-image"
    return ImageImporter(runtime, _clock=lambda: STAMP)


class TestHelpers:
    def test_split_image_args(self):
        assert split_image_args(["nginx:1.25,redis:7", "busybox"]) == [
            "nginx:1.25", "redis:7", "busybox",
        ]

    def test_split_skips_empty_parts(self):
        assert split_image_args(["nginx:1.25,", " ,redis:7"]) == ["nginx:1.25", "redis:7"]

    def test_tarball_name(self):
        assert tarball_name("demo", "docker.io/library/nginx:1.25", "20240501123000") == (
            "k3d-demo-images-20240501123000-docker.io_library_nginx_1.25.tar"
        )

    def test_pack_file(self):
        with tarfile.open(fileobj=io.BytesIO(pack_file("a.tar", b"data"))) as tar:
            member = tar.getmember("a.tar")
            assert tar.extractfile(member).read() == b"data"


class TestImportImages:
    def test_imports_into_every_running_node(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=2))

        nodes = importer.import_images("demo", ["nginx:1.25,redis:7"])

        assert nodes == ["demo-server", "demo-worker-0", "demo-worker-1"]
        for node in nodes:
            assert runtime.imported[node] == [f"/images/{NGINX}", f"/images/{REDIS}"]

    def test_tarballs_removed(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=1))
        importer.import_images("demo", ["nginx:1.25"])
        assert runtime.files == {}

    def test_keep_tarball(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=1))
        importer.import_images("demo", ["nginx:1.25"], keep_tarball=True)
        assert runtime.files == {
            ("volume:k3d-demo-images", f"/images/{NGINX}"): b"nginx-image",
        }

    def test_copied_once_through_server(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=2))
        importer.import_images("demo", ["nginx:1.25"])
        copies = [name for op, name in runtime.calls if op == "container_put_archive"]
        assert copies == ["demo-server"]

    def test_added_worker_gets_own_copy(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=1))
        orchestrator.add_node("demo")

        importer.import_images("demo", ["nginx:1.25"])

        assert runtime.imported["demo-worker-0"] == [f"/images/{NGINX}"]
        assert runtime.imported["demo-worker-1"] == [f"/tmp/{NGINX}"]
        assert runtime.files == {}

    def test_stopped_workers_skipped(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=2))
        runtime.container_stop(runtime.by_name("demo-worker-1").id)

        nodes = importer.import_images("demo", ["nginx:1.25"])

        assert nodes == ["demo-server", "demo-worker-0"]
        assert "demo-worker-1" not in runtime.imported

    def test_no_images(self, importer, runtime):
        with pytest.raises(ValidationError):
            importer.import_images("demo", ["", " , "])
        assert runtime.calls == []

    def test_no_running_server(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo"))
        orchestrator.stop(name="demo")
        with pytest.raises(NotFoundError, match="running server"):
            importer.import_images("demo", ["nginx:1.25"])

    def test_missing_image_copies_nothing(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo"))
        with pytest.raises(NotFoundError, match="busybox"):
            importer.import_images("demo", ["nginx:1.25", "busybox"])
        assert not any(op == "container_put_archive" for op, _ in runtime.calls)

    def test_failed_import_still_cleans_up(self, orchestrator, importer, runtime):
        orchestrator.create(CreateOptions(name="demo", workers=2))
        runtime.exec_results[("demo-worker-0", "ctr")] = (1, "ctr: content digest mismatch")

        with pytest.raises(ProvisionError, match="demo-worker-0.*digest mismatch"):
            importer.import_images("demo", ["nginx:1.25"])

        assert runtime.files == {}
        assert "demo-worker-1" not in runtime.imported

    def test_cleanup_failure_is_a_warning(self, orchestrator, importer, runtime, caplog):
        orchestrator.create(CreateOptions(name="demo"))
        runtime.exec_results[("demo-server", "rm")] = (1, "rm: read-only file system")

        with caplog.at_level("WARNING", logger="pyk3d.images.importer"):
            assert importer.import_images("demo", ["nginx:1.25"]) == ["demo-server"]
        assert "read-only file system" in caplog.text


class TestOrchestratorImport:
    def test_delegates(self, orchestrator, runtime):
        runtime.images["nginx:1.25"] = b"nginx-image"
        orchestrator.create(CreateOptions(name="demo", workers=1))

        nodes = orchestrator.import_images("demo", ["nginx:1.25"])

        assert nodes == ["demo-server", "demo-worker-0"]
        assert len(runtime.imported["demo-worker-0"]) == 1
        assert runtime.imported["demo-worker-0"][0].startswith("/images/k3d-demo-images-")
