"""Tests for the GCP image driver (with fake storage and compute clients)."""

from __future__ import annotations

from pathlib import Path

import pytest

import stemcell.gcp
import stemcell.model as sm


class FakeBlob:
    def __init__(self, bucket, name: str):
        self.bucket = bucket
        self.name = name
        self.uploaded = None
        self.deleted = False

    def upload_from_filename(self, filename, content_type, timeout):
        self.uploaded = filename

    def delete(self):
        self.deleted = True


class FakeBucket:
    def __init__(self, name: str):
        self.name = name
        self.blobs = []

    def blob(self, name: str) -> FakeBlob:
        blob = FakeBlob(self, name)
        self.blobs.append(blob)
        return blob


class FakeStorageClient:
    def __init__(self):
        self.buckets = {}

    def get_bucket(self, name: str) -> FakeBucket:
        return self.buckets.setdefault(name, FakeBucket(name))


class FakeRequest:
    def __init__(self, response: dict):
        self.response = response

    def execute(self):
        return self.response


class FakeImages:
    def __init__(self):
        self.inserted = []

    def insert(self, project, body):
        self.inserted.append((project, body))
        return FakeRequest({'name': 'operation-1'})


class FakeGlobalOperations:
    def __init__(self, responses):
        self.responses = list(responses)
        self.waits = 0

    def wait(self, project, operation):
        self.waits += 1
        return FakeRequest(self.responses.pop(0))


class FakeComputeClient:
    def __init__(self, *wait_responses):
        self._images = FakeImages()
        self._operations = FakeGlobalOperations(wait_responses)

    def images(self):
        return self._images

    def globalOperations(self):
        return self._operations


@pytest.fixture
def image_file(tmp_path: Path) -> str:
    path = tmp_path / 'image'
    path.write_bytes(b'fake-disk-image')
    return str(path)


def _image_maker(compute_client) -> stemcell.gcp.GcpImageMaker:
    maker = stemcell.gcp.GcpImageMaker(
        sm.PublishingTargetGCP(
            name='gcp',
            gcp_project='stemcells',
            gcp_bucket_name='images',
        ),
    )
    maker.storage_client = FakeStorageClient()
    maker.compute_client = compute_client
    return maker


def _uploaded_blob(maker) -> FakeBlob:
    return maker.storage_client.get_bucket('images').blobs[0]


def test_create_image(image_file):
    compute_client = FakeComputeClient({'status': 'RUNNING'}, {'status': 'DONE'})
    maker = _image_maker(compute_client)

    image_id = maker.create_image(image_file, {'name': 'bosh-ubuntu-2', 'architecture': 'arm64'})

    assert image_id == 'bosh-ubuntu-2'
    project, body = compute_client.images().inserted[0]
    assert project == 'stemcells'
    assert body['architecture'] == 'ARM64'
    assert body['rawDisk']['source'] == (
        'https://storage.googleapis.com/images/bosh-ubuntu-2.tar.gz'
    )
    assert compute_client.globalOperations().waits == 2
    assert _uploaded_blob(maker).uploaded == image_file
    assert _uploaded_blob(maker).deleted


def test_failed_insert_operation_is_an_error(image_file):
    compute_client = FakeComputeClient(
        {'status': 'DONE', 'error': {'errors': [{'code': 'INVALID_DISK'}]}},
    )
    maker = _image_maker(compute_client)

    with pytest.raises(RuntimeError, match='INVALID_DISK'):
        maker.create_image(image_file, {'name': 'stemcell-x'})

    assert _uploaded_blob(maker).deleted


def test_insert_operation_not_done_in_time(image_file):
    compute_client = FakeComputeClient(*({'status': 'RUNNING'} for _ in range(10)))
    maker = _image_maker(compute_client)

    with pytest.raises(RuntimeError, match='timed out'):
        maker.create_image(image_file, {})

    assert compute_client.globalOperations().waits == 10
    assert _uploaded_blob(maker).deleted
