"""Shared test fixtures: stemcell archives, and fakes for clouds, catalog and downloader."""

from __future__ import annotations

import hashlib
import io
import shutil
import tarfile
from pathlib import Path

import pytest
import yaml

import stemcell.model as sm
import stemcell.progress


DEFAULT_MANIFEST = {
    'name': 'bosh-ubuntu',
    'version': 2,
    'sha1': 'abc123',
}


def write_stemcell_archive(
    path: Path,
    manifest: dict | None = None,
    raw_manifest: str | None = None,
    image: bytes | None = b'fake-disk-image',
) -> Path:
    """Write a gzipped tarball containing `stemcell.MF` and (optionally) `image`."""
    if raw_manifest is None:
        raw_manifest = yaml.safe_dump(DEFAULT_MANIFEST if manifest is None else manifest)

    def add(tar: tarfile.TarFile, name: str, content: bytes):
        info = tarfile.TarInfo(name=name)
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))

    with tarfile.open(path, 'w:gz') as tar:
        add(tar, sm.manifest_file_name, raw_manifest.encode('utf-8'))
        if image is not None:
            add(tar, sm.image_file_name, image)

    return path


def sha1_of(path: Path) -> str:
    return hashlib.sha1(path.read_bytes()).hexdigest()


class FakeDriver:
    def __init__(self, backend_id: str, calls: list, error: Exception | None = None):
        self.backend_id = backend_id
        self.calls = calls
        self.error = error
        self.created = []

    def create_image(self, image_path: str, cloud_properties: dict) -> str:
        self.calls.append(('create_image', self.backend_id))
        assert Path(image_path).is_file()
        if self.error:
            raise self.error
        image_id = f'{self.backend_id}-image-{len(self.created) + 1}'
        self.created.append((image_path, cloud_properties, image_id))
        return image_id


class FakeCatalog:
    def __init__(self, calls: list | None = None, save_error: Exception | None = None):
        self.records: dict[tuple[str, str, str], sm.StemcellRecord] = {}
        self.calls = calls if calls is not None else []
        self.save_error = save_error

    def add(self, record: sm.StemcellRecord):
        self.records[(record.name, record.version, record.backend_id)] = record

    def find_record(self, name, version, backend_id, absent_ok=False):
        self.calls.append(('find_record', backend_id))
        record = self.records.get((name, version, backend_id))
        if record is None and not absent_ok:
            raise sm.StemcellNotFound(f'{name}/{version}')
        return record

    def save_record(self, record: sm.StemcellRecord):
        self.calls.append(('save_record', record.backend_id))
        if self.save_error:
            raise self.save_error
        assert record.image_id
        self.add(record)


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Directory all temporary paths of an upload are created in."""
    path = tmp_path / 'work'
    path.mkdir()
    return path


@pytest.fixture
def archive_dir(tmp_path: Path) -> Path:
    path = tmp_path / 'archives'
    path.mkdir()
    return path


@pytest.fixture
def make_archive(archive_dir: Path):
    """Factory fixture: write a stemcell archive and return its path."""
    counter = iter(range(1000))

    def _factory(**kwargs) -> Path:
        return write_stemcell_archive(archive_dir / f'stemcell-{next(counter)}.tgz', **kwargs)

    return _factory


@pytest.fixture
def catalog(calls) -> FakeCatalog:
    return FakeCatalog(calls=calls)


@pytest.fixture
def make_backends(calls):
    """Factory fixture: build backends (with fake drivers) for the given ids."""

    def _factory(*backend_ids: str, failing: dict[str, Exception] | None = None):
        failing = failing or {}
        return tuple(
            sm.Backend(
                id=backend_id,
                driver=FakeDriver(backend_id, calls, error=failing.get(backend_id)),
            )
            for backend_id in backend_ids
        )

    return _factory


@pytest.fixture
def reporter() -> stemcell.progress.LoggingProgressReporter:
    return stemcell.progress.LoggingProgressReporter()


@pytest.fixture
def copying_downloader():
    """A downloader fetching `fake://<path>` locators by copying local files."""
    fetched = []

    def _download(locator: str, destination: str):
        source = locator[len('fake://'):]
        shutil.copyfile(source, destination)
        fetched.append((locator, destination))

    _download.fetched = fetched
    return _download
