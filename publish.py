#!/usr/bin/env python3

'''
Publishes a stemcell (a VM-image archive) to all configured clouds.

For each cloud, the stemcell's image is created through the cloud's image driver, and a
record referencing the resulting image is saved to the stemcell catalog.
'''

import copy
import functools
import logging
import tempfile
import typing

import cleanup
import stemcell.archive
import stemcell.download
import stemcell.model as sm
import stemcell.progress
import stemcell.util

logger = logging.getLogger(__name__)

stage_title = 'Update stemcell'


class StemcellUpload:
    def __init__(
        self,
        stemcell_path: str,
        backends: typing.Sequence[sm.Backend],
        catalog: sm.StemcellCatalog,
        remote: bool=False,
        sha1: str | None=None,
        fix: bool=False,
        continue_on_backend_failure: bool=False,
        keep_local_archive: bool=False,
        reporter=None,
        downloader: stemcell.download.Downloader=stemcell.download.download_remote_file,
        digest_func: typing.Callable[[str], str]=stemcell.util.sha1_hexdigest,
        tar_cmd: str='tar',
        tmp_dir: str | None=None,
    ):
        '''
        @param stemcell_path: local path or remote url (iff `remote` is set) of the stemcell
        @param backends: the clouds to publish to (in order)
        @param fix: if set, existing stemcell records are overwritten
        '''
        if remote:
            # file will be downloaded to stemcell_path
            self.stemcell_url = stemcell_path
            self.stemcell_path = stemcell.download.remote_stemcell_path(tmp_dir)
        else:
            # file already exists at stemcell_path
            self.stemcell_url = None
            self.stemcell_path = stemcell_path

        self.sha1 = sha1
        self.backends = tuple(backends)
        self.catalog = catalog
        self.fix = fix
        self.continue_on_backend_failure = continue_on_backend_failure
        self.keep_local_archive = keep_local_archive
        self.reporter = reporter or stemcell.progress.LoggingProgressReporter()
        self.downloader = downloader
        self.digest_func = digest_func
        self.tar_cmd = tar_cmd
        self.tmp_dir = tmp_dir

        self.state = sm.WorkflowState.INIT
        self.stemcell_dir = None
        self.descriptor: sm.StemcellDescriptor | None = None
        self.records: dict[str, sm.StemcellRecord] = {}
        self.saved_records: list[sm.StemcellRecord] = []

    def update_steps(self) -> tuple[stemcell.progress.Step, ...]:
        '''
        returns the ordered steps of this upload. Both the amount of steps declared to the
        progress-reporter, and the steps actually run are derived from this plan.
        '''
        Step = stemcell.progress.Step
        steps = []

        if self.stemcell_url:
            steps.append(Step('Downloading remote stemcell', self._download_remote_stemcell))
        if self.sha1:
            steps.append(Step('Verifying remote stemcell', self._verify_sha1))

        steps.append(Step('Extracting stemcell archive', self._extract_archive))
        steps.append(Step('Verifying stemcell manifest', self._verify_manifest))

        for backend in self.backends:
            steps.extend(self._backend_steps(backend))

        return tuple(steps)

    def _backend_steps(self, backend: sm.Backend) -> tuple[stemcell.progress.Step, ...]:
        Step = functools.partial(stemcell.progress.Step, backend_id=backend.id)

        def image_id():
            if record := self.records.get(backend.id):
                return record.image_id
            return None

        return (
            Step(
                f'Checking if this stemcell already exists on cloud {backend.id}',
                functools.partial(self._find_or_create_record, backend),
            ),
            Step(
                lambda: f'Uploading stemcell {self._name_and_version()} to the cloud {backend.id}',
                functools.partial(self._create_image, backend),
            ),
            Step(
                lambda: f'Save stemcell {self._name_and_version()} ({image_id()}) for cloud {backend.id}',
                functools.partial(self._save_record, backend),
            ),
        )

    def _name_and_version(self) -> str:
        if not self.descriptor:
            return '<unknown>'
        return f'{self.descriptor.name}/{self.descriptor.version}'

    def perform(self) -> str:
        logger.info('Processing update stemcell')

        try:
            with cleanup.TemporaryPaths() as tmp_paths:
                if self.stemcell_url or not self.keep_local_archive:
                    tmp_paths.register(self.stemcell_path)
                self.stemcell_dir = tmp_paths.register(
                    tempfile.mkdtemp(prefix='stemcell', dir=self.tmp_dir)
                )

                failures = stemcell.progress.run_plan(
                    title=stage_title,
                    plan=self.update_steps(),
                    reporter=self.reporter,
                    continue_on_backend_failure=self.continue_on_backend_failure,
                    continuable_errors=(sm.StemcellPublishingError,),
                )
                if failures:
                    raise sm.BackendPublicationFailed(failures)
        except Exception:
            self.state = sm.WorkflowState.FAILED
            raise

        self.state = sm.WorkflowState.DONE
        return self.descriptor.locator()

    def _download_remote_stemcell(self):
        self.state = sm.WorkflowState.RESOLVING
        stemcell.download.fetch_stemcell(
            locator=self.stemcell_url,
            file_path=self.stemcell_path,
            downloader=self.downloader,
        )

    def _verify_sha1(self):
        self.state = sm.WorkflowState.VERIFYING
        stemcell.archive.verify_sha1(
            file_path=self.stemcell_path,
            expected_sha1=self.sha1,
            digest_func=self.digest_func,
        )

    def _extract_archive(self):
        self.state = sm.WorkflowState.EXTRACTING
        stemcell.archive.extract_archive(
            archive_path=self.stemcell_path,
            target_dir=self.stemcell_dir,
            tar_cmd=self.tar_cmd,
        )

    def _verify_manifest(self):
        self.state = sm.WorkflowState.MANIFEST_VALIDATING
        self.descriptor = stemcell.archive.read_manifest(self.stemcell_dir)

    def _find_or_create_record(self, backend: sm.Backend):
        self.state = sm.WorkflowState.PUBLISHING
        name = self.descriptor.name
        version = self.descriptor.version

        record = self.catalog.find_record(name, version, backend.id, absent_ok=True)
        if record:
            if not self.fix:
                raise sm.DuplicateRecordExists(name=name, version=version, backend_id=backend.id)
            logger.warning(
                f"Stemcell '{name}/{version}' already exists on cloud {backend.id} "
                f'({record.image_id=}) - will re-publish'
            )
        else:
            record = sm.StemcellRecord.from_descriptor(self.descriptor, backend_id=backend.id)

        self.records[backend.id] = record

    def _create_image(self, backend: sm.Backend):
        try:
            image_id = backend.driver.create_image(
                self.descriptor.image_path,
                copy.deepcopy(self.descriptor.cloud_properties),
            )
        except Exception as e:
            raise sm.BackendImageCreationFailed(backend_id=backend.id, cause=e) from e

        if not image_id:
            raise sm.BackendImageCreationFailed(
                backend_id=backend.id,
                cause=ValueError('cloud returned an empty image-id'),
            )

        logger.info(f'Cloud created stemcell for cloud {backend.id}: {image_id}')
        self.records[backend.id] = self.records[backend.id].with_image_id(image_id)

    def _save_record(self, backend: sm.Backend):
        record = self.records[backend.id]
        try:
            self.catalog.save_record(record)
        except Exception as e:
            raise sm.CatalogSaveFailed(backend_id=backend.id, cause=e) from e
        self.saved_records.append(record)


def publish_stemcell(
    stemcell_path: str,
    backends: typing.Sequence[sm.Backend],
    catalog: sm.StemcellCatalog,
    **kwargs,
) -> str:
    '''
    publishes the given stemcell to all given clouds. see `StemcellUpload` for supported
    keyword-arguments.

    returns the stemcell's locator (`/stemcells/<name>/<version>`)
    '''
    return StemcellUpload(
        stemcell_path=stemcell_path,
        backends=backends,
        catalog=catalog,
        **kwargs,
    ).perform()
