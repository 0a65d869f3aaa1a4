from __future__ import annotations
import dataclasses
import enum
import typing


# well-known file names inside a stemcell archive
manifest_file_name = 'stemcell.MF'
image_file_name = 'image'


class StemcellPublishingError(Exception):
    pass


class FetchFailed(StemcellPublishingError):
    def __init__(self, locator: str, reason: str):
        self.locator = locator
        self.reason = reason
        super().__init__(f'downloading remote stemcell {locator} failed: {reason}')


class IntegrityMismatch(StemcellPublishingError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stemcell SHA1 '{actual}' does not match the expected SHA1 '{expected}'"
        )


class ArchiveExtractionFailed(StemcellPublishingError):
    '''
    raised if the archive tool returned a non-zero exit status. `output` is the tool's
    combined stdout/stderr (for diagnostics only).
    '''
    def __init__(self, exit_status: int, output: str):
        self.exit_status = exit_status
        self.output = output
        super().__init__(
            f'Extracting stemcell archive failed ({exit_status=}). Check debug log for details.'
        )


class ManifestInvalid(StemcellPublishingError):
    pass


class ManifestFieldMissing(ManifestInvalid):
    def __init__(self, field: str, expected_type: type=None):
        self.field = field
        self.expected_type = expected_type
        type_name = expected_type.__name__ if expected_type else 'any'
        super().__init__(f"Required property '{field}' ({type_name}) was not specified")


class ManifestFieldTypeMismatch(ManifestInvalid):
    def __init__(self, field: str, expected_type: type, actual_type: type):
        self.field = field
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            f"Property '{field}' value did not match the required type: "
            f"expected {expected_type.__name__}, got {actual_type.__name__}"
        )


class ImagePayloadMissing(StemcellPublishingError):
    pass


class DuplicateRecordExists(StemcellPublishingError):
    def __init__(self, name: str, version: str, backend_id: str):
        self.name = name
        self.version = version
        self.backend_id = backend_id
        super().__init__(f"Stemcell '{name}/{version}' already exists on cloud {backend_id}")


class StemcellNotFound(StemcellPublishingError):
    pass


class BackendImageCreationFailed(StemcellPublishingError):
    def __init__(self, backend_id: str, cause: BaseException):
        self.backend_id = backend_id
        self.cause = cause
        super().__init__(f'creating stemcell on cloud {backend_id} failed: {cause}')


class CatalogSaveFailed(StemcellPublishingError):
    def __init__(self, backend_id: str, cause: BaseException):
        self.backend_id = backend_id
        self.cause = cause
        super().__init__(f'saving stemcell record for cloud {backend_id} failed: {cause}')


class BackendPublicationFailed(StemcellPublishingError):
    '''
    raised after all backends were processed if at least one of them failed (only if
    publishing was configured to continue on backend failures).
    '''
    def __init__(self, failures: dict[str, StemcellPublishingError]):
        self.failures = failures
        details = '; '.join(f'{backend_id}: {err}' for backend_id, err in failures.items())
        super().__init__(f'publishing failed for {len(failures)} cloud(s): {details}')


class CleanupFailed(StemcellPublishingError):
    def __init__(self, errors: dict[str, OSError]):
        self.errors = errors
        super().__init__(f'failed to remove temporary paths: {", ".join(errors)}')


@dataclasses.dataclass(frozen=True)
class StemcellDescriptor:
    '''
    A stemcell as described by its manifest (`stemcell.MF`), plus the location of the
    extracted image payload.
    '''
    name: str
    operating_system: str
    version: str
    sha1: str
    image_path: str
    cloud_properties: dict = dataclasses.field(default_factory=dict)

    def locator(self) -> str:
        return f'/stemcells/{self.name}/{self.version}'


@dataclasses.dataclass(frozen=True)
class StemcellRecord:
    '''
    catalog entry for a stemcell published to exactly one cloud. `image_id` is the opaque
    handle returned by the cloud's driver (e.g. an AMI-id).
    '''
    name: str
    operating_system: str
    version: str
    sha1: str
    backend_id: str
    image_id: typing.Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: StemcellDescriptor, backend_id: str):
        return StemcellRecord(
            name=descriptor.name,
            operating_system=descriptor.operating_system,
            version=descriptor.version,
            sha1=descriptor.sha1,
            backend_id=backend_id,
        )

    def with_image_id(self, image_id: str):
        return dataclasses.replace(self, image_id=image_id)


class ImageDriver(typing.Protocol):
    def create_image(self, image_path: str, cloud_properties: dict) -> str:
        ...


class StemcellCatalog(typing.Protocol):
    def find_record(
        self,
        name: str,
        version: str,
        backend_id: str,
        absent_ok: bool=False,
    ) -> StemcellRecord | None:
        ...

    def save_record(self, record: StemcellRecord):
        ...


@dataclasses.dataclass(frozen=True)
class Backend:
    '''
    a configured cloud stemcells are published to
    '''
    id: str
    driver: ImageDriver


class WorkflowState(enum.Enum):
    INIT = 'init'
    RESOLVING = 'resolving'
    VERIFYING = 'verifying'
    EXTRACTING = 'extracting'
    MANIFEST_VALIDATING = 'manifest_validating'
    PUBLISHING = 'publishing'
    DONE = 'done'
    FAILED = 'failed'


@dataclasses.dataclass
class CatalogCfg:
    bucket_name: str
    aws_cfg_name: typing.Optional[str] = None
    region: typing.Optional[str] = None
    prefix: str = 'stemcells'


@dataclasses.dataclass
class PublishingTargetAWS:
    name: str
    aws_cfg_name: str
    region: str
    image_bucket: str
    platform: typing.Literal['aws'] = 'aws' # should not overwrite


@dataclasses.dataclass
class PublishingTargetGCP:
    name: str
    gcp_project: str
    gcp_bucket_name: str
    service_account_key_file: typing.Optional[str] = None
    platform: typing.Literal['gcp'] = 'gcp' # should not overwrite


@dataclasses.dataclass
class PublishingTargetOpenstack:
    name: str
    auth_url: str
    domain: str
    region: str
    project_name: str
    username: str
    password_env: str = 'OS_PASSWORD'
    visibility: str = 'private'
    platform: typing.Literal['openstack'] = 'openstack' # should not overwrite


@dataclasses.dataclass
class PublishingCfg:
    name: str
    catalog: CatalogCfg
    targets: list[
        typing.Union[
            PublishingTargetAWS,
            PublishingTargetGCP,
            PublishingTargetOpenstack,
        ]
    ] = dataclasses.field(default_factory=list)
