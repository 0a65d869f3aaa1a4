import logging
import os
import subprocess
import typing

import yaml

import stemcell.model as sm
import stemcell.util

logger = logging.getLogger(__name__)


def verify_sha1(
    file_path: str,
    expected_sha1: str,
    digest_func: typing.Callable[[str], str]=stemcell.util.sha1_hexdigest,
):
    actual_sha1 = digest_func(file_path)
    if actual_sha1 != expected_sha1:
        raise sm.IntegrityMismatch(expected=expected_sha1, actual=actual_sha1)
    logger.info(f'stemcell sha1 matches: {actual_sha1=}')


def extract_archive(
    archive_path: str,
    target_dir: str,
    tar_cmd: str='tar',
):
    result = subprocess.run(
        args=[tar_cmd, '-C', target_dir, '-xzf', archive_path],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    if result.returncode != 0:
        logger.error(
            f'Extracting stemcell archive failed in dir {target_dir}, '
            f'tar returned {result.returncode}, output: {result.stdout}'
        )
        raise sm.ArchiveExtractionFailed(
            exit_status=result.returncode,
            output=result.stdout,
        )


def safe_property(
    manifest: dict,
    key: str,
    cls: type,
    optional: bool=False,
    default=None,
):
    '''
    returns the value for `key` from the given manifest, checking it is of type `cls`.

    absent (or null) values are an error, unless `optional` is set (in which case `default`
    is returned).
    '''
    value = manifest.get(key)
    if value is None:
        if optional:
            return default
        raise sm.ManifestFieldMissing(field=key, expected_type=cls)

    if cls is str:
        value = stemcell.util.as_str(value)

    if not isinstance(value, cls):
        raise sm.ManifestFieldTypeMismatch(
            field=key,
            expected_type=cls,
            actual_type=type(value),
        )
    return value


def read_manifest(stemcell_dir: str) -> sm.StemcellDescriptor:
    manifest_path = os.path.join(stemcell_dir, sm.manifest_file_name)
    if not os.path.isfile(manifest_path):
        raise sm.ManifestInvalid(f'stemcell manifest not found: {sm.manifest_file_name}')

    # passed as bytes, so yaml detects the encoding (utf-8 or utf-16 w/ BOM)
    with open(manifest_path, 'rb') as f:
        try:
            manifest = yaml.safe_load(f)
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise sm.ManifestInvalid(f'failed to parse stemcell manifest: {e}') from e

    if not isinstance(manifest, dict):
        raise sm.ManifestInvalid(
            f'expected stemcell manifest to be a mapping, got {type(manifest).__name__}'
        )

    name = safe_property(manifest, 'name', cls=str)
    operating_system = safe_property(
        manifest,
        'operating_system',
        cls=str,
        optional=True,
        default=name,
    )
    version = safe_property(manifest, 'version', cls=str)
    cloud_properties = safe_property(
        manifest,
        'cloud_properties',
        cls=dict,
        optional=True,
        default={},
    )
    sha1 = safe_property(manifest, 'sha1', cls=str)

    logger.info(
        f"Found stemcell image '{name}/{version}', "
        f'cloud properties are {cloud_properties!r}'
    )

    logger.info('Verifying stemcell image')
    image_path = os.path.join(stemcell_dir, sm.image_file_name)
    if not os.path.isfile(image_path):
        raise sm.ImagePayloadMissing('Stemcell image not found')

    return sm.StemcellDescriptor(
        name=name,
        operating_system=operating_system,
        version=version,
        sha1=sha1,
        image_path=image_path,
        cloud_properties=cloud_properties,
    )
