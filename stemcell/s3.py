import io
import logging
import os

import boto3
import botocore.client
import botocore.exceptions
import yaml

import stemcell.model
import stemcell.util

logger = logging.getLogger(__name__)


def session(aws_cfg: str | None=None, region: str | None=None) -> boto3.Session:
    return boto3.Session(profile_name=aws_cfg, region_name=region)


def s3_client_for_aws_cfg_name(aws_cfg_name: str | None, region: str | None=None):
    return session(aws_cfg_name, region).client('s3')


def parse_s3_url(url: str) -> tuple[str, str]:
    '''
    splits an url of the form `s3://<bucket>/<key>` into bucket name and key
    '''
    if not url.startswith('s3://'):
        raise ValueError(f'not an s3-url: {url=}')
    bucket_name, _, key = url[len('s3://'):].partition('/')
    if not bucket_name or not key:
        raise ValueError(f'expected s3://<bucket>/<key>, got {url=}')
    return bucket_name, key


def download_file(
    s3_client: botocore.client.BaseClient,
    bucket_name: str,
    s3_key: str,
    file_path: str,
) -> str:
    file_path = os.path.abspath(os.path.realpath(file_path))
    s3_client.download_file(
        Bucket=bucket_name,
        Key=s3_key,
        Filename=file_path,
    )
    return file_path


def upload_file(
    s3_client: botocore.client.BaseClient,
    bucket_name: str,
    s3_key: str,
    file_path: str,
):
    s3_client.upload_file(
        Filename=file_path,
        Bucket=bucket_name,
        Key=s3_key,
    )


def _is_absent(e: botocore.exceptions.ClientError) -> bool:
    return str(e.response['Error']['Code']) in ('404', 'NoSuchKey')


class S3StemcellCatalog:
    """Stemcell catalog persisting one YAML document per (name, version, cloud) in a S3 bucket."""

    def __init__(
        self,
        s3_client: botocore.client.BaseClient,
        bucket_name: str,
        prefix: str='stemcells',
    ):
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.prefix = prefix

    def record_key(self, name: str, version: str, backend_id: str) -> str:
        return f'{self.prefix}/{name}/{version}/{backend_id}.yaml'

    def find_record(
        self,
        name: str,
        version: str,
        backend_id: str,
        absent_ok: bool=False,
    ) -> stemcell.model.StemcellRecord | None:
        key = self.record_key(name=name, version=version, backend_id=backend_id)
        buf = io.BytesIO()
        try:
            self.s3_client.download_fileobj(
                Bucket=self.bucket_name,
                Key=key,
                Fileobj=buf,
            )
        except botocore.exceptions.ClientError as e:
            if not _is_absent(e):
                raise e
            if absent_ok:
                return None
            raise stemcell.model.StemcellNotFound(
                f"Stemcell '{name}/{version}' not found for cloud {backend_id}"
            ) from e

        buf.seek(0)
        return stemcell.util.stemcell_record(yaml.safe_load(buf))

    def save_record(self, record: stemcell.model.StemcellRecord):
        if not record.image_id:
            raise ValueError(f'refusing to save stemcell record without image-id: {record=}')

        key = self.record_key(
            name=record.name,
            version=record.version,
            backend_id=record.backend_id,
        )
        record_fobj = io.BytesIO(initial_bytes=stemcell.util.stemcell_record_as_yaml(record))
        self.s3_client.upload_fileobj(
            Fileobj=record_fobj,
            Bucket=self.bucket_name,
            Key=key,
            ExtraArgs={
                'ContentType': 'text/yaml',
                'ContentEncoding': 'utf-8',
            },
        )
        logger.info(f'saved stemcell record to s3://{self.bucket_name}/{key}')


def catalog_for_cfg(catalog_cfg: stemcell.model.CatalogCfg) -> S3StemcellCatalog:
    return S3StemcellCatalog(
        s3_client=s3_client_for_aws_cfg_name(catalog_cfg.aws_cfg_name, catalog_cfg.region),
        bucket_name=catalog_cfg.bucket_name,
        prefix=catalog_cfg.prefix,
    )
