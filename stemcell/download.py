import logging
import os
import tempfile
import typing
import uuid

import botocore.exceptions
import requests

import stemcell.model
import stemcell.s3

logger = logging.getLogger(__name__)

# disable verbose connection-logging from urllib3 (used by requests)
logging.getLogger('urllib3').setLevel(logging.WARNING)

Downloader = typing.Callable[[str, str], typing.Any]


def download_remote_file(
    locator: str,
    file_path: str,
    timeout_seconds: int=600,
):
    '''
    downloads the resource referenced by `locator` to `file_path`.

    supported are `s3://<bucket>/<key>` (using the default aws-credentials) and
    `http(s)://` urls.
    '''
    if locator.startswith('s3://'):
        bucket_name, s3_key = stemcell.s3.parse_s3_url(locator)
        stemcell.s3.download_file(
            s3_client=stemcell.s3.s3_client_for_aws_cfg_name(None),
            bucket_name=bucket_name,
            s3_key=s3_key,
            file_path=file_path,
        )
        return

    if not locator.startswith(('http://', 'https://')):
        raise ValueError(f'do not know how to download {locator=}')

    with requests.get(locator, stream=True, timeout=timeout_seconds) as resp:
        resp.raise_for_status()
        with open(file_path, 'wb') as f:
            for chunk in resp.iter_content(chunk_size=1024 * 1024):
                f.write(chunk)


def remote_stemcell_path(tmp_dir: str | None=None) -> str:
    tmp_dir = tmp_dir or tempfile.gettempdir()
    return os.path.join(tmp_dir, f'stemcell-{uuid.uuid4()}')


def fetch_stemcell(
    locator: str,
    file_path: str,
    downloader: Downloader=download_remote_file,
) -> str:
    # strip query (may contain credentials, e.g. for presigned urls)
    loggable_locator = locator.split('?')[0]
    logger.info(f'downloading remote stemcell from {loggable_locator} to {file_path=}')

    try:
        downloader(locator, file_path)
    except (
        OSError,
        ValueError,
        requests.RequestException,
        botocore.exceptions.BotoCoreError,
        botocore.exceptions.ClientError,
    ) as e:
        raise stemcell.model.FetchFailed(loggable_locator, str(e)) from e

    if not os.path.isfile(file_path):
        raise stemcell.model.FetchFailed(loggable_locator, f'no file at {file_path=}')

    logger.info(f'downloaded remote stemcell ({os.path.getsize(file_path)} octets)')
    return file_path
