import functools
import logging
import os
import uuid

import google.cloud.storage
import google.cloud.storage.blob
import google.oauth2.service_account
import googleapiclient.discovery

import stemcell.model


logger = lambda: logging.getLogger(__name__)


def upload_image_to_gcs_bucket(
    storage_client: google.cloud.storage.Client,
    image_path: str,
    image_blob_name: str,
    gcp_bucket_name: str,
) -> google.cloud.storage.blob.Blob:
    size = os.path.getsize(image_path)
    logger().info(f'uploading image to gcp {gcp_bucket_name=} {image_blob_name=} ({size=})')

    gcp_bucket = storage_client.get_bucket(gcp_bucket_name)
    image_blob = gcp_bucket.blob(image_blob_name)
    image_blob.upload_from_filename(
        image_path,
        content_type='application/x-tar',
        timeout=600, # allow for a longer upload timeout on slow connections
    )
    logger().info(f'uploaded image to {image_blob_name=}')
    return image_blob


def insert_image_to_gce_image_store(
    compute_client,
    image_blob: google.cloud.storage.blob.Blob,
    gcp_project_name: str,
    image_name: str,
    cloud_properties: dict,
) -> str:
    images = compute_client.images()

    body = {
        'description': cloud_properties.get('description', 'bosh stemcell'),
        'name': image_name,
        'rawDisk': {
            'source': f'https://storage.googleapis.com/{image_blob.bucket.name}/{image_blob.name}',
        },
        'guestOsFeatures': [
            {'type': feature} for feature in cloud_properties.get(
                'guest_os_features',
                ('VIRTIO_SCSI_MULTIQUEUE', 'UEFI_COMPATIBLE', 'GVNIC'),
            )
        ],
    }
    if architecture := cloud_properties.get('architecture'):
        body['architecture'] = _get_gcp_compliant_architecture_identifier(architecture)

    insertion_rq = images.insert(
        project=gcp_project_name,
        body=body,
    )

    logger().info(f'inserting new image {image_name=} into project {gcp_project_name=}')

    resp = insertion_rq.execute()
    op_name = resp['name']

    logger().info(f'waiting for {op_name=}')

    operation = compute_client.globalOperations()

    # each wait returns after at most two minutes, so we allow up to 20 minutes
    max_retries = 10
    logger().info("waiting up to 20 minutes for image insert operation to complete")

    try:
        for _ in range(max_retries):
            resp = operation.wait(
                project=gcp_project_name,
                operation=op_name,
            ).execute()
            if resp.get('status') == 'DONE':
                break
            logger().info(f'{op_name=} not yet done: {resp.get("status")=}')
        else:
            raise RuntimeError(f'timed out waiting for image insert operation {op_name=}')

        if error := resp.get('error'):
            raise RuntimeError(f'image insert operation {op_name=} failed: {error}')
    finally:
        logger().info(f'removing temporary object from bucket {image_blob.name=}')
        image_blob.delete()

    logger().info(f'import done: {image_name=}')
    return image_name


def _get_gcp_compliant_architecture_identifier(arch: str):
    """
    Get proper string per architecture as documented here:
        https://cloud.google.com/compute/docs/reference/rest/v1/images/insert
        > The architecture of the image. Valid values are ARM64 or X86_64.
    """
    if arch in ('amd64', 'x86_64'):
        return 'X86_64'
    if arch in ('arm64', 'aarch64'):
        return 'ARM64'
    raise ValueError(f"Invalid architecture {arch}")


def credentials(target: stemcell.model.PublishingTargetGCP):
    if not target.service_account_key_file:
        # fallback to application default credentials
        return None

    return google.oauth2.service_account.Credentials.from_service_account_file(
        target.service_account_key_file,
    )


class GcpImageMaker:
    def __init__(self, target: stemcell.model.PublishingTargetGCP):
        self.target = target

    @functools.cached_property
    def storage_client(self) -> google.cloud.storage.Client:
        return google.cloud.storage.Client(
            project=self.target.gcp_project,
            credentials=credentials(self.target),
        )

    @functools.cached_property
    def compute_client(self):
        return googleapiclient.discovery.build(
            'compute',
            'v1',
            credentials=credentials(self.target),
        )

    def create_image(self, image_path: str, cloud_properties: dict) -> str:
        image_name = cloud_properties.get('name') or f'stemcell-{uuid.uuid4()}'
        image_blob = upload_image_to_gcs_bucket(
            storage_client=self.storage_client,
            image_path=image_path,
            image_blob_name=f'{image_name}.tar.gz',
            gcp_bucket_name=self.target.gcp_bucket_name,
        )

        return insert_image_to_gce_image_store(
            compute_client=self.compute_client,
            image_blob=image_blob,
            gcp_project_name=self.target.gcp_project,
            image_name=image_name,
            cloud_properties=cloud_properties,
        )
