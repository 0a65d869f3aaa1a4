import functools
import logging
import time
import uuid

import stemcell.model
import stemcell.s3

logger = logging.getLogger(__name__)

# disable verbose http-logging from botocore
logging.getLogger('botocore').setLevel(logging.WARNING)


def import_snapshot(
    ec2_client,
    s3_bucket_name: str,
    image_key: str,
    disk_format: str='raw',
    polling_interval_seconds: int=15,
) -> str:
    '''
    imports the given image (previously uploaded to s3) as EBS snapshot, and waits for the
    import to complete. returns the snapshot-id
    '''
    import_task_id = ec2_client.import_snapshot(
        DiskContainer={
            'Format': disk_format,
            'UserBucket': {
                'S3Bucket': s3_bucket_name,
                'S3Key': image_key,
            },
        },
    )['ImportTaskId']

    logger.info(f'started snapshot import {import_task_id=}')

    while True:
        resp = ec2_client.describe_import_snapshot_tasks(ImportTaskIds=(import_task_id,))
        detail = resp['ImportSnapshotTasks'][0]['SnapshotTaskDetail']
        status = detail['Status']

        if status == 'completed':
            snapshot_id = detail['SnapshotId']
            logger.info(f'snapshot import done: {snapshot_id=}')
            return snapshot_id
        if status in ('deleting', 'deleted'):
            raise RuntimeError(
                f'snapshot import {import_task_id=} failed: {detail.get("StatusMessage")}'
            )

        logger.info(f'{import_task_id=} not yet done: {status=} {detail.get("Progress", "?")}%')
        time.sleep(polling_interval_seconds)


def register_image(
    ec2_client,
    snapshot_id: str,
    image_name: str,
    cloud_properties: dict,
) -> str:
    root_device_name = cloud_properties.get('root_device_name', '/dev/xvda')

    image_id = ec2_client.register_image(
        Name=image_name,
        Architecture=cloud_properties.get('architecture', 'x86_64'),
        BootMode=cloud_properties.get('boot_mode', 'uefi-preferred'),
        BlockDeviceMappings=[
            {
                'DeviceName': root_device_name,
                'Ebs': {
                    'DeleteOnTermination': True,
                    'SnapshotId': snapshot_id,
                    'VolumeType': cloud_properties.get('volume_type', 'gp3'),
                },
            },
        ],
        EnaSupport=True,
        RootDeviceName=root_device_name,
        VirtualizationType='hvm',
    )['ImageId']

    logger.info(f'registered {image_id=} ({image_name=}) - waiting for it to become available')
    ec2_client.get_waiter('image_available').wait(ImageIds=[image_id])

    return image_id


class AwsImageMaker:
    def __init__(self, target: stemcell.model.PublishingTargetAWS):
        self.target = target

    @functools.cached_property
    def session(self):
        return stemcell.s3.session(aws_cfg=self.target.aws_cfg_name, region=self.target.region)

    def create_image(self, image_path: str, cloud_properties: dict) -> str:
        image_name = cloud_properties.get('name') or f'stemcell-{uuid.uuid4()}'
        image_key = f'stemcell-images/{image_name}'

        s3_client = self.session.client('s3')
        ec2_client = self.session.client('ec2')

        logger.info(f'uploading image to s3://{self.target.image_bucket}/{image_key}')
        stemcell.s3.upload_file(
            s3_client=s3_client,
            bucket_name=self.target.image_bucket,
            s3_key=image_key,
            file_path=image_path,
        )

        try:
            snapshot_id = import_snapshot(
                ec2_client=ec2_client,
                s3_bucket_name=self.target.image_bucket,
                image_key=image_key,
                disk_format=cloud_properties.get('disk_format', 'raw'),
            )
            return register_image(
                ec2_client=ec2_client,
                snapshot_id=snapshot_id,
                image_name=image_name,
                cloud_properties=cloud_properties,
            )
        finally:
            logger.info(f'removing temporary object {image_key=}')
            s3_client.delete_object(Bucket=self.target.image_bucket, Key=image_key)
