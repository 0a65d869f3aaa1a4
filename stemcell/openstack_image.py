import functools
import logging
import os
import uuid
from datetime import datetime
from time import sleep

from openstack import connect

import stemcell.model

logger = logging.getLogger(__name__)

# disable verbose logging from openstacksdk
logging.getLogger('openstack').setLevel(logging.WARNING)


class OpenstackImageUploader:
    """OpenstackImageUploader is a client to upload stemcell images to Openstack Glance."""

    def __init__(self, target: stemcell.model.PublishingTargetOpenstack):
        self.target = target

    @functools.lru_cache
    def _get_connection(self):
        return connect(
            auth_url=self.target.auth_url,
            project_name=self.target.project_name,
            username=self.target.username,
            password=os.environ.get(self.target.password_env),
            region_name=self.target.region,
            user_domain_name=self.target.domain,
            project_domain_name=self.target.domain,
        )

    def upload_image_from_fs(
        self,
        name: str,
        path: str,
        disk_format: str,
        container_format: str,
        properties: dict,
        timeout_seconds=86400,
    ) -> str:
        """Upload an image from filesystem to Openstack Glance."""

        logger.info(
            f'Uploading image {name} for region {self.target.region} '
            f'({self.target.project_name}) with timeout of {timeout_seconds} seconds'
        )

        conn = self._get_connection()
        image = conn.image.create_image(
            name=name,
            filename=path,
            disk_format=disk_format,
            container_format=container_format,
            visibility=self.target.visibility,
            timeout=timeout_seconds,
            properties=properties,
        )
        return image['id']

    def wait_image_ready(self, image_id: str, wait_interval_seconds=10, timeout=3600):
        """Wait until an image get in ready state."""

        conn = self._get_connection()
        start_time = datetime.now()
        while True:
            if (datetime.now()-start_time).total_seconds() > timeout:
                raise RuntimeError(
                    f'Timeout for waiting image to get ready in {self.target.region} '
                    f'({self.target.project_name}) reached.'
                )
            image = conn.image.get_image(image_id)
            if image['status'] in ('queued', 'saving', 'importing'):
                logger.info(
                    f'Image not yet ready in region {self.target.region} '
                    f'({self.target.project_name})'
                )
                sleep(wait_interval_seconds)
                continue
            if image['status'] == 'active':
                logger.info(f"Image is ready in region {self.target.region}: {image_id=}")
                return
            raise RuntimeError(
                f"Image upload to Glance failed in region {self.target.region} due "
                f"to image status {image['status']}"
            )

    def create_image(self, image_path: str, cloud_properties: dict) -> str:
        cloud_properties = dict(cloud_properties)
        name = cloud_properties.pop('name', None) or _image_name()
        disk_format = cloud_properties.pop('disk_format', 'qcow2')
        container_format = cloud_properties.pop('container_format', 'bare')

        image_id = self.upload_image_from_fs(
            name=name,
            path=image_path,
            disk_format=disk_format,
            container_format=container_format,
            properties=_image_properties(cloud_properties),
        )
        self.wait_image_ready(image_id)
        return image_id


def _image_name() -> str:
    return f'stemcell-{uuid.uuid4()}'


def _image_properties(cloud_properties: dict) -> dict:
    # glance accepts flat string-properties, only
    return {
        key: str(value) for key, value in cloud_properties.items()
        if not isinstance(value, (dict, list))
    }
