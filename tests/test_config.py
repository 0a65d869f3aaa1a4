"""Tests for the publishing-cfg and enumeration of configured clouds."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

import paths
import stemcell.backends
import stemcell.model as sm
import stemcell.util


PUBLISHING_CFG = textwrap.dedent('''\
    - name: default
      catalog:
        bucket_name: catalog
      targets:
      - platform: aws
        name: aws-eu
        aws_cfg_name: publishing
        region: eu-central-1
        image_bucket: images
      - platform: openstack
        name: openstack-eu
        auth_url: https://identity.example.com/v3
        domain: stemcells
        region: eu-de-1
        project_name: stemcells
        username: publisher
      - platform: gcp
        name: gcp
        gcp_project: stemcells
        gcp_bucket_name: images
    - name: empty
      catalog:
        bucket_name: other-catalog
        prefix: custom
''')


@pytest.fixture
def cfg_file(tmp_path: Path) -> str:
    path = tmp_path / 'publishing-cfg.yaml'
    path.write_text(PUBLISHING_CFG)
    return str(path)


def test_publishing_cfg(cfg_file):
    cfg = stemcell.util.publishing_cfg(cfg_name='default', cfg_file=cfg_file)

    assert cfg.catalog == sm.CatalogCfg(bucket_name='catalog')
    assert [type(t) for t in cfg.targets] == [
        sm.PublishingTargetAWS,
        sm.PublishingTargetOpenstack,
        sm.PublishingTargetGCP,
    ]
    assert cfg.targets[1].password_env == 'OS_PASSWORD'


def test_publishing_cfg_without_targets(cfg_file):
    cfg = stemcell.util.publishing_cfg(cfg_name='empty', cfg_file=cfg_file)

    assert cfg.targets == []
    assert cfg.catalog.prefix == 'custom'


def test_unknown_publishing_cfg(cfg_file):
    with pytest.raises(ValueError):
        stemcell.util.publishing_cfg(cfg_name='absent', cfg_file=cfg_file)


def test_shipped_publishing_cfg_is_valid():
    cfg = stemcell.util.publishing_cfg(cfg_file=paths.publishing_cfg_path)

    assert {t.platform for t in cfg.targets} == {'aws', 'gcp', 'openstack'}


def test_configured_backends_keep_declaration_order(cfg_file):
    cfg = stemcell.util.publishing_cfg(cfg_file=cfg_file)

    backends = stemcell.backends.configured_backends(
        cfg,
        driver_factory=lambda target: f'driver-for-{target.name}',
    )

    assert backends == (
        sm.Backend(id='aws-eu', driver='driver-for-aws-eu'),
        sm.Backend(id='openstack-eu', driver='driver-for-openstack-eu'),
        sm.Backend(id='gcp', driver='driver-for-gcp'),
    )


def test_configured_backends_filtered_by_name(cfg_file):
    cfg = stemcell.util.publishing_cfg(cfg_file=cfg_file)

    backends = stemcell.backends.configured_backends(
        cfg, names=('gcp', 'aws-eu'), driver_factory=lambda target: None,
    )

    assert [b.id for b in backends] == ['aws-eu', 'gcp']

    with pytest.raises(ValueError):
        stemcell.backends.configured_backends(
            cfg, names=('azure',), driver_factory=lambda target: None,
        )


def test_duplicate_backend_ids_are_rejected(cfg_file):
    cfg = stemcell.util.publishing_cfg(cfg_file=cfg_file)
    cfg.targets.append(cfg.targets[2])

    with pytest.raises(ValueError):
        stemcell.backends.configured_backends(cfg, driver_factory=lambda target: None)


def test_image_drivers_are_created_per_platform(cfg_file):
    import stemcell.aws
    import stemcell.gcp
    import stemcell.openstack_image

    cfg = stemcell.util.publishing_cfg(cfg_file=cfg_file)

    drivers = [b.driver for b in stemcell.backends.configured_backends(cfg)]

    assert [type(d) for d in drivers] == [
        stemcell.aws.AwsImageMaker,
        stemcell.openstack_image.OpenstackImageUploader,
        stemcell.gcp.GcpImageMaker,
    ]
