import logging

import stemcell.model as sm

logger = logging.getLogger(__name__)


def image_driver(target) -> sm.ImageDriver:
    '''
    returns the image driver for the given publishing target. drivers create their
    (authenticated) clients lazily.
    '''
    if target.platform == 'aws':
        import stemcell.aws
        return stemcell.aws.AwsImageMaker(target)
    elif target.platform == 'gcp':
        import stemcell.gcp
        return stemcell.gcp.GcpImageMaker(target)
    elif target.platform == 'openstack':
        import stemcell.openstack_image
        return stemcell.openstack_image.OpenstackImageUploader(target)
    else:
        raise ValueError(f'do not know how to publish to {target.platform=}')


def configured_backends(
    publishing_cfg: sm.PublishingCfg,
    names: tuple[str, ...] | None=None,
    driver_factory=image_driver,
) -> tuple[sm.Backend, ...]:
    '''
    returns all clouds configured in the given publishing-cfg (in declaration order),
    optionally restricted to the given target names
    '''
    seen = set()
    backends = []

    for target in publishing_cfg.targets:
        if target.name in seen:
            raise ValueError(f'duplicate publishing target {target.name=}')
        seen.add(target.name)

        if names and target.name not in names:
            continue

        backends.append(sm.Backend(id=target.name, driver=driver_factory(target)))

    if names and (unknown := set(names) - seen):
        raise ValueError(f'unknown publishing targets: {unknown}. known: {seen}')

    logger.info(f'found {len(backends)} configured cloud(s): {[b.id for b in backends]}')
    return tuple(backends)
