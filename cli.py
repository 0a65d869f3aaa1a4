#!/usr/bin/env python3

import argparse
import logging
import os
import sys

import paths
import publish
import stemcell.backends
import stemcell.model
import stemcell.s3
import stemcell.util

logger = logging.getLogger('stemcell-cli')


def _add_publishing_cfg_args(
    parser: argparse.ArgumentParser,
    default='default',
):
    parser.add_argument('--cfg-name', default=default)
    parser.add_argument(
        '--cfg-file',
        default=paths.publishing_cfg_path,
        help='publishing-cfg to read from, default: \'%(default)s\'',
    )


def _publishing_cfg(parsed) -> stemcell.model.PublishingCfg:
    return stemcell.util.publishing_cfg(
        cfg_name=parsed.cfg_name,
        cfg_file=parsed.cfg_file,
    )


def upload_stemcell(argv=None):
    parser = argparse.ArgumentParser(
        description='publish a stemcell to all configured clouds',
    )
    parser.add_argument(
        'stemcell',
        help='local path or (with --remote) url (s3:// or http(s)://) of the stemcell archive',
    )
    parser.add_argument(
        '--remote',
        action='store_true',
        default=False,
        help='download the stemcell from the given url',
    )
    parser.add_argument(
        '--sha1',
        default=None,
        help='expected sha1 digest of the stemcell archive',
    )
    parser.add_argument(
        '--fix',
        action='store_true',
        default=False,
        help='re-publish stemcells, even if already present according to stemcell catalog',
    )
    parser.add_argument(
        '--continue-on-backend-failure',
        action='store_true',
        default=False,
        help='continue with remaining clouds if publishing to a cloud fails',
    )
    parser.add_argument(
        '--keep-archive',
        action='store_true',
        default=False,
        help='do not remove the (local) stemcell archive after processing',
    )
    parser.add_argument(
        '--backend',
        action='append',
        dest='backends',
        default=[],
        help='if set, only specified clouds will be published to (default: publish to all)',
    )
    _add_publishing_cfg_args(parser)

    parsed = parser.parse_args(argv)

    if not parsed.remote and not os.path.isfile(parsed.stemcell):
        logger.fatal(f'not an existing file: {parsed.stemcell}')
        sys.exit(1)

    cfg = _publishing_cfg(parsed)
    backends = stemcell.backends.configured_backends(
        publishing_cfg=cfg,
        names=tuple(parsed.backends),
    )
    catalog = stemcell.s3.catalog_for_cfg(cfg.catalog)

    try:
        locator = publish.publish_stemcell(
            stemcell_path=parsed.stemcell,
            backends=backends,
            catalog=catalog,
            remote=parsed.remote,
            sha1=parsed.sha1,
            fix=parsed.fix,
            continue_on_backend_failure=parsed.continue_on_backend_failure,
            keep_local_archive=parsed.keep_archive,
        )
    except stemcell.model.StemcellPublishingError as e:
        logger.error(f'publishing stemcell failed: {e}')
        sys.exit(1)

    print(locator)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )
    upload_stemcell()


if __name__ == '__main__':
    main()
