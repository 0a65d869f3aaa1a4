import dataclasses
import hashlib
import typing

import dacite
import yaml

import paths
import stemcell.model

PublishingCfg = stemcell.model.PublishingCfg
StemcellRecord = stemcell.model.StemcellRecord


def publishing_cfg(
    cfg_name: str='default',
    cfg_file=paths.publishing_cfg_path,
) -> PublishingCfg:
    with open(cfg_file) as f:
        parsed = yaml.safe_load(f)

    for cfg in parsed:
        cfg = dacite.from_dict(
            data_class=PublishingCfg,
            data=cfg,
            config=dacite.Config(strict=True),
        )
        if cfg.name == cfg_name:
            return cfg
    else:
        raise ValueError(f'not found: {cfg_name=}')


def sha1_hexdigest(path: str, chunk_size: int=1024 * 1024) -> str:
    digest = hashlib.sha1()
    with open(path, 'rb') as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


def stemcell_record(raw: dict) -> StemcellRecord:
    '''
    deserialises a stemcell record (as stored in catalog)
    '''
    return dacite.from_dict(
        data_class=StemcellRecord,
        data=raw,
    )


def stemcell_record_as_yaml(record: StemcellRecord) -> bytes:
    return yaml.safe_dump(dataclasses.asdict(record)).encode('utf-8')


def as_str(value: typing.Any) -> typing.Any:
    # numbers are accepted where strings are expected (e.g. `version: 2`)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value
