import os

repo_root = os.path.abspath(os.path.dirname(__file__))

if os.environ.get('STEMCELL_PUBLISHING_CFG'):
    publishing_cfg_path = os.path.abspath(os.environ.get('STEMCELL_PUBLISHING_CFG'))
else:
    publishing_cfg_path = os.path.join(repo_root, 'publishing-cfg.yaml')
