#!/usr/bin/env python3

import logging
import os
import shutil

import stemcell.model as sm

logger = logging.getLogger(__name__)


def remove_path(path: str):
    '''
    removes the given file or directory (recursively). absent paths are ignored.
    '''
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)
    else:
        return
    logger.info(f'removed {path=}')


class TemporaryPaths:
    '''
    context manager removing all registered paths upon exit (regardless of whether or not
    an exception was raised). Each registered path is removed exactly once.

    failures to remove a path never mask an exception raised from within the managed block;
    if there was none, `CleanupFailed` is raised.
    '''
    def __init__(self):
        self._paths = []
        self.removed = []

    def register(self, path: str) -> str:
        if path and path not in self._paths:
            self._paths.append(path)
        return path

    def cleanup(self) -> dict[str, OSError]:
        errors = {}
        while self._paths:
            path = self._paths.pop(0)
            try:
                remove_path(path)
                self.removed.append(path)
            except OSError as e:
                logger.warning(f'failed to remove {path=}: {e}')
                errors[path] = e
        return errors

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        errors = self.cleanup()
        if errors and exc_type is None:
            raise sm.CleanupFailed(errors)
        return False
