"""
File helpers that let callers read and write paths without caring where they live.

Only the local filesystem is implemented. Object store URIs are recognised so
callers get a clear error instead of a confusing "file not found".
"""

import glob
import os
from typing import BinaryIO, List

from .utils import ConfigError, DevSugarException

FILE_SCHEME = 'file'
GCS_SCHEME = 'gs'

# Mode for directories created by new_writer.
USER_GROUP_ALL_PERM = 0o770


class FileHelper(object):
    '''Interface for reading and writing files on some filesystem.'''

    def exists(self, path: str) -> bool:
        raise NotImplementedError()

    def new_reader(self, path: str) -> BinaryIO:
        raise NotImplementedError()

    def new_writer(self, path: str) -> BinaryIO:
        """
        Create a new writer.

        If the path already exists the file is truncated; callers that don't
        want to overwrite should call exists() first.
        """
        raise NotImplementedError()


class DirectoryHelper(FileHelper):

    def glob(self, pattern: str) -> List[str]:
        raise NotImplementedError()

    def join(self, *elem: str) -> str:
        raise NotImplementedError()


class LocalFileHelper(DirectoryHelper):
    '''FileHelper for the local disk. Accepts plain paths and file:// URIs.'''

    @staticmethod
    def _strip_scheme(uri: str) -> str:
        prefix = FILE_SCHEME + '://'
        if uri.startswith(prefix):
            return uri[len(prefix):]
        return uri

    def new_reader(self, uri: str) -> BinaryIO:
        path = self._strip_scheme(uri)
        try:
            return open(path, 'rb')
        except OSError as e:
            raise DevSugarException('Could not read: %s: %s' % (uri, e)) from e

    def new_writer(self, uri: str) -> BinaryIO:
        path = self._strip_scheme(uri)
        directory = os.path.dirname(path)
        if directory and not os.path.isdir(directory):
            try:
                os.makedirs(directory, mode=USER_GROUP_ALL_PERM, exist_ok=True)
            except OSError as e:
                raise DevSugarException('Could not create directory: %s: %s' % (directory, e)) from e
        try:
            return open(path, 'wb')
        except OSError as e:
            raise DevSugarException('Could not write: %s: %s' % (uri, e)) from e

    def exists(self, uri: str) -> bool:
        return os.path.exists(self._strip_scheme(uri))

    def glob(self, pattern: str) -> List[str]:
        return sorted(glob.glob(self._strip_scheme(pattern)))

    def join(self, *elem: str) -> str:
        return os.path.join(*elem)


def get_file_helper(uri: str) -> FileHelper:
    """
    Return the FileHelper able to handle uri.

    Raises:
        ConfigError: for object store URIs, which aren't supported.
    """
    if uri.startswith(GCS_SCHEME + '://'):
        raise ConfigError('Object storage URIs are not supported: %s' % (uri,))
    return LocalFileHelper()


def read_file(uri: str) -> bytes:
    """Read the full contents of uri."""
    with get_file_helper(uri).new_reader(uri) as reader:
        return reader.read()
