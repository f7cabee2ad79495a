from abc import ABC, abstractmethod
from collections import OrderedDict
import hashlib
import logging
import os
from pathlib import Path
import struct
import tempfile
import threading
from typing import Callable, Optional
from urllib.parse import quote

import platformdirs

from .errors import IOFailure
from .model import CachedResponse, CacheExpiry, RequestDescriptor


logger = logging.getLogger(__name__)


ExpirationCallback = Callable[[RequestDescriptor], Optional[CacheExpiry]]
IncludeQueryCallback = Callable[[RequestDescriptor], bool]


class Cache(ABC):
    """
    An abstraction of a response cache.

    A response cache has a relatively narrow scope: to remember a response under a fingerprint such that it can be
    recalled later for a matching request. It does not decide when an entry is stale; the store only carries the
    expiry policy that the endpoint engine applies.

    Clients may plug in their own store by implementing `put()`, `get()`, `remove()` and `remove_all()`.
    """

    default_expiry = CacheExpiry.custom(60 * 60)
    """
    The expiry applied when `expiration_callback` is unset or returns `None`.
    """

    expiration_callback: Optional[ExpirationCallback] = None
    """
    Inspects a request and returns an expiry overriding `default_expiry`, or `None`.
    """

    include_query_callback: Optional[IncludeQueryCallback] = None
    """
    Inspects a request and decides whether its query is part of the fingerprint. Defaults to including it.
    """

    def __init__(self,
                 default_expiry: Optional[CacheExpiry] = None,
                 expiration_callback: Optional[ExpirationCallback] = None,
                 include_query_callback: Optional[IncludeQueryCallback] = None) -> None:
        if default_expiry is not None:
            self.default_expiry = default_expiry
        self.expiration_callback = expiration_callback
        self.include_query_callback = include_query_callback

    @abstractmethod
    def put(self, fingerprint: str, entry: CachedResponse) -> None:
        """
        Store an entry, replacing any entry stored under the same fingerprint.

        @param fingerprint
          The key derived from the request.
        @param entry
          The response to remember.
        """

    @abstractmethod
    def get(self, fingerprint: str) -> Optional[CachedResponse]:
        """
        Retrieve the entry stored under `fingerprint`.

        @param fingerprint
          The key derived from the request.
        @return
          The stored entry, or `None` if there is no usable one.
        """

    @abstractmethod
    def remove(self, fingerprint: str) -> None:
        """
        Delete the entry stored under `fingerprint`, if any.
        """

    @abstractmethod
    def remove_all(self) -> None:
        """
        Delete every entry.
        """

    def close(self) -> None:
        """
        Close any resources associated with the cache.
        """

    def expiry_for(self, request: RequestDescriptor) -> CacheExpiry:
        if self.expiration_callback is not None:
            expiry = self.expiration_callback(request)
            if expiry is not None:
                return expiry
        return self.default_expiry

    def fingerprint_for(self, request: RequestDescriptor) -> str:
        include_query = True
        if self.include_query_callback is not None:
            include_query = self.include_query_callback(request)
        return request.fingerprint(include_query)

    def lookup(self, request: RequestDescriptor) -> Optional[CachedResponse]:
        return self.get(self.fingerprint_for(request))

    def store(self, request: RequestDescriptor, entry: CachedResponse) -> None:
        self.put(self.fingerprint_for(request), entry)

    def discard(self, request: RequestDescriptor) -> None:
        self.remove(self.fingerprint_for(request))


class MemoryCache(Cache):
    """
    A size-bounded in-memory store. The least recently used entries are evicted first.
    """

    def __init__(self, capacity: int = 256, **kw) -> None:
        super().__init__(**kw)
        if capacity < 1:
            raise ValueError('capacity must be at least 1, got {}'.format(capacity))
        self.__capacity = capacity
        self.__entries = OrderedDict()
        self.__lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self.__capacity

    def __len__(self) -> int:
        with self.__lock:
            return len(self.__entries)

    def put(self, fingerprint: str, entry: CachedResponse) -> None:
        with self.__lock:
            logger.info('Caching response for {} in memory.'.format(fingerprint))
            self.__entries.pop(fingerprint, None)
            self.__entries[fingerprint] = entry
            while len(self.__entries) > self.__capacity:
                evicted, _ = self.__entries.popitem(last=False)
                logger.info('Evicted {} from the memory cache.'.format(evicted))

    def get(self, fingerprint: str) -> Optional[CachedResponse]:
        with self.__lock:
            entry = self.__entries.get(fingerprint)
            if entry is None:
                logger.info('No matching cache entry found for {}.'.format(fingerprint))
                return None
            self.__entries.move_to_end(fingerprint)
            logger.info('Found cache entry for {} in memory.'.format(fingerprint))
            return entry

    def remove(self, fingerprint: str) -> None:
        with self.__lock:
            self.__entries.pop(fingerprint, None)

    def remove_all(self) -> None:
        with self.__lock:
            self.__entries.clear()


_CACHEDIR_TAG_NAME = 'CACHEDIR.TAG'
_CACHEDIR_TAG = ('Signature: 8a477f597d28d172789f06886806bc55\n'
                 '# This file is a cache directory tag created by endpointer.\n'
                 '# For information about cache directory tags see https://bford.info/cachedir/\n')
_ENTRY_SUFFIX = '.entry'
_TEMP_PREFIX = '.tmp-'


class FileCache(Cache):
    """
    A durable store with one file per fingerprint.

    Entry files are named after the percent-encoded fingerprint, or `#` and its SHA-256 digest when that name is
    unusable, and end in `.entry`. Other files in the directory are never touched.

    The file holds the raw response body and its modification time is the cache timestamp. The HTTP status is kept
    as an 8-byte integer in an extended attribute of the file; where extended attributes are unavailable the status
    reads back as 200. The directory carries a CACHEDIR.TAG so that backup tools skip it.

    Any failure to read or write an entry is treated as a cache miss and the entry is removed.
    """

    status_attribute = 'user.endpointer.status'
    name_max = 255
    path_max = 1024

    def __init__(self, directory: Optional[Path] = None, **kw) -> None:
        """
        Initialize the file cache.

        @param directory
          The path to the dedicated cache directory. Defaults to the per-user cache directory of the platform.
        """
        super().__init__(**kw)
        if directory is None:
            directory = Path(platformdirs.user_cache_dir('endpointer'))
        self.__directory = Path(directory)
        self.__lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self.__directory

    def __len__(self) -> int:
        with self.__lock:
            if not self.__directory.is_dir():
                return 0
            return sum(1 for path in self.__directory.iterdir() if self._is_entry(path))

    def _is_entry(self, path: Path) -> bool:
        return path.is_file() and path.name.endswith(_ENTRY_SUFFIX) and not path.name.startswith('.')

    def _ensure_directory(self) -> Path:
        self.__directory.mkdir(parents=True, exist_ok=True)
        tag = self.__directory / _CACHEDIR_TAG_NAME
        if not tag.exists():
            tag.write_text(_CACHEDIR_TAG)
        return self.__directory

    def _get_path(self, fingerprint: str) -> Path:
        name = quote(fingerprint, safe='') + _ENTRY_SUFFIX
        # Dot files are reserved for temporary files.
        if (name.startswith('.')
                or len(name) > self.name_max
                or len(str(self.__directory)) + len(name) + 1 > self.path_max):
            # Quoting never yields '#'.
            name = '#' + hashlib.sha256(fingerprint.encode('utf-8')).hexdigest() + _ENTRY_SUFFIX
        return self.__directory / name

    def _write_status(self, path: Path, status: int) -> None:
        if not hasattr(os, 'setxattr'):
            return
        try:
            os.setxattr(path, self.status_attribute, struct.pack('<q', status))
        except OSError:
            logger.info('Extended attributes are unavailable for {}; the status will read back as 200.'.format(path))

    def _read_status(self, path: Path) -> int:
        if not hasattr(os, 'getxattr'):
            return 200
        try:
            raw = os.getxattr(path, self.status_attribute)
        except OSError:
            return 200
        if len(raw) != struct.calcsize('<q'):
            return 200
        return struct.unpack('<q', raw)[0]

    def _load_entry(self, path: Path) -> CachedResponse:
        """
        Read a cache entry from a file.

        @throws FileNotFoundError
          If there is no entry file.
        @throws IOFailure
          If the entry file exists but could not be read.
        """
        try:
            body = path.read_bytes()
            timestamp = path.stat().st_mtime
        except FileNotFoundError:
            raise
        except OSError as e:
            raise IOFailure(path, str(e)) from e
        return CachedResponse(status=self._read_status(path), body=body, timestamp=timestamp)

    def put(self, fingerprint: str, entry: CachedResponse) -> None:
        with self.__lock:
            path = self._get_path(fingerprint)
            temp_path = None
            try:
                directory = self._ensure_directory()
                logger.info('Writing cache entry to {}'.format(path))
                # The body is written next to its final location so that the rename is atomic.
                fd, temp_name = tempfile.mkstemp(dir=str(directory), prefix=_TEMP_PREFIX)
                temp_path = Path(temp_name)
                with os.fdopen(fd, 'wb') as f:
                    f.write(entry.body)
                self._write_status(temp_path, entry.status)
                os.utime(temp_path, (entry.timestamp, entry.timestamp))
                os.replace(temp_path, path)
                temp_path = None
            except OSError:
                logger.warning('Could not write the cache entry for {}. Removing it.'.format(fingerprint),
                               exc_info=True)
                self._unlink(path)
            finally:
                if temp_path is not None:
                    self._unlink(temp_path)

    def get(self, fingerprint: str) -> Optional[CachedResponse]:
        with self.__lock:
            path = self._get_path(fingerprint)
            try:
                logger.info('Looking at the file system for a cache entry at {}'.format(path))
                return self._load_entry(path)
            except IOFailure as e:
                logger.warning('Found an unreadable cache entry. Deleting {}'.format(e.path))
                self._unlink(e.path)
                return None
            except FileNotFoundError:
                logger.info('No matching cache entry found.')
                return None

    def remove(self, fingerprint: str) -> None:
        with self.__lock:
            self._unlink(self._get_path(fingerprint))

    def remove_all(self) -> None:
        with self.__lock:
            if not self.__directory.exists():
                return
            logger.info('Deleting every cache entry in {}'.format(self.__directory))
            for path in self.__directory.iterdir():
                if (self._is_entry(path)
                        or path.name == _CACHEDIR_TAG_NAME
                        or (path.name.startswith(_TEMP_PREFIX) and path.is_file())):
                    self._unlink(path)

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception('Unexpected error occurred while deleting {}'.format(path))
