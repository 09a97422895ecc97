# object_store.py -- Object store for git objects
# Copyright (C) 2026 The excise authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# excise is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Git object store interfaces and implementation.

The object store is content addressed: an object is stored under the SHA-1 of
its serialization, so writing the same object twice is a no-op and existing
content is never overwritten.
"""

__all__ = [
    "DEFAULT_RETRIES",
    "PACKDIR",
    "BaseObjectStore",
    "DiskObjectStore",
    "MemoryObjectStore",
    "OverlayObjectStore",
]

import logging
import os
import threading
import time
import zlib
from collections.abc import Callable, Iterable, Iterator
from typing import TypeVar

from .errors import ObjectFormatException, ObjectNotFound, StoreUnavailable
from .file import FileLocked, GitFile, ensure_dir_exists
from .objects import (
    ObjectID,
    ShaFile,
    hex_to_filename,
    read_loose_object_header,
    sha_to_hex,
    valid_hexsha,
)
from .pack import Pack, iter_pack_basenames

logger = logging.getLogger(__name__)

INFODIR = "info"
PACKDIR = "pack"

# Loose objects are immutable once written.
PACK_MODE = 0o444

DEFAULT_RETRIES = 3

R = TypeVar("R")


class BaseObjectStore:
    """Object store interface."""

    def contains_loose(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by SHA1 and is loose."""
        raise NotImplementedError(self.contains_loose)

    def contains_packed(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by SHA1 and is packed."""
        raise NotImplementedError(self.contains_packed)

    def __contains__(self, sha: ObjectID) -> bool:
        """Check if a particular object is present by SHA1.

        This method makes no distinction between loose and packed objects.
        """
        return self.contains_loose(sha) or self.contains_packed(sha)

    @property
    def packs(self) -> list[Pack]:
        """Iterable of pack objects."""
        raise NotImplementedError

    def get_raw(self, name: ObjectID) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        Raises:
          ObjectNotFound: if the object is not present
        """
        raise NotImplementedError(self.get_raw)

    def __getitem__(self, sha: ObjectID) -> ShaFile:
        """Obtain an object by SHA1."""
        type_num, uncomp = self.get_raw(sha)
        return ShaFile.from_raw_string(type_num, uncomp, sha=sha)

    def get(self, sha: ObjectID) -> ShaFile:
        """Obtain an object by SHA1.

        Unlike dict.get, this never returns a default.

        Raises:
          ObjectNotFound: if the object is not present
        """
        return self[sha]

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over the SHAs that are present in this store."""
        raise NotImplementedError(self.__iter__)

    def add_object(self, obj: ShaFile) -> ObjectID:
        """Add a single object to this object store.

        Returns: the identity of the object
        """
        raise NotImplementedError(self.add_object)

    def add_objects(self, objects: Iterable[ShaFile]) -> list[ObjectID]:
        """Add a set of objects to this object store."""
        return [self.add_object(obj) for obj in objects]

    def add_loose_object(self, obj: ShaFile) -> ObjectID:
        """Write an object outside of any pack."""
        return self.add_object(obj)

    def get_object_size(self, sha: ObjectID) -> int:
        """Return the size of the body of an object.

        Backends that can read it from the object header do so without
        inflating the whole object.
        """
        return len(self.get_raw(sha)[1])

    def get_object_type(self, sha: ObjectID) -> int:
        """Return the numeric type of an object."""
        return self.get_raw(sha)[0]

    def delete_object(self, sha: ObjectID) -> bool:
        """Delete the loose copy of an object.

        Returns: True if a loose object was removed
        """
        raise NotImplementedError(self.delete_object)

    def iter_loose_objects(self) -> Iterator[ObjectID]:
        """Iterate over the SHAs of all loose objects."""
        raise NotImplementedError(self.iter_loose_objects)

    def remove_pack(self, pack: Pack) -> None:
        """Remove a pack from this store."""
        raise NotImplementedError(self.remove_pack)

    def close(self) -> None:
        """Close any files opened by this object store."""


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory."""

    def __init__(self) -> None:
        self._data: dict[ObjectID, ShaFile] = {}
        self._lock = threading.Lock()

    def contains_loose(self, sha: ObjectID) -> bool:
        return sha in self._data

    def contains_packed(self, sha: ObjectID) -> bool:
        return False

    def __iter__(self) -> Iterator[ObjectID]:
        return iter(list(self._data.keys()))

    @property
    def packs(self) -> list[Pack]:
        return []

    def get_raw(self, name: ObjectID) -> tuple[int, bytes]:
        obj = self[name]
        return obj.type_num, obj.as_raw_string()

    def __getitem__(self, name: ObjectID) -> ShaFile:
        try:
            return self._data[name].copy()
        except KeyError:
            raise ObjectNotFound(name) from None

    def __delitem__(self, name: ObjectID) -> None:
        """Delete an object from this store, for testing only."""
        del self._data[name]

    def add_object(self, obj: ShaFile) -> ObjectID:
        """Add a single object to this object store."""
        sha = obj.id
        with self._lock:
            if sha not in self._data:
                self._data[sha] = obj.copy()
        return sha

    def delete_object(self, sha: ObjectID) -> bool:
        with self._lock:
            return self._data.pop(sha, None) is not None

    def iter_loose_objects(self) -> Iterator[ObjectID]:
        return iter(self)


class DiskObjectStore(BaseObjectStore):
    """Git-style object store that exists on disk.

    Objects are written loose. Packs are only ever read, and removed as a
    whole by the compactor.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = 0.05,
        fsync_object_files: bool = False,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store.
          retries: Number of times a failing read is retried
          retry_delay: Initial delay between retries, doubled each time
          fsync_object_files: Whether to fsync loose objects when writing
        """
        self.path = os.fspath(path)
        self.pack_dir = os.path.join(self.path, PACKDIR)
        self.retries = retries
        self.retry_delay = retry_delay
        self.fsync_object_files = fsync_object_files
        self._pack_cache: dict[str, Pack] = {}
        self._pack_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    def _retry(self, func: Callable[..., R], *args: object) -> R:
        """Call func, retrying transient I/O failures.

        FileNotFoundError is never retried: a missing file is an answer, not a
        failure.
        """
        delay = self.retry_delay
        attempt = 0
        while True:
            try:
                return func(*args)
            except FileNotFoundError:
                raise
            except OSError as exc:
                attempt += 1
                if attempt > self.retries:
                    raise StoreUnavailable(self.path, exc) from exc
                logger.warning(
                    "Retrying read in %s after error (%d/%d): %s",
                    self.path,
                    attempt,
                    self.retries,
                    exc,
                )
                time.sleep(delay)
                delay *= 2

    def _update_pack_cache(self) -> list[Pack]:
        """Read and iterate over new pack files and cache them."""
        with self._pack_lock:
            basenames = set(iter_pack_basenames(self.pack_dir))
            new_packs = []
            for basename in sorted(basenames):
                if basename not in self._pack_cache:
                    try:
                        pack = self._retry(
                            Pack, basename, self._resolve_ext_ref
                        )
                    except FileNotFoundError:
                        continue
                    new_packs.append(pack)
                    self._pack_cache[basename] = pack
            # Remove disappeared pack files
            for basename in set(self._pack_cache) - basenames:
                self._pack_cache.pop(basename).close()
            return new_packs

    @property
    def packs(self) -> list[Pack]:
        """List with pack objects."""
        self._update_pack_cache()
        return list(self._pack_cache.values())

    def _resolve_ext_ref(self, raw_sha: bytes) -> tuple[int, bytes]:
        # Delta bases outside of the pack may be loose or in another pack.
        return self.get_raw(sha_to_hex(raw_sha))

    def _get_shafile_path(self, sha: ObjectID) -> str:
        return hex_to_filename(self.path, sha)

    def _get_loose_object(self, sha: ObjectID) -> ShaFile | None:
        path = self._get_shafile_path(sha)
        try:
            return self._retry(ShaFile.from_path, path, sha)
        except FileNotFoundError:
            return None
        except zlib.error as exc:
            raise ObjectFormatException(f"corrupt loose object {path}: {exc}") from exc

    def contains_loose(self, sha: ObjectID) -> bool:
        return os.path.exists(self._get_shafile_path(sha))

    def _find_pack(self, sha: ObjectID, rescan: bool = True) -> Pack | None:
        """Find the pack holding an object.

        Cached packs are tried first; the pack directory is only rescanned
        when none of them has the object and rescan is set.
        """
        with self._pack_lock:
            cached = list(self._pack_cache.values())
        for pack in cached:
            if sha in pack:
                return pack
        if not rescan:
            return None
        for pack in self._update_pack_cache():
            if sha in pack:
                return pack
        return None

    def contains_packed(self, sha: ObjectID) -> bool:
        return self._find_pack(sha) is not None

    def iter_loose_objects(self) -> Iterator[ObjectID]:
        try:
            bases = sorted(os.listdir(self.path))
        except FileNotFoundError:
            return
        for base in bases:
            if len(base) != 2:
                continue
            try:
                rests = sorted(os.listdir(os.path.join(self.path, base)))
            except NotADirectoryError:
                continue
            for rest in rests:
                sha = os.fsencode(base + rest)
                if not valid_hexsha(sha):
                    continue
                yield sha

    def __iter__(self) -> Iterator[ObjectID]:
        seen: set[ObjectID] = set()
        for pack in self.packs:
            for sha in pack:
                if sha not in seen:
                    seen.add(sha)
                    yield sha
        for sha in self.iter_loose_objects():
            if sha not in seen:
                seen.add(sha)
                yield sha

    def get_raw(self, name: ObjectID) -> tuple[int, bytes]:
        """Obtain the raw fulltext for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        """
        if not valid_hexsha(name):
            raise ObjectNotFound(name)
        ret = self._get_loose_object(name)
        if ret is not None:
            return ret.type_num, ret.as_raw_string()
        pack = self._find_pack(name)
        if pack is None:
            raise ObjectNotFound(name)
        try:
            return self._retry(pack.get_raw, name)
        except zlib.error as exc:
            raise ObjectFormatException(
                f"corrupt packed object {name!r} in {pack.basename}: {exc}"
            ) from exc

    def _get_header(self, sha: ObjectID) -> tuple[int, int]:
        path = self._get_shafile_path(sha)

        def _read_header() -> tuple[int, int]:
            with open(path, "rb") as f:
                return read_loose_object_header(f.read)

        try:
            return self._retry(_read_header)
        except FileNotFoundError:
            pass
        pack = self._find_pack(sha)
        if pack is None:
            raise ObjectNotFound(sha)
        return self._retry(pack.get_object_size, sha)

    def get_object_size(self, sha: ObjectID) -> int:
        """Return the size of an object body, reading only its header."""
        return self._get_header(sha)[1]

    def get_object_type(self, sha: ObjectID) -> int:
        return self._get_header(sha)[0]

    def add_object(self, obj: ShaFile) -> ObjectID:
        """Add a single object to this object store.

        Args:
          obj: Object to add
        Returns: the identity of the object
        """
        sha = obj.id
        # Freshly created objects are rarely packed; a loose duplicate of a
        # packed object is harmless and dropped by the next compaction.
        if self.contains_loose(sha) or self._find_pack(sha, rescan=False):
            return sha  # Already there, no need to write again
        return self.add_loose_object(obj)

    def add_loose_object(self, obj: ShaFile) -> ObjectID:
        """Write an object loose, even if a packed copy exists."""
        sha = obj.id
        path = self._get_shafile_path(sha)
        if os.path.exists(path):
            return sha  # Already there, no need to write again
        try:
            ensure_dir_exists(os.path.dirname(path))
            with GitFile(path, "wb", mask=PACK_MODE, fsync=self.fsync_object_files) as f:
                f.write(obj.as_legacy_object())
        except FileLocked:
            # Someone else is writing the same content.
            logger.debug("Object %s is being written concurrently", sha)
        except FileExistsError:
            pass
        except OSError as exc:
            raise StoreUnavailable(self.path, exc) from exc
        return sha

    def delete_object(self, sha: ObjectID) -> bool:
        """Delete a loose object from disk.

        Packed copies are not affected; see remove_pack.
        """
        try:
            os.remove(self._get_shafile_path(sha))
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreUnavailable(self.path, exc) from exc
        return True

    def remove_pack(self, pack: Pack) -> None:
        with self._pack_lock:
            self._pack_cache.pop(pack.basename, None)
        pack.remove()

    def close(self) -> None:
        with self._pack_lock:
            for pack in self._pack_cache.values():
                pack.close()
            self._pack_cache.clear()

    @classmethod
    def init(cls, path: str | os.PathLike[str], **kwargs: object) -> "DiskObjectStore":
        """Initialize a new disk object store.

        Creates the necessary directory structure for a Git object store.
        """
        path = os.fspath(path)
        ensure_dir_exists(path)
        ensure_dir_exists(os.path.join(path, INFODIR))
        ensure_dir_exists(os.path.join(path, PACKDIR))
        return cls(path, **kwargs)  # type: ignore[arg-type]


class OverlayObjectStore(BaseObjectStore):
    """Object store that reads from a base store and writes elsewhere.

    Used for dry runs: everything a rewrite writes ends up in ``add_store``
    while the base store is only read.
    """

    def __init__(
        self, base: BaseObjectStore, add_store: BaseObjectStore | None = None
    ) -> None:
        self.base = base
        self.add_store = add_store if add_store is not None else MemoryObjectStore()

    def contains_loose(self, sha: ObjectID) -> bool:
        return self.add_store.contains_loose(sha) or self.base.contains_loose(sha)

    def contains_packed(self, sha: ObjectID) -> bool:
        return self.base.contains_packed(sha)

    @property
    def packs(self) -> list[Pack]:
        return self.base.packs

    def __iter__(self) -> Iterator[ObjectID]:
        done = set()
        for store in (self.add_store, self.base):
            for sha in store:
                if sha not in done:
                    yield sha
                    done.add(sha)

    def get_raw(self, name: ObjectID) -> tuple[int, bytes]:
        if name in self.add_store:
            return self.add_store.get_raw(name)
        return self.base.get_raw(name)

    def get_object_size(self, sha: ObjectID) -> int:
        if sha in self.add_store:
            return self.add_store.get_object_size(sha)
        return self.base.get_object_size(sha)

    def get_object_type(self, sha: ObjectID) -> int:
        if sha in self.add_store:
            return self.add_store.get_object_type(sha)
        return self.base.get_object_type(sha)

    def add_object(self, obj: ShaFile) -> ObjectID:
        if obj.id in self.base:
            return obj.id
        return self.add_store.add_object(obj)
