# repo.py -- For dealing with git mirrors
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

"""Repository access.

excise operates on complete mirrors: bare repositories as produced by
``git clone --mirror``. A mirror is an object store plus a ref set; there is
no working tree and no index.
"""

__all__ = [
    "BaseRepo",
    "MemoryRepo",
    "NotGitRepository",
    "Repo",
]

import os
from io import BytesIO
from types import TracebackType
from typing import BinaryIO

from .config import ConfigFile
from .errors import CorruptGraph
from .file import GitFile, ensure_dir_exists
from .object_store import DEFAULT_RETRIES, BaseObjectStore, DiskObjectStore, MemoryObjectStore
from .objects import ObjectID, ShaFile
from .refs import HEADREF, DictRefsContainer, DiskRefsContainer, RefsContainer

OBJECTDIR = "objects"
REFSDIR = "refs"
REFSDIR_TAGS = "tags"
REFSDIR_HEADS = "heads"

BASE_DIRECTORIES = [
    [OBJECTDIR],
    [OBJECTDIR, "info"],
    [OBJECTDIR, "pack"],
    [REFSDIR],
    [REFSDIR, REFSDIR_TAGS],
    [REFSDIR, REFSDIR_HEADS],
]


class NotGitRepository(Exception):
    """Indicates that no Git repository was found."""


class BaseRepo:
    """Base class for a git repository.

    Attributes:
      object_store: Dictionary-like object for accessing the objects
      refs: Dictionary-like object with the refs in this repository
    """

    def __init__(self, object_store: BaseObjectStore, refs: RefsContainer) -> None:
        self.object_store = object_store
        self.refs = refs

    def get_config(self) -> ConfigFile:
        """Retrieve the config object."""
        raise NotImplementedError(self.get_config)

    def get_named_file(self, path: str) -> BinaryIO | None:
        """Open a file kept in the control directory, by relative path.

        Returns: An open file object, or None if the file does not exist.
        """
        raise NotImplementedError(self.get_named_file)

    def _put_named_file(self, path: str, contents: bytes) -> None:
        """Write a file in the control directory, replacing it atomically."""
        raise NotImplementedError(self._put_named_file)

    def head(self) -> ObjectID:
        """Return the SHA1 pointed at by HEAD."""
        return self.refs[HEADREF]

    def __getitem__(self, name: bytes) -> ShaFile:
        """Retrieve an object by SHA1 or ref name."""
        if len(name) == 40:
            try:
                return self.object_store[name]
            except KeyError:
                pass
        return self.object_store[self.refs[name]]

    def __contains__(self, name: bytes) -> bool:
        if len(name) == 40:
            return name in self.object_store or name in self.refs
        return name in self.refs

    def close(self) -> None:
        self.object_store.close()

    def __enter__(self) -> "BaseRepo":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class Repo(BaseRepo):
    """A bare git repository backed by local disk.

    Args:
      root: Path to the mirror (the directory holding objects/ and refs/).
        A non-bare repository may be given too, in which case its .git
        directory is used.
      retries: Number of times failing object reads are retried; defaults
        to store.retries from the repository configuration
    """

    def __init__(self, root: str | os.PathLike[str], retries: int | None = None) -> None:
        root = os.fspath(root)
        if os.path.isdir(os.path.join(root, ".git", OBJECTDIR)):
            self._controldir = os.path.join(root, ".git")
        elif os.path.isdir(os.path.join(root, OBJECTDIR)) and os.path.isdir(
            os.path.join(root, REFSDIR)
        ):
            self._controldir = root
        else:
            raise NotGitRepository(f"No git repository was found at {root}")
        self.path = root
        if os.path.exists(os.path.join(self._controldir, "shallow")):
            raise CorruptGraph(f"{root} is a shallow clone; a complete mirror is required")
        if retries is None:
            retries = self.get_config().get_int((b"store",), "retries", DEFAULT_RETRIES)
        object_store = DiskObjectStore(
            os.path.join(self._controldir, OBJECTDIR),
            retries=DEFAULT_RETRIES if retries is None else retries,
        )
        super().__init__(object_store, DiskRefsContainer(self._controldir))

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    def controldir(self) -> str:
        """Return the path of the control directory."""
        return self._controldir

    def config_path(self) -> str:
        return os.path.join(self._controldir, "config")

    def get_named_file(self, path: str) -> BinaryIO | None:
        try:
            return open(os.path.join(self.controldir(), path), "rb")
        except FileNotFoundError:
            return None

    def _put_named_file(self, path: str, contents: bytes) -> None:
        filename = os.path.join(self.controldir(), path)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            f.write(contents)

    def get_config(self) -> ConfigFile:
        """Retrieve the config object.

        Returns: ConfigFile object for the ``config`` file in the mirror;
            an empty configuration if there is none.
        """
        path = self.config_path()
        try:
            return ConfigFile.from_path(path)
        except FileNotFoundError:
            ret = ConfigFile()
            ret.path = path
            return ret

    @classmethod
    def init_bare(cls, path: str | os.PathLike[str], mkdir: bool = False) -> "Repo":
        """Create a new bare repository.

        Args:
          path: Path to create bare repository in
          mkdir: Whether to create the directory first
        Returns: a `Repo` instance
        """
        path = os.fspath(path)
        if mkdir:
            os.mkdir(path)
        for d in BASE_DIRECTORIES:
            ensure_dir_exists(os.path.join(path, *d))
        with open(os.path.join(path, "HEAD"), "wb") as f:
            f.write(b"ref: refs/heads/master\n")
        config = ConfigFile()
        config.set(("core",), "repositoryformatversion", "0")
        config.set(("core",), "bare", True)
        config.write_to_path(os.path.join(path, "config"))
        return cls(path)


class MemoryRepo(BaseRepo):
    """Repo that stores refs, objects, and named files in memory.

    MemoryRepos are always bare: they have no working tree and no index, since
    those have a stronger dependency on the filesystem.
    """

    def __init__(self) -> None:
        super().__init__(MemoryObjectStore(), DictRefsContainer({}))
        self._config = ConfigFile()
        self._named_files: dict[str, bytes] = {}

    def get_config(self) -> ConfigFile:
        return self._config

    def get_named_file(self, path: str) -> BinaryIO | None:
        contents = self._named_files.get(path)
        if contents is None:
            return None
        return BytesIO(contents)

    def _put_named_file(self, path: str, contents: bytes) -> None:
        self._named_files[path] = contents

    @classmethod
    def init_bare(
        cls, objects: list[ShaFile], refs: dict[bytes, bytes]
    ) -> "MemoryRepo":
        """Create a new bare repository in memory.

        Args:
          objects: Objects for the new repository
          refs: Refs as dictionary, mapping names to object SHA1s
        """
        ret = cls()
        for obj in objects:
            ret.object_store.add_object(obj)
        for refname, sha in refs.items():
            if sha.startswith(b"ref: "):
                ret.refs.set_symbolic_ref(refname, sha[5:])  # type: ignore[attr-defined]
            else:
                ret.refs.add_if_new(refname, sha)
        return ret
