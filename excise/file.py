# file.py -- Lock-file protected writes
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

"""Safe access to git files.

Every write to a file in a mirror (loose objects, loose refs, packed-refs,
audit reports) goes through a lock file so that a crash in the middle of a
rewrite never leaves a half-written file behind.
"""

__all__ = [
    "FileLocked",
    "GitFile",
    "LockedFile",
    "ensure_dir_exists",
]

import os
import warnings
from types import TracebackType
from typing import IO

PathLike = str | bytes | os.PathLike[str] | os.PathLike[bytes]

LOCK_SUFFIX = ".lock"


def ensure_dir_exists(dirname: PathLike) -> None:
    os.makedirs(dirname, exist_ok=True)


class FileLocked(Exception):
    """Somebody else holds the lock file of a file we want to write."""

    def __init__(self, filename: PathLike, lockfilename: str | bytes) -> None:
        self.filename = filename
        self.lockfilename = lockfilename
        super().__init__(filename, lockfilename)


def GitFile(
    filename: PathLike,
    mode: str = "rb",
    bufsize: int = -1,
    mask: int = 0o644,
    fsync: bool = True,
) -> "IO[bytes] | LockedFile":
    """Open a file in a mirror.

    Reads go straight to the file. Writes go to a lock file that replaces
    the target when closed.

    Args:
      filename: Path to the file
      mode: "rb" or "wb"
      bufsize: Buffer size passed on to the file object
      mask: Permissions of a newly written file
      fsync: Whether written data is synced to disk before the rename
    Raises:
      OSError: for any other mode
      FileLocked: if the lock file already exists
    """
    if mode == "rb":
        return open(filename, mode, bufsize)
    if mode == "wb":
        return LockedFile(filename, mode, bufsize, mask, fsync)
    raise OSError(f"unsupported mode for git files: {mode!r}")


class LockedFile:
    """Writer for a file foo that writes to foo.lock.

    close() renames the lock file over foo, abort() throws it away. Leaving
    the context manager does the former, or the latter if an exception was
    raised. One of them must be called for the lock to be released.
    """

    def __init__(
        self,
        filename: PathLike,
        mode: str,
        bufsize: int,
        mask: int,
        fsync: bool = True,
    ) -> None:
        self._filename = os.fspath(filename)
        if isinstance(self._filename, bytes):
            self._lockfilename: str | bytes = self._filename + os.fsencode(
                LOCK_SUFFIX
            )
        else:
            self._lockfilename = self._filename + LOCK_SUFFIX
        self._fsync = fsync
        flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)
        try:
            fd = os.open(self._lockfilename, flags, mask)
        except FileExistsError as exc:
            raise FileLocked(filename, self._lockfilename) from exc
        self._file = os.fdopen(fd, mode, bufsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> int:
        return self._file.write(data)

    def abort(self) -> None:
        """Release the lock without touching the target. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._file.close()
        try:
            os.remove(self._lockfilename)
        except FileNotFoundError:
            pass

    def close(self) -> None:
        """Move the written data into place and release the lock.

        Raises:
          OSError: if the target could not be replaced; the lock is released
            regardless
        """
        if self._closed:
            return
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())
        self._file.close()
        try:
            os.replace(self._lockfilename, self._filename)
        finally:
            self.abort()

    def __enter__(self) -> "LockedFile":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            warnings.warn(f"unclosed {self!r}", ResourceWarning, stacklevel=2)
            self.abort()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self._filename!r}>"
