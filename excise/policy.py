# policy.py -- Deciding which blobs to remove
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

"""Match policy for blobs and folders.

A policy is a pure function of (blob identity, path, size). Patterns use
fnmatch syntax with one extension: a single level of braces expands into
alternatives, so ``*.{zip,jar}`` is the same as ``*.zip`` plus ``*.jar``.

A pattern without a slash is matched against the last path component only.
A pattern with a slash is matched against the full path from the root of the
tree, so decisions for such patterns depend on where a tree is mounted.
"""

__all__ = [
    "DEFAULT_MAX_BLOB_SIZE",
    "MatchPolicy",
    "expand_braces",
    "parse_size",
]

import posixpath
import re
from collections.abc import Iterable
from fnmatch import fnmatchcase

from .objects import ObjectID

# Hard file size limit of the common hosting platforms.
DEFAULT_MAX_BLOB_SIZE = 100_000_000

_SIZE_SUFFIXES = {b"k": 1024, b"m": 1024**2, b"g": 1024**3}

_BRACE_RE = re.compile(rb"\{([^{}]*)\}")


def parse_size(value: bytes | str) -> int:
    """Parse a size with an optional k, m or g suffix (powers of 1024).

    Raises:
      ValueError: if the value is not a valid size
    """
    if isinstance(value, str):
        value = value.encode("ascii")
    text = value.strip().lower()
    if text.endswith(b"b") and len(text) > 1 and text[-2:-1] in _SIZE_SUFFIXES:
        text = text[:-1]
    multiplier = _SIZE_SUFFIXES.get(text[-1:], 1)
    if multiplier != 1:
        text = text[:-1]
    if not text.isdigit():
        raise ValueError(f"invalid size {value!r}")
    return int(text) * multiplier


def expand_braces(pattern: bytes) -> list[bytes]:
    """Expand the first brace group of a pattern into alternatives.

    >>> expand_braces(b"*.{zip,jar}")
    [b'*.zip', b'*.jar']
    """
    m = _BRACE_RE.search(pattern)
    if m is None:
        return [pattern]
    head, tail = pattern[: m.start()], pattern[m.end() :]
    ret = []
    for alternative in m.group(1).split(b","):
        ret.extend(expand_braces(head + alternative + tail))
    return ret


def _compile(patterns: Iterable[bytes | str]) -> tuple[bytes, ...]:
    ret: list[bytes] = []
    for pattern in patterns:
        if isinstance(pattern, str):
            pattern = pattern.encode("utf-8")
        ret.extend(p.strip(b"/") if b"/" in p else p for p in expand_braces(pattern))
    return tuple(ret)


def _match_any(patterns: tuple[bytes, ...], path: bytes) -> bool:
    basename = posixpath.basename(path)
    for pattern in patterns:
        if b"/" in pattern:
            if fnmatchcase(path, pattern):
                return True
        elif fnmatchcase(basename, pattern):
            return True
    return False


class MatchPolicy:
    """Decides whether a blob or a folder is removed from history.

    Args:
      patterns: Glob patterns for files to remove
      folder_patterns: Glob patterns for folders to remove, with their contents
      max_blob_size: Remove any blob strictly larger than this, in bytes;
        None disables the size rule
      protected_blobs: Identities of blobs that are never removed
      prune_empty: Whether commits left without changes are dropped
    """

    def __init__(
        self,
        patterns: Iterable[bytes | str] = (),
        folder_patterns: Iterable[bytes | str] = (),
        max_blob_size: int | None = None,
        protected_blobs: Iterable[ObjectID] = frozenset(),
        prune_empty: bool = False,
    ) -> None:
        self.patterns = _compile(patterns)
        self.folder_patterns = _compile(folder_patterns)
        if max_blob_size is not None and max_blob_size < 0:
            raise ValueError("max_blob_size must not be negative")
        self.max_blob_size = max_blob_size
        self.protected_blobs = frozenset(protected_blobs)
        self.prune_empty = prune_empty

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(patterns={list(self.patterns)!r}, "
            f"folder_patterns={list(self.folder_patterns)!r}, "
            f"max_blob_size={self.max_blob_size!r}, "
            f"protected_blobs=<{len(self.protected_blobs)} blobs>, "
            f"prune_empty={self.prune_empty!r})"
        )

    @property
    def is_empty(self) -> bool:
        """Whether this policy can never match anything."""
        return (
            not self.patterns
            and not self.folder_patterns
            and self.max_blob_size is None
        )

    @property
    def needs_size(self) -> bool:
        """Whether decisions depend on blob sizes."""
        return self.max_blob_size is not None

    @property
    def path_sensitive(self) -> bool:
        """Whether decisions depend on more than an entry's own name.

        When False, the rewrite of a tree depends only on its identity and may
        be cached by identity alone.
        """
        return any(b"/" in p for p in self.patterns + self.folder_patterns)

    def matches(self, blob_id: ObjectID, path: bytes, size: int | None) -> bool:
        """Check whether a blob should be removed.

        Args:
          blob_id: Identity of the blob
          path: Full path of the tree entry that references the blob
          size: Size of the blob in bytes, or None if it is not known to
            exceed the threshold
        """
        if blob_id in self.protected_blobs:
            return False
        if (
            self.max_blob_size is not None
            and size is not None
            and size > self.max_blob_size
        ):
            return True
        return _match_any(self.patterns, path)

    def matches_folder(self, path: bytes) -> bool:
        """Check whether a folder should be removed with its contents."""
        return _match_any(self.folder_patterns, path)

    def describe(self) -> str:
        """Short human readable description, for reports."""
        parts = []
        if self.patterns:
            parts.append(
                "files " + ", ".join(p.decode("utf-8", "replace") for p in self.patterns)
            )
        if self.folder_patterns:
            parts.append(
                "folders "
                + ", ".join(p.decode("utf-8", "replace") for p in self.folder_patterns)
            )
        if self.max_blob_size is not None:
            parts.append(f"blobs over {self.max_blob_size} bytes")
        if not parts:
            return "nothing"
        return "; ".join(parts)
