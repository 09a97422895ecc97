# refs.py -- Refs of a mirror and their compare-and-swap updates
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

"""Refs of a mirror.

A rewrite only ever moves refs with compare-and-swap, so a ref that somebody
pushed to while history was being rewritten is reported instead of clobbered.
When asked to, the pre-rewrite values are kept under refs/original/.

Two containers are provided: one on top of a dict, used for in-memory
repositories, and one reading loose ref files and packed-refs from disk.
"""

__all__ = [
    "HEADREF",
    "ORIGINAL_PREFIX",
    "SYMREF",
    "DictRefsContainer",
    "DiskRefsContainer",
    "PackedRefsException",
    "RefFormatError",
    "RefsContainer",
    "SymrefLoop",
    "check_ref_format",
    "read_packed_refs",
    "write_packed_refs",
]

import os
import threading
from collections.abc import Iterator, Mapping
from contextlib import suppress
from typing import IO

from .errors import FileFormatException
from .file import GitFile, LockedFile, ensure_dir_exists
from .objects import ZERO_SHA, ObjectID, valid_hexsha

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
ORIGINAL_PREFIX = b"refs/original/"
PACKED_REFS = b"packed-refs"
PEELED_HEADER = b"# pack-refs with: peeled\n"
MAX_SYMREF_DEPTH = 5

BAD_REF_CHARS = frozenset(b"\177 ~^:?*[")
_BAD_REF_SEQUENCES = (b"..", b"/.", b"@{", b"\\")


class SymrefLoop(Exception):
    """Symbolic refs point at each other."""

    def __init__(self, ref: bytes, depth: int) -> None:
        self.ref = ref
        self.depth = depth
        super().__init__(f"symref loop at {ref!r} (depth {depth})")


class RefFormatError(KeyError):
    """A ref name is not valid."""


class PackedRefsException(FileFormatException):
    """The packed-refs file could not be parsed."""


def check_ref_format(refname: Ref) -> bool:
    """Check a ref name the way git-check-ref-format does.

    The name needs at least one slash, may not start with a dot or end with
    a slash, a dot or ".lock", and may not contain control characters or
    any of the characters git reserves for revision syntax.
    """
    if b"/" not in refname or refname.startswith(b"."):
        return False
    if refname.endswith((b"/", b".", b".lock")):
        return False
    if any(seq in refname for seq in _BAD_REF_SEQUENCES):
        return False
    return not any(c < 0o40 or c in BAD_REF_CHARS for c in refname)


def _matches(current: bytes | None, expected: bytes | None) -> bool:
    # None means unconditional; a missing ref compares equal to ZERO_SHA.
    return expected is None or (current or ZERO_SHA) == expected


class RefsContainer:
    """The refs of a repository."""

    def allkeys(self) -> set[Ref]:
        """Names of all refs, loose and packed."""
        raise NotImplementedError(self.allkeys)

    def read_loose_ref(self, name: Ref) -> bytes | None:
        """Raw contents of a loose ref, without following symrefs."""
        raise NotImplementedError(self.read_loose_ref)

    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        """Refs stored in packed-refs."""
        raise NotImplementedError(self.get_packed_refs)

    def get_peeled(self, name: Ref) -> ObjectID | None:
        return None

    def keys(self, base: bytes | None = None) -> set[Ref]:
        """Ref names, optionally only those below base with base stripped."""
        if base is None:
            return self.allkeys()
        prefix = base.rstrip(b"/") + b"/"
        return {n[len(prefix) :] for n in self.allkeys() if n.startswith(prefix)}

    def as_dict(self) -> dict[Ref, ObjectID]:
        """Map every ref that resolves to the SHA it resolves to."""
        ret = {}
        for name in self.allkeys():
            with suppress(KeyError, SymrefLoop):
                ret[name] = self[name]
        return ret

    def read_ref(self, name: Ref) -> bytes | None:
        """Raw contents of a ref, loose or packed."""
        return self.read_loose_ref(name) or self.get_packed_refs().get(name)

    def follow(self, name: Ref) -> tuple[list[Ref], bytes | None]:
        """Follow symbolic refs starting at name.

        Returns: tuple of (names visited, final contents or None)
        """
        chain: list[Ref] = []
        contents: bytes | None = SYMREF + name
        while contents and contents.startswith(SYMREF):
            if len(chain) > MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, len(chain))
            target = contents[len(SYMREF) :]
            chain.append(target)
            contents = self.read_ref(target)
        return chain, contents

    def _target_of(self, name: Ref) -> Ref:
        try:
            chain, _ = self.follow(name)
        except SymrefLoop:
            return name
        return chain[-1]

    def is_symbolic(self, name: Ref) -> bool:
        contents = self.read_loose_ref(name)
        return contents is not None and contents.startswith(SYMREF)

    def get_symrefs(self) -> dict[Ref, Ref]:
        """Map each symbolic ref to the ref it points at."""
        ret = {}
        for name in self.allkeys():
            contents = self.read_loose_ref(name)
            if contents and contents.startswith(SYMREF):
                ret[name] = contents[len(SYMREF) :]
        return ret

    def _check_refname(self, name: Ref) -> None:
        if name == HEADREF:
            return
        if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
            raise RefFormatError(name)

    def __contains__(self, name: Ref) -> bool:
        return bool(self.read_ref(name))

    def __getitem__(self, name: Ref) -> ObjectID:
        _, sha = self.follow(name)
        if sha is None:
            raise KeyError(name)
        return sha

    def __setitem__(self, name: Ref, sha: ObjectID) -> None:
        self.set_if_equals(name, None, sha)

    def __delitem__(self, name: Ref) -> None:
        self.remove_if_equals(name, None)

    def set_if_equals(
        self, name: Ref, old_ref: ObjectID | None, new_ref: ObjectID
    ) -> bool:
        """Point the ref that name resolves to at new_ref.

        Args:
          name: Ref to update; symbolic refs are followed
          old_ref: SHA the ref must currently have, or None to update
            unconditionally
          new_ref: New SHA
        Returns: whether the ref was updated
        """
        raise NotImplementedError(self.set_if_equals)

    def add_if_new(self, name: Ref, ref: ObjectID) -> bool:
        """Create a ref, unless it already exists."""
        raise NotImplementedError(self.add_if_new)

    def remove_if_equals(self, name: Ref, old_ref: ObjectID | None) -> bool:
        """Delete a ref if it has old_ref. Symbolic refs are not followed."""
        raise NotImplementedError(self.remove_if_equals)


class DictRefsContainer(RefsContainer):
    """Refs held in a dict. There are no packed refs."""

    def __init__(self, refs: dict[Ref, bytes]) -> None:
        self._refs = refs
        self._lock = threading.Lock()

    def allkeys(self) -> set[Ref]:
        return set(self._refs)

    def read_loose_ref(self, name: Ref) -> bytes | None:
        return self._refs.get(name)

    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        return {}

    def set_symbolic_ref(self, name: Ref, other: Ref) -> None:
        self._refs[name] = SYMREF + other

    def set_if_equals(
        self, name: Ref, old_ref: ObjectID | None, new_ref: ObjectID
    ) -> bool:
        self._check_refname(name)
        target = self._target_of(name)
        self._check_refname(target)
        with self._lock:
            if not _matches(self._refs.get(target), old_ref):
                return False
            self._refs[target] = new_ref
        return True

    def add_if_new(self, name: Ref, ref: ObjectID) -> bool:
        self._check_refname(name)
        with self._lock:
            if name in self._refs:
                return False
            self._refs[name] = ref
        return True

    def remove_if_equals(self, name: Ref, old_ref: ObjectID | None) -> bool:
        with self._lock:
            if not _matches(self._refs.get(name), old_ref):
                return False
            self._refs.pop(name, None)
        return True


class DiskRefsContainer(RefsContainer):
    """Refs of a repository on disk: loose ref files and packed-refs.

    Every change is made while holding the lock file of the ref being
    changed, and the current value is read again after the lock is taken.
    A lock held by another process surfaces as FileLocked.
    """

    def __init__(self, path: str | bytes | os.PathLike[str]) -> None:
        self.path = os.fsencode(os.fspath(path))
        self._packed_refs: dict[Ref, ObjectID] | None = None
        self._peeled_refs: dict[Ref, ObjectID] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def refpath(self, name: Ref) -> bytes:
        """Path of the loose file for a ref."""
        return os.path.join(self.path, *name.split(b"/"))

    def _loose_names(self) -> Iterator[Ref]:
        for dirpath, _dirnames, filenames in os.walk(self.refpath(b"refs")):
            parts = os.path.relpath(dirpath, self.path).split(os.fsencode(os.sep))
            for filename in filenames:
                name = b"/".join([*parts, filename])
                # Skips lock files and anything else git would not accept.
                if check_ref_format(name):
                    yield name

    def allkeys(self) -> set[Ref]:
        names = set(self._loose_names())
        names.update(self.get_packed_refs())
        if os.path.exists(self.refpath(HEADREF)):
            names.add(HEADREF)
        return names

    def get_packed_refs(self) -> dict[Ref, ObjectID]:
        """Refs stored in packed-refs; empty if there is no such file."""
        if self._packed_refs is None:
            packed: dict[Ref, ObjectID] = {}
            peeled: dict[Ref, ObjectID] = {}
            with suppress(FileNotFoundError):
                with GitFile(os.path.join(self.path, PACKED_REFS), "rb") as f:
                    for sha, name, peeled_sha in read_packed_refs(f):
                        packed[name] = sha
                        if peeled_sha is not None:
                            peeled[name] = peeled_sha
            self._packed_refs, self._peeled_refs = packed, peeled
        return self._packed_refs

    def get_peeled(self, name: Ref) -> ObjectID | None:
        """Peeled value recorded in packed-refs for a ref.

        Returns None when the ref is not packed or a loose ref shadows it.
        """
        packed = self.get_packed_refs()
        if name not in packed or self.read_loose_ref(name) is not None:
            return None
        return self._peeled_refs.get(name, packed[name])

    def read_loose_ref(self, name: Ref) -> bytes | None:
        try:
            with GitFile(self.refpath(name), "rb") as f:
                first = f.readline().rstrip(b"\r\n")
        except (OSError, UnicodeError):
            return None
        if first.startswith(SYMREF):
            return first
        return first[:40]

    def set_symbolic_ref(self, name: Ref, other: Ref) -> None:
        """Make name a symbolic ref pointing at other."""
        self._check_refname(name)
        self._check_refname(other)
        filename = self.refpath(name)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            f.write(SYMREF + other + b"\n")

    def _check_not_shadowed(self, name: Ref) -> None:
        # refs/heads/a can not be written while refs/heads is a packed ref.
        packed = self.get_packed_refs()
        parts = name.split(b"/")
        for i in range(1, len(parts)):
            if b"/".join(parts[:i]) in packed:
                raise NotADirectoryError(self.refpath(name))

    def set_if_equals(
        self, name: Ref, old_ref: ObjectID | None, new_ref: ObjectID
    ) -> bool:
        """Point the ref that name resolves to at new_ref.

        The new value is always written as a loose ref; a packed entry for
        the same name is shadowed by it.

        Raises:
          FileLocked: if another process holds the ref's lock
        """
        self._check_refname(name)
        target = self._target_of(name)
        self._check_not_shadowed(target)
        filename = self.refpath(target)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            self._packed_refs = None
            if not _matches(self.read_ref(target), old_ref):
                f.abort()
                return False
            f.write(new_ref + b"\n")
        return True

    def add_if_new(self, name: Ref, ref: ObjectID) -> bool:
        self._check_refname(name)
        filename = self.refpath(name)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            if os.path.exists(filename) or name in self.get_packed_refs():
                f.abort()
                return False
            f.write(ref + b"\n")
        return True

    def _drop_packed_ref(self, name: Ref) -> None:
        with GitFile(os.path.join(self.path, PACKED_REFS), "wb") as f:
            self._packed_refs = None
            packed = self.get_packed_refs()
            if name not in packed:
                f.abort()
                return
            del packed[name]
            self._peeled_refs.pop(name, None)
            write_packed_refs(f, packed, self._peeled_refs)

    def _prune_empty_dirs(self, name: Ref) -> None:
        parts = name.split(b"/")[:-1]
        while len(parts) > 1:
            try:
                os.rmdir(self.refpath(b"/".join(parts)))
            except OSError:
                break
            parts.pop()

    def remove_if_equals(self, name: Ref, old_ref: ObjectID | None) -> bool:
        """Delete a ref, loose and packed, if it has old_ref.

        Directories left empty below refs/ are removed as well.
        """
        self._check_refname(name)
        filename = self.refpath(name)
        ensure_dir_exists(os.path.dirname(filename))
        # The lock is only taken to keep other writers out; it is never
        # committed.
        lock = GitFile(filename, "wb")
        try:
            self._packed_refs = None
            if not _matches(self.read_ref(name), old_ref):
                return False
            with suppress(FileNotFoundError):
                os.remove(filename)
            self._drop_packed_ref(name)
        finally:
            lock.abort()
        self._prune_empty_dirs(name)
        return True


def _split_ref_line(line: bytes) -> tuple[ObjectID, Ref]:
    try:
        sha, name = line.rstrip(b"\r\n").split(b" ")
    except ValueError:
        raise PackedRefsException(f"invalid ref line {line!r}") from None
    if not valid_hexsha(sha):
        raise PackedRefsException(f"invalid hex sha {sha!r}")
    if not check_ref_format(name):
        raise PackedRefsException(f"invalid ref name {name!r}")
    return sha, name


def read_packed_refs(f: IO[bytes]) -> Iterator[tuple[ObjectID, Ref, ObjectID | None]]:
    """Parse a packed-refs file.

    Yields: tuples of (sha, ref name, peeled sha or None)
    """
    pending = None
    for raw in f:
        line = raw.rstrip(b"\r\n")
        if not line or line.startswith(b"#"):
            continue
        if line.startswith(b"^"):
            if pending is None:
                raise PackedRefsException("peeled value without a ref")
            if not valid_hexsha(line[1:]):
                raise PackedRefsException(f"invalid hex sha {line[1:]!r}")
            yield (*pending, line[1:])
            pending = None
            continue
        if pending is not None:
            yield (*pending, None)
        pending = _split_ref_line(line)
    if pending is not None:
        yield (*pending, None)


def write_packed_refs(
    f: "IO[bytes] | LockedFile",
    packed_refs: Mapping[Ref, ObjectID],
    peeled_refs: Mapping[Ref, ObjectID] | None = None,
) -> None:
    """Write refs in packed-refs format, sorted by name.

    The peeled header is only written when peeled_refs is given.
    """
    if peeled_refs is not None:
        f.write(PEELED_HEADER)
    for name, sha in sorted(packed_refs.items()):
        f.write(sha + b" " + name + b"\n")
        if peeled_refs and name in peeled_refs:
            f.write(b"^" + peeled_refs[name] + b"\n")
