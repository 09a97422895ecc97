# pack.py -- Read-only access to git pack files
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

"""Classes for reading packed objects.

A mirror fetched with a normal clone keeps almost all of its history in pack
files. excise only ever reads packs: rewritten objects are written loose and
the compactor removes packs once their reachable content has been exploded.

A pack consists of two files: the .idx file, which maps object names to
offsets, and the .pack file holding the (possibly deltified) object data.
Only version 2 index files are supported.
"""

__all__ = [
    "DELTA_TYPES",
    "OFS_DELTA",
    "REF_DELTA",
    "Pack",
    "PackData",
    "PackIndex",
    "apply_delta",
    "iter_pack_basenames",
    "read_pack_header",
]

import mmap
import os
import zlib
from bisect import bisect_left
from collections.abc import Callable, Iterator
from struct import unpack_from

from .errors import ApplyDeltaError, ObjectFormatException
from .objects import ObjectID, hex_to_sha, sha_to_hex

OFS_DELTA = 6
REF_DELTA = 7

DELTA_TYPES = (OFS_DELTA, REF_DELTA)

PACK_SPOOL_FILE_MAX_SIZE = 16 * 1024 * 1024


def _load_file_contents(path: str) -> bytes | mmap.mmap:
    """Load contents from a file, preferring mmap when possible."""
    with open(path, "rb") as f:
        size = os.fstat(f.fileno()).st_size
        if size == 0:
            return b""
        try:
            return mmap.mmap(f.fileno(), size, access=mmap.ACCESS_READ)
        except (OSError, ValueError):
            # Can't mmap, read it instead
            return f.read()


def read_pack_header(data: bytes | mmap.mmap) -> tuple[int, int]:
    """Read the header of a pack file.

    Returns: Tuple of (pack version, number of objects).
    """
    header = data[:12]
    if len(header) < 12:
        raise ObjectFormatException("file too short to contain pack")
    if header[:4] != b"PACK":
        raise ObjectFormatException(f"Invalid pack header {header!r}")
    (version,) = unpack_from(">L", header, 4)
    if version not in (2, 3):
        raise ObjectFormatException(f"Version was {version}")
    (num_objects,) = unpack_from(">L", header, 8)
    return (version, num_objects)


class PackIndex:
    """Version 2 pack index.

    Given the name of an object a pack index can tell you the location in the
    packfile of that object if it has it.
    """

    def __init__(self, filename: str, contents: bytes | mmap.mmap | None = None):
        self._filename = filename
        if contents is None:
            contents = _load_file_contents(filename)
        self._contents = contents
        if self._contents[:4] != b"\377tOc":
            raise ObjectFormatException(f"{filename} is not a v2 pack index file")
        (self.version,) = unpack_from(">L", self._contents, 4)
        if self.version != 2:
            raise ObjectFormatException(f"Version was {self.version}")
        self._fan_out_table = [
            unpack_from(">L", self._contents, 8 + i * 4)[0] for i in range(0x100)
        ]
        self._name_table_offset = 8 + 0x100 * 4
        self._crc32_table_offset = self._name_table_offset + 20 * len(self)
        self._pack_offset_table_offset = self._crc32_table_offset + 4 * len(self)
        self._pack_offset_largetable_offset = self._pack_offset_table_offset + 4 * len(
            self
        )

    def __len__(self) -> int:
        """Return the number of entries in this pack index."""
        return self._fan_out_table[-1]

    def _unpack_name(self, i: int) -> bytes:
        offset = self._name_table_offset + i * 20
        return bytes(self._contents[offset : offset + 20])

    def _unpack_offset(self, i: int) -> int:
        offset = self._pack_offset_table_offset + i * 4
        offset_val = int(unpack_from(">L", self._contents, offset)[0])
        if offset_val & (2**31):
            offset = (
                self._pack_offset_largetable_offset + (offset_val & (2**31 - 1)) * 8
            )
            offset_val = int(unpack_from(">Q", self._contents, offset)[0])
        return offset_val

    def object_offset(self, sha: ObjectID) -> int:
        """Return the offset in to the corresponding packfile for the object.

        Raises:
          KeyError: if the object is not in this index
        """
        raw = hex_to_sha(sha)
        idx = raw[0]
        start = self._fan_out_table[idx - 1] if idx > 0 else 0
        end = self._fan_out_table[idx]
        i = bisect_left(_NameView(self), raw, start, end)
        if i < end and self._unpack_name(i) == raw:
            return self._unpack_offset(i)
        raise KeyError(sha)

    def __contains__(self, sha: ObjectID) -> bool:
        try:
            self.object_offset(sha)
        except KeyError:
            return False
        return True

    def iterentries(self) -> Iterator[tuple[ObjectID, int]]:
        """Iterate over the entries in this pack index.

        Returns: iterator over tuples with object name and offset in packfile
        """
        for i in range(len(self)):
            yield sha_to_hex(self._unpack_name(i)), self._unpack_offset(i)

    def close(self) -> None:
        if isinstance(self._contents, mmap.mmap):
            self._contents.close()


class _NameView:
    """Sequence view over the sorted name table, for bisect."""

    def __init__(self, index: PackIndex) -> None:
        self._index = index

    def __getitem__(self, i: int) -> bytes:
        return self._index._unpack_name(i)

    def __len__(self) -> int:
        return len(self._index)


def _unpack_object_header(
    data: bytes | mmap.mmap, offset: int
) -> tuple[int, int, int | bytes | None, int]:
    """Decode the variable length header of a packed object.

    Returns: Tuple of (type number, inflated size, delta base, data offset).
        The delta base is a pack offset for OFS_DELTA objects, a binary
        object name for REF_DELTA objects and None otherwise.
    """
    byte = data[offset]
    offset += 1
    type_num = (byte >> 4) & 0x07
    size = byte & 0x0F
    shift = 4
    while byte & 0x80:
        byte = data[offset]
        offset += 1
        size += (byte & 0x7F) << shift
        shift += 7
    delta_base: int | bytes | None = None
    if type_num == OFS_DELTA:
        byte = data[offset]
        offset += 1
        delta_offset = byte & 0x7F
        while byte & 0x80:
            byte = data[offset]
            offset += 1
            delta_offset += 1
            delta_offset = (delta_offset << 7) + (byte & 0x7F)
        delta_base = delta_offset
    elif type_num == REF_DELTA:
        delta_base = bytes(data[offset : offset + 20])
        offset += 20
    return type_num, size, delta_base, offset


def _inflate(data: bytes | mmap.mmap, offset: int, size: int) -> bytes:
    decomp = zlib.decompressobj()
    out = []
    total = 0
    pos = offset
    bufsize = 64 * 1024
    while not decomp.eof:
        chunk = data[pos : pos + bufsize]
        if not chunk:
            raise zlib.error("EOF before end of zlib stream")
        pos += len(chunk)
        inflated = decomp.decompress(chunk)
        total += len(inflated)
        out.append(inflated)
    if total != size:
        raise zlib.error("decompressed data does not match expected size")
    return b"".join(out)


def _delta_header_size(delta: bytes, index: int) -> tuple[int, int]:
    size = 0
    i = 0
    while delta:
        cmd = delta[index]
        index += 1
        size |= (cmd & ~0x80) << i
        i += 7
        if not cmd & 0x80:
            break
    return size, index


def apply_delta(src_buf: bytes, delta: bytes) -> bytes:
    """Based on the similar function in git's patch-delta.c.

    Args:
      src_buf: Source buffer
      delta: Delta instructions
    """
    out = []
    index = 0
    delta_length = len(delta)
    src_size, index = _delta_header_size(delta, index)
    dest_size, index = _delta_header_size(delta, index)
    if src_size != len(src_buf):
        raise ApplyDeltaError(
            f"Unexpected source buffer size: {src_size} vs {len(src_buf)}"
        )
    while index < delta_length:
        cmd = delta[index]
        index += 1
        if cmd & 0x80:
            cp_off = 0
            for i in range(4):
                if cmd & (1 << i):
                    cp_off |= delta[index] << (i * 8)
                    index += 1
            cp_size = 0
            # Version 3 packs can contain copy sizes larger than 64K.
            for i in range(3):
                if cmd & (1 << (4 + i)):
                    cp_size |= delta[index] << (i * 8)
                    index += 1
            if cp_size == 0:
                cp_size = 0x10000
            if (
                cp_off + cp_size < cp_size
                or cp_off + cp_size > src_size
                or cp_size > dest_size
            ):
                break
            out.append(src_buf[cp_off : cp_off + cp_size])
        elif cmd != 0:
            out.append(delta[index : index + cmd])
            index += cmd
        else:
            raise ApplyDeltaError("Invalid opcode 0")

    if index != delta_length:
        raise ApplyDeltaError(f"delta not empty: {delta[index:]!r}")

    result = b"".join(out)
    if dest_size != len(result):
        raise ApplyDeltaError("dest size incorrect")
    return result


class PackData:
    """The data contained in a packfile.

    The objects within are either complete or a delta against another. Delta
    chains are resolved iteratively, so arbitrarily deep chains do not hit the
    recursion limit.
    """

    def __init__(
        self,
        filename: str,
        resolve_ext_ref: Callable[[bytes], tuple[int, bytes]] | None = None,
    ) -> None:
        self._filename = filename
        self._contents = _load_file_contents(filename)
        (self.version, self._num_objects) = read_pack_header(self._contents)
        self._resolve_ext_ref = resolve_ext_ref

    def __len__(self) -> int:
        """Returns the number of objects in this pack."""
        return self._num_objects

    @property
    def filename(self) -> str:
        return self._filename

    def get_object_at(self, offset: int, get_ref: Callable[[bytes], int]) -> tuple[int, bytes]:
        """Return the fully resolved object stored at an offset.

        Args:
          offset: Offset of the object in the pack
          get_ref: Callable mapping a binary object name to its offset in this
            pack, raising KeyError for objects outside of it
        Returns: Tuple of (type number, contents)
        """
        deltas: list[bytes] = []
        while True:
            type_num, size, delta_base, data_offset = _unpack_object_header(
                self._contents, offset
            )
            inflated = _inflate(self._contents, data_offset, size)
            if type_num == OFS_DELTA:
                assert isinstance(delta_base, int)
                deltas.append(inflated)
                offset -= delta_base
            elif type_num == REF_DELTA:
                assert isinstance(delta_base, bytes)
                deltas.append(inflated)
                try:
                    offset = get_ref(delta_base)
                except KeyError:
                    if self._resolve_ext_ref is None:
                        raise
                    type_num, base = self._resolve_ext_ref(delta_base)
                    break
            else:
                base = inflated
                break
        for delta in reversed(deltas):
            base = apply_delta(base, delta)
        return type_num, base

    def get_object_size_at(
        self, offset: int, get_ref: Callable[[bytes], int]
    ) -> tuple[int, int]:
        """Return the type and inflated size of the object at an offset.

        For deltified objects only the delta itself is inflated; the result
        size is read from the delta header. The type is found by walking the
        chain down to its base header.
        """
        size: int | None = None
        while True:
            type_num, raw_size, delta_base, data_offset = _unpack_object_header(
                self._contents, offset
            )
            if type_num not in DELTA_TYPES:
                return type_num, raw_size if size is None else size
            if size is None:
                delta = _inflate(self._contents, data_offset, raw_size)
                _, index = _delta_header_size(delta, 0)
                size, _ = _delta_header_size(delta, index)
            if type_num == OFS_DELTA:
                assert isinstance(delta_base, int)
                offset -= delta_base
            else:
                assert isinstance(delta_base, bytes)
                try:
                    offset = get_ref(delta_base)
                except KeyError:
                    if self._resolve_ext_ref is None:
                        raise
                    type_num, _ = self._resolve_ext_ref(delta_base)
                    return type_num, size

    def close(self) -> None:
        if isinstance(self._contents, mmap.mmap):
            self._contents.close()


class Pack:
    """A pack file and its index."""

    def __init__(
        self,
        basename: str,
        resolve_ext_ref: Callable[[bytes], tuple[int, bytes]] | None = None,
    ) -> None:
        self._basename = basename
        self.index = PackIndex(basename + ".idx")
        self.data = PackData(basename + ".pack", resolve_ext_ref=resolve_ext_ref)
        if len(self.index) != len(self.data):
            raise ObjectFormatException(
                f"{basename}: index lists {len(self.index)} objects, "
                f"pack has {len(self.data)}"
            )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._basename!r})"

    @property
    def basename(self) -> str:
        return self._basename

    def __len__(self) -> int:
        return len(self.index)

    def __contains__(self, sha: ObjectID) -> bool:
        return sha in self.index

    def __iter__(self) -> Iterator[ObjectID]:
        for sha, _ in self.index.iterentries():
            yield sha

    def _get_ref(self, raw: bytes) -> int:
        return self.index.object_offset(sha_to_hex(raw))

    def get_raw(self, sha: ObjectID) -> tuple[int, bytes]:
        """Get raw object data by SHA1."""
        offset = self.index.object_offset(sha)
        return self.data.get_object_at(offset, self._get_ref)

    def get_object_size(self, sha: ObjectID) -> tuple[int, int]:
        """Get the type number and inflated size of an object."""
        offset = self.index.object_offset(sha)
        return self.data.get_object_size_at(offset, self._get_ref)

    def close(self) -> None:
        self.data.close()
        self.index.close()

    def remove(self) -> None:
        """Close and delete both files of this pack."""
        self.close()
        for suffix in (".pack", ".idx", ".keep", ".rev", ".bitmap"):
            try:
                os.remove(self._basename + suffix)
            except FileNotFoundError:
                pass


def iter_pack_basenames(pack_dir: str) -> Iterator[str]:
    """Iterate over the basenames of all complete packs in a directory."""
    try:
        names = sorted(os.listdir(pack_dir))
    except FileNotFoundError:
        return
    for name in names:
        if name.startswith("pack-") and name.endswith(".pack"):
            basename = os.path.join(pack_dir, name[: -len(".pack")])
            if os.path.exists(basename + ".idx"):
                yield basename
