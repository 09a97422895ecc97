# objects.py -- Access to base git objects
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

"""Access to base git objects."""

__all__ = [
    "EMPTY_TREE_ID",
    "OBJECT_CLASSES",
    "S_IFGITLINK",
    "ZERO_SHA",
    "Blob",
    "Commit",
    "ObjectID",
    "ShaFile",
    "Tag",
    "Tree",
    "TreeEntry",
    "format_timezone",
    "hex_to_filename",
    "hex_to_sha",
    "object_class",
    "parse_timezone",
    "parse_tree",
    "serialize_tree",
    "sha_to_hex",
    "sorted_tree_items",
    "valid_hexsha",
]

import binascii
import os
import stat
import zlib
from collections.abc import Callable, Iterable, Iterator
from hashlib import sha1
from typing import NamedTuple, TypeVar

from .errors import (
    NotBlobError,
    NotCommitError,
    NotTagError,
    NotTreeError,
    ObjectFormatException,
)

# Hex-encoded SHA-1 identity of an object.
ObjectID = bytes

ZERO_SHA: ObjectID = b"0" * 40

# Header fields for commits
_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"
_ENCODING_HEADER = b"encoding"
_GPGSIG_HEADERS = (b"gpgsig", b"gpgsig-sha256")

# Header fields for objects
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"
_TAG_HEADER = b"tag"
_TAGGER_HEADER = b"tagger"

S_IFGITLINK = 0o160000

MAX_TIME = 9223372036854775807  # (2**63) - 1 - signed long int max

EMPTY_TREE_ID: ObjectID = b"4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def S_ISGITLINK(m: int) -> bool:
    """Check if a mode indicates a submodule.

    Args:
      m: Mode to check
    Returns: a ``boolean``
    """
    return stat.S_IFMT(m) == S_IFGITLINK


def _decompress(string: bytes) -> bytes:
    dcomp = zlib.decompressobj()
    dcomped = dcomp.decompress(string)
    dcomped += dcomp.flush()
    return dcomped


def sha_to_hex(sha: bytes) -> ObjectID:
    """Takes a string and returns the hex of the sha within."""
    hexsha = binascii.hexlify(sha)
    assert len(hexsha) == 40, f"Incorrect length of sha1 string: {hexsha!r}"
    return hexsha


def hex_to_sha(hex: bytes | str) -> bytes:
    """Takes a hex sha and returns a binary sha."""
    assert len(hex) == 40, f"Incorrect length of hexsha: {hex!r}"
    try:
        return binascii.unhexlify(hex)
    except TypeError as exc:
        if not isinstance(hex, bytes):
            raise
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: bytes | str) -> bool:
    """Check whether a value is a well-formed hex SHA-1."""
    if len(hex) != 40:
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True


def hex_to_filename(path: str, hex: bytes | str) -> str:
    """Takes a hex sha and returns its filename relative to the given path."""
    if isinstance(hex, bytes):
        hex = hex.decode("ascii")
    return os.path.join(path, hex[:2], hex[2:])


def object_class(type: bytes | int) -> type["ShaFile"] | None:
    """Get the object class corresponding to the given type.

    Args:
      type: Either a type name string or a numeric type.
    Returns: The ShaFile subclass corresponding to the given type, or None if
        type is not a valid type name/number.
    """
    return _TYPE_MAP.get(type, None)


def parse_timezone(text: bytes) -> tuple[int, bool]:
    """Parse a timezone text fragment (e.g. '+0100').

    Args:
      text: Text to parse.
    Returns: Tuple with timezone as seconds difference to UTC
        and a boolean indicating whether this was a UTC timezone
        prefixed with a negative sign (-0000).
    """
    # cgit parses the first character as the sign, and the rest
    #  as an integer (using strtol), which could also be negative.
    #  We do the same for compatibility. See #697828.
    if text[0] not in b"+-":
        raise ValueError(f"Timezone must start with + or - ({text!r})")
    sign = text[:1]
    offset = int(text[1:])
    if sign == b"-":
        offset = -offset
    unnecessary_negative_timezone = offset >= 0 and sign == b"-"
    signum = ((offset < 0) and -1) or 1
    offset = abs(offset)
    hours = int(offset / 100)
    minutes = offset % 100
    return (
        signum * (hours * 3600 + minutes * 60),
        unnecessary_negative_timezone,
    )


def format_timezone(offset: int, unnecessary_negative_timezone: bool = False) -> bytes:
    """Format a timezone for Git serialization.

    Args:
      offset: Timezone offset as seconds difference to UTC
      unnecessary_negative_timezone: Whether to use a minus sign for
        UTC or positive timezones (-0000 and --700 rather than +0000 / +0700).
    """
    if offset % 60 != 0:
        raise ValueError("Unable to handle non-minute offset.")
    if offset < 0 or unnecessary_negative_timezone:
        sign = "-"
        offset = -offset
    else:
        sign = "+"
    return ("%c%02d%02d" % (sign, offset / 3600, (offset / 60) % 60)).encode("ascii")  # noqa: UP031


def parse_time_entry(value: bytes) -> tuple[bytes, int | None, tuple[int | None, bool]]:
    """Parse event.

    Args:
      value: Bytes representing a git commit/tag line
    Raises:
      ObjectFormatException in case of parsing error (malformed
      field date)
    Returns: Tuple of (author, time, (timezone, timezone_neg_utc))
    """
    try:
        sep = value.rindex(b"> ")
    except ValueError:
        return (value, None, (None, False))
    try:
        person = value[0 : sep + 1]
        rest = value[sep + 2 :]
        timetext, timezonetext = rest.rsplit(b" ", 1)
        time = int(timetext)
        timezone, timezone_neg_utc = parse_timezone(timezonetext)
    except ValueError as exc:
        raise ObjectFormatException(exc) from exc
    return person, time, (timezone, timezone_neg_utc)


def format_time_entry(
    person: bytes, time: int, timezone_info: tuple[int, bool]
) -> bytes:
    """Format an event."""
    (timezone, timezone_neg_utc) = timezone_info
    return b" ".join(
        [person, str(time).encode("ascii"), format_timezone(timezone, timezone_neg_utc)]
    )


def _parse_message(
    chunks: Iterable[bytes],
) -> Iterator[tuple[None, None] | tuple[bytes | None, bytes]]:
    """Parse a message with a list of fields and a body.

    Args:
      chunks: the raw chunks of the tag or commit object.
    Returns: iterator of tuples of (field, value), one per header line, in the
        order read from the text, possibly including duplicates. Includes a
        field named None for the freeform tag/commit text.
    """
    text = b"".join(chunks)
    lines = text.split(b"\n")
    k = None
    v = b""
    eof = False

    def _strip_last_newline(value: bytes) -> bytes:
        """Strip the last newline from value."""
        if value and value.endswith(b"\n"):
            return value[:-1]
        return value

    # Parse the headers
    #
    # Headers can contain newlines. The next line is indented with a space.
    # We store the latest key as 'k', and the accumulated value as 'v'.
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if line.startswith(b" "):
            # Indented continuation of the previous line
            v += b"\n" + line[1:]
            continue
        if k is not None:
            # We parsed a new header, return its value
            yield (k, _strip_last_newline(v))
        if line == b"":
            # Empty line indicates end of headers
            break
        (k, v) = line.split(b" ", 1) if b" " in line else (line, b"")
    else:
        # We reached end of file before the headers ended. We still need to
        # return the previous header, then we need to return a None field for
        # the text.
        eof = True
        if k is not None:
            yield (k, _strip_last_newline(v))
        yield (None, None)

    if not eof:
        # We didn't reach the end of file while parsing headers. We can return
        # the rest of the file as a message.
        yield (None, b"\n".join(lines[i:]))


def _format_message(
    headers: Iterable[tuple[bytes, bytes]], body: bytes | None
) -> Iterator[bytes]:
    for field, value in headers:
        lines = value.split(b"\n")
        yield field + b" " + lines[0] + b"\n"
        for line in lines[1:]:
            yield b" " + line + b"\n"
    yield b"\n"  # There must be a new line after the headers
    if body:
        yield body


def _parse_object_header(header: bytes) -> tuple[type["ShaFile"], int]:
    try:
        type_name, size_text = header.split(b" ", 1)
        size = int(size_text)
    except ValueError as exc:
        raise ObjectFormatException(f"Invalid object header {header!r}") from exc
    obj_class = object_class(type_name)
    if not obj_class:
        raise ObjectFormatException(
            "Not a known type: {}".format(type_name.decode("ascii", "replace"))
        )
    return obj_class, size


def read_loose_object_header(
    read: Callable[[int], bytes], bufsize: int = 1024
) -> tuple[int, int]:
    """Read just the header of a zlib-compressed loose object.

    Only as much of the stream is inflated as is needed to find the header,
    so the size of very large blobs can be determined cheaply.

    Args:
      read: Read function of the compressed stream
      bufsize: Number of compressed bytes to read at a time
    Returns: Tuple of (type number, body size)
    """
    decomp = zlib.decompressobj()
    header = b""
    while b"\0" not in header:
        data = read(bufsize)
        if not data:
            raise ObjectFormatException("Invalid object header, no \\0")
        header += decomp.decompress(data, 64)
        while decomp.unconsumed_tail and b"\0" not in header:
            header += decomp.decompress(decomp.unconsumed_tail, 64)
    obj_class, size = _parse_object_header(header[: header.index(b"\0")])
    return obj_class.type_num, size


def serializable_property(name: str, docstring: str | None = None) -> property:
    """A property that helps tracking whether serialization is necessary."""

    def set(obj: "ShaFile", value: object) -> None:
        """Set the property value and mark the object as needing serialization.

        Args:
          obj: The ShaFile object
          value: The value to set
        """
        setattr(obj, "_" + name, value)
        obj._needs_serialization = True

    def get(obj: "ShaFile") -> object:
        """Get the property value.

        Args:
          obj: The ShaFile object

        Returns:
          The property value
        """
        return getattr(obj, "_" + name)

    return property(get, set, doc=docstring)


class FixedSha:
    """SHA object that behaves like hashlib's but is given a fixed value."""

    __slots__ = ("_hexsha", "_sha")

    def __init__(self, hexsha: bytes | str) -> None:
        """Initialize FixedSha with a fixed SHA value.

        Args:
            hexsha: Hex SHA value as string or bytes
        """
        if isinstance(hexsha, str):
            hexsha = hexsha.encode("ascii")
        if not isinstance(hexsha, bytes):
            raise TypeError(f"Expected bytes for hexsha, got {hexsha!r}")
        self._hexsha = hexsha
        self._sha = hex_to_sha(hexsha)

    def digest(self) -> bytes:
        """Return the raw SHA digest."""
        return self._sha

    def hexdigest(self) -> str:
        """Return the hex SHA digest."""
        return self._hexsha.decode("ascii")


T = TypeVar("T", bound="ShaFile")


class ShaFile:
    """A git SHA file."""

    __slots__ = ("_chunked_text", "_needs_serialization", "_sha")

    _needs_serialization: bool
    type_name: bytes
    type_num: int
    _chunked_text: list[bytes] | None
    _sha: FixedSha | None

    @staticmethod
    def _parse_legacy_object(map: bytes) -> "ShaFile":
        """Parse a legacy (loose) object, creating it and setting its text."""
        text = _decompress(map)
        header_end = text.find(b"\0")
        if header_end < 0:
            raise ObjectFormatException("Invalid object header, no \\0")
        obj_class, size = _parse_object_header(text[:header_end])
        body = text[header_end + 1 :]
        if len(body) != size:
            raise ObjectFormatException(
                f"Object size mismatch: header says {size}, got {len(body)}"
            )
        obj = obj_class()
        obj.set_raw_string(body)
        return obj

    def as_legacy_object_chunks(self, compression_level: int = -1) -> Iterator[bytes]:
        """Return chunks representing the object in the experimental format.

        Returns: List of strings
        """
        compobj = zlib.compressobj(compression_level)
        yield compobj.compress(self._header())
        for chunk in self.as_raw_chunks():
            yield compobj.compress(chunk)
        yield compobj.flush()

    def as_legacy_object(self, compression_level: int = -1) -> bytes:
        """Return string representing the object in the experimental format."""
        return b"".join(
            self.as_legacy_object_chunks(compression_level=compression_level)
        )

    def as_raw_chunks(self) -> list[bytes]:
        """Return chunks with serialization of the object.

        Returns: List of strings, not necessarily one per line
        """
        if self._needs_serialization:
            self._sha = None
            self._chunked_text = self._serialize()
            self._needs_serialization = False
        assert self._chunked_text is not None
        return self._chunked_text

    def as_raw_string(self) -> bytes:
        """Return raw string with serialization of the object.

        Returns: String object
        """
        return b"".join(self.as_raw_chunks())

    def __bytes__(self) -> bytes:
        """Return raw string serialization of this object."""
        return self.as_raw_string()

    def __hash__(self) -> int:
        """Return unique hash for this object."""
        return hash(self.id)

    def set_raw_string(self, text: bytes, sha: ObjectID | None = None) -> None:
        """Set the contents of this object from a serialized string."""
        if not isinstance(text, bytes):
            raise TypeError(f"Expected bytes for text, got {text!r}")
        self.set_raw_chunks([text], sha)

    def set_raw_chunks(self, chunks: list[bytes], sha: ObjectID | None = None) -> None:
        """Set the contents of this object from a list of chunks."""
        self._chunked_text = chunks
        self._deserialize(chunks)
        if sha is None:
            self._sha = None
        else:
            self._sha = FixedSha(sha)
        self._needs_serialization = False

    def __init__(self) -> None:
        """Don't call this directly."""
        self._sha = None
        self._chunked_text = []
        self._needs_serialization = True

    def _deserialize(self, chunks: list[bytes]) -> None:
        raise NotImplementedError(self._deserialize)

    def _serialize(self) -> list[bytes]:
        raise NotImplementedError(self._serialize)

    @classmethod
    def from_path(cls, path: str, sha: ObjectID | None = None) -> "ShaFile":
        """Open a SHA file from disk."""
        with open(path, "rb") as f:
            data = f.read()
        obj = ShaFile._parse_legacy_object(data)
        if sha is not None:
            obj._sha = FixedSha(sha)
        if not isinstance(obj, cls):
            raise {
                Blob: NotBlobError,
                Tree: NotTreeError,
                Commit: NotCommitError,
                Tag: NotTagError,
            }.get(cls, ObjectFormatException)(os.fsencode(path))
        return obj

    @staticmethod
    def from_raw_string(
        type_num: int | bytes, string: bytes, sha: ObjectID | None = None
    ) -> "ShaFile":
        """Creates an object of the indicated type from the raw string given.

        Args:
          type_num: The numeric type of the object.
          string: The raw uncompressed contents.
          sha: Optional known sha for the object
        """
        cls = object_class(type_num)
        if cls is None:
            raise AssertionError(f"unsupported class type num: {type_num!r}")
        obj = cls()
        obj.set_raw_string(string, sha)
        return obj

    @classmethod
    def from_string(cls: type[T], string: bytes) -> T:
        """Create a ShaFile from a string."""
        obj = cls()
        obj.set_raw_string(string)
        return obj

    def _header(self) -> bytes:
        return object_header(self.type_num, self.raw_length())

    def raw_length(self) -> int:
        """Returns the length of the raw string of this object."""
        return sum(map(len, self.as_raw_chunks()))

    def sha(self) -> "FixedSha | sha1":
        """The SHA1 object that is the name of this object."""
        if self._sha is None or self._needs_serialization:
            # this is a local because as_raw_chunks() overwrites self._sha
            new_sha = sha1()
            new_sha.update(self._header())
            for chunk in self.as_raw_chunks():
                new_sha.update(chunk)
            self._sha = FixedSha(new_sha.hexdigest())
        return self._sha

    def copy(self) -> "ShaFile":
        """Create a new copy of this SHA1 object from its raw string."""
        obj_class = object_class(self.type_num)
        if obj_class is None:
            raise AssertionError(f"invalid type num {self.type_num}")
        return obj_class.from_raw_string(self.type_num, self.as_raw_string(), self.id)

    @property
    def id(self) -> ObjectID:
        """The hex SHA of this object."""
        return self.sha().hexdigest().encode("ascii")

    def __repr__(self) -> str:
        """Return string representation of this object."""
        return f"<{self.__class__.__name__} {self.id!r}>"

    def __ne__(self, other: object) -> bool:
        """Check whether this object does not match the other."""
        return not isinstance(other, ShaFile) or self.id != other.id

    def __eq__(self, other: object) -> bool:
        """Return True if the SHAs of the two objects match."""
        return isinstance(other, ShaFile) and self.id == other.id

    def __lt__(self, other: object) -> bool:
        """Return whether SHA of this object is less than the other."""
        if not isinstance(other, ShaFile):
            raise TypeError
        return self.id < other.id


def object_header(num_type: int, length: int) -> bytes:
    """Return an object header for the given numeric type and text length."""
    cls = object_class(num_type)
    if cls is None:
        raise AssertionError(f"unsupported class type num: {num_type}")
    return cls.type_name + b" " + str(length).encode("ascii") + b"\0"


class Blob(ShaFile):
    """A Git Blob object."""

    __slots__ = ()

    type_name = b"blob"
    type_num = 3

    _chunked_text: list[bytes]

    def __init__(self) -> None:
        """Initialize a new Blob object."""
        super().__init__()
        self._chunked_text = []
        self._needs_serialization = False

    def _get_data(self) -> bytes:
        return self.as_raw_string()

    def _set_data(self, data: bytes) -> None:
        self.set_raw_string(data)

    data = property(
        _get_data, _set_data, doc="The text contained within the blob object."
    )

    def _get_chunked(self) -> list[bytes]:
        return self._chunked_text

    def _set_chunked(self, chunks: list[bytes]) -> None:
        self._chunked_text = chunks

    def _serialize(self) -> list[bytes]:
        return self._chunked_text

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._chunked_text = chunks

    chunked = property(
        _get_chunked,
        _set_chunked,
        doc="The text in the blob object, as chunks (not necessarily lines)",
    )


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: ObjectID


def posixpath_join(base: bytes, name: bytes) -> bytes:
    """Join two tree paths the way git does."""
    if not base:
        return name
    return base + b"/" + name


def parse_tree(text: bytes, strict: bool = False) -> Iterator[tuple[bytes, int, bytes]]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
      strict: If True, enforce canonical mode strings
    Returns: iterator of tuples of (name, mode, sha)

    Raises:
      ObjectFormatException: if the object was malformed in some way
    """
    count = 0
    length = len(text)
    while count < length:
        mode_end = text.index(b" ", count)
        mode_text = text[count:mode_end]
        if strict and mode_text.startswith(b"0"):
            raise ObjectFormatException(f"Invalid mode {mode_text!r}")
        try:
            mode = int(mode_text, 8)
        except ValueError as exc:
            raise ObjectFormatException(f"Invalid mode {mode_text!r}") from exc
        name_end = text.index(b"\0", mode_end)
        name = text[mode_end + 1 : name_end]
        count = name_end + 21
        sha = text[name_end + 1 : count]
        if len(sha) != 20:
            raise ObjectFormatException("Sha has invalid length")
        hexsha = sha_to_hex(sha)
        yield (name, mode, hexsha)


def serialize_tree(items: Iterable[tuple[bytes, int, bytes]]) -> Iterator[bytes]:
    """Serialize the items in a tree to a text.

    Args:
      items: Sorted iterable over (name, mode, sha) tuples
    Returns: Serialized tree text as chunks
    """
    for name, mode, hexsha in items:
        yield (
            (f"{mode:04o}").encode("ascii") + b" " + name + b"\0" + hex_to_sha(hexsha)
        )


def key_entry(entry: tuple[bytes, tuple[int, ObjectID]]) -> bytes:
    """Sort key for tree entry.

    Args:
      entry: (name, value) tuple
    """
    (name, (mode, _sha)) = entry
    if stat.S_ISDIR(mode):
        name += b"/"
    return name


def sorted_tree_items(
    entries: dict[bytes, tuple[int, ObjectID]],
) -> Iterator[TreeEntry]:
    """Iterate over a tree entries dictionary.

    Args:
      entries: Dictionary mapping names to (mode, sha) tuples
    Returns: Iterator over (name, mode, hexsha)
    """
    for name, entry in sorted(entries.items(), key=key_entry):
        mode, hexsha = entry
        # Stricter type checks than normal to mirror checks in the Rust version.
        mode = int(mode)
        if not isinstance(hexsha, bytes):
            raise TypeError(f"Expected bytes for SHA, got {hexsha!r}")
        yield TreeEntry(name, mode, hexsha)


class Tree(ShaFile):
    """A Git tree object."""

    __slots__ = "_entries"

    type_name = b"tree"
    type_num = 2

    def __init__(self) -> None:
        """Initialize an empty Tree."""
        super().__init__()
        self._entries: dict[bytes, tuple[int, ObjectID]] = {}

    def __contains__(self, name: bytes) -> bool:
        """Check if name exists in tree."""
        return name in self._entries

    def __getitem__(self, name: bytes) -> tuple[int, ObjectID]:
        """Get tree entry by name."""
        return self._entries[name]

    def __setitem__(self, name: bytes, value: tuple[int, ObjectID]) -> None:
        """Set a tree entry by name.

        Args:
          name: The name of the entry, as a string.
          value: A tuple of (mode, hexsha), where mode is the mode of the
            entry as an integral type and hexsha is the hex SHA of the entry as
            a string.
        """
        mode, hexsha = value
        self._entries[name] = (mode, hexsha)
        self._needs_serialization = True

    def __delitem__(self, name: bytes) -> None:
        """Delete tree entry by name."""
        del self._entries[name]
        self._needs_serialization = True

    def __len__(self) -> int:
        """Return number of entries in tree."""
        return len(self._entries)

    def __iter__(self) -> Iterator[bytes]:
        """Iterate over tree entry names."""
        return iter(self._entries)

    def add(self, name: bytes, mode: int, hexsha: ObjectID) -> None:
        """Add an entry to the tree.

        Args:
          mode: The mode of the entry as an integral type. Not all
            possible modes are supported by git; see check() for details.
          name: The name of the entry, as a string.
          hexsha: The hex SHA of the entry as a string.
        """
        self._entries[name] = mode, hexsha
        self._needs_serialization = True

    def iteritems(self) -> Iterator[TreeEntry]:
        """Iterate over entries.

        Returns: iterator over (name, mode, sha) tuples in serialization order
        """
        return sorted_tree_items(self._entries)

    def items(self) -> list[TreeEntry]:
        """Return the sorted entries in this tree.

        Returns: List with (name, mode, sha) tuples
        """
        return list(self.iteritems())

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the entries in the tree."""
        try:
            parsed_entries = parse_tree(b"".join(chunks))
            self._entries = {n: (m, s) for n, m, s in parsed_entries}
        except ValueError as exc:
            raise ObjectFormatException(exc) from exc

    def _serialize(self) -> list[bytes]:
        return list(serialize_tree(self.iteritems()))



class Tag(ShaFile):
    """A Git Tag object."""

    type_name = b"tag"
    type_num = 4

    __slots__ = (
        "_message",
        "_name",
        "_object_class",
        "_object_sha",
        "_tag_time",
        "_tag_timezone",
        "_tag_timezone_neg_utc",
        "_tagger",
    )

    _message: bytes | None
    _name: bytes | None
    _object_class: type[ShaFile] | None
    _object_sha: ObjectID | None
    _tagger: bytes | None
    _tag_time: int | None
    _tag_timezone: int | None
    _tag_timezone_neg_utc: bool | None

    def __init__(self) -> None:
        """Initialize a new Tag object."""
        super().__init__()
        self._tagger = None
        self._tag_time = None
        self._tag_timezone = None
        self._tag_timezone_neg_utc = False
        self._message = None
        self._name = None
        self._object_class = None
        self._object_sha = None

    def _serialize(self) -> list[bytes]:
        headers = []
        if self._object_sha is None or self._object_class is None:
            raise ObjectFormatException("missing object in tag")
        headers.append((_OBJECT_HEADER, self._object_sha))
        headers.append((_TYPE_HEADER, self._object_class.type_name))
        if self._name is None:
            raise ObjectFormatException("missing name in tag")
        headers.append((_TAG_HEADER, self._name))
        if self._tagger:
            if self._tag_time is None:
                headers.append((_TAGGER_HEADER, self._tagger))
            else:
                assert self._tag_timezone is not None
                headers.append(
                    (
                        _TAGGER_HEADER,
                        format_time_entry(
                            self._tagger,
                            self._tag_time,
                            (self._tag_timezone, bool(self._tag_timezone_neg_utc)),
                        ),
                    )
                )
        return list(_format_message(headers, self._message))

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the metadata attached to the tag."""
        self._tagger = None
        self._tag_time = None
        self._tag_timezone = None
        self._tag_timezone_neg_utc = False
        for field, value in _parse_message(chunks):
            if field == _OBJECT_HEADER:
                self._object_sha = value
            elif field == _TYPE_HEADER:
                assert isinstance(value, bytes)
                obj_class = object_class(value)
                if not obj_class:
                    raise ObjectFormatException(f"Not a known type: {value!r}")
                self._object_class = obj_class
            elif field == _TAG_HEADER:
                self._name = value
            elif field == _TAGGER_HEADER:
                if value is None:
                    raise ObjectFormatException("missing tagger value")
                (
                    self._tagger,
                    self._tag_time,
                    (self._tag_timezone, self._tag_timezone_neg_utc),
                ) = parse_time_entry(value)
            elif field is None:
                self._message = value
            else:
                raise ObjectFormatException(
                    f"Unknown field {field.decode('ascii', 'replace')}"
                )

    def _get_object(self) -> tuple[type[ShaFile], ObjectID]:
        """Get the object pointed to by this tag.

        Returns: tuple of (object class, sha).
        """
        if self._object_class is None or self._object_sha is None:
            raise ValueError("Tag object is not properly initialized")
        return (self._object_class, self._object_sha)

    def _set_object(self, value: tuple[type[ShaFile], ObjectID]) -> None:
        (self._object_class, self._object_sha) = value
        self._needs_serialization = True

    object = property(_get_object, _set_object)

    name = serializable_property("name", "The name of this tag")
    tagger = serializable_property(
        "tagger", "Returns the name of the person who created this tag"
    )
    tag_time = serializable_property(
        "tag_time",
        "The creation timestamp of the tag.  As the number of seconds since the epoch",
    )
    tag_timezone = serializable_property(
        "tag_timezone", "The timezone that tag_time is in."
    )
    message = serializable_property("message", "the message attached to this tag")


class Commit(ShaFile):
    """A git commit object."""

    type_name = b"commit"
    type_num = 1

    __slots__ = (
        "_author",
        "_author_time",
        "_author_timezone",
        "_author_timezone_neg_utc",
        "_commit_time",
        "_commit_timezone",
        "_commit_timezone_neg_utc",
        "_committer",
        "_encoding",
        "_extra",
        "_message",
        "_parents",
        "_tree",
    )

    def __init__(self) -> None:
        """Initialize an empty Commit."""
        super().__init__()
        self._tree: ObjectID | None = None
        self._parents: list[ObjectID] = []
        self._author: bytes | None = None
        self._author_time: int | None = None
        self._author_timezone: int | None = 0
        self._committer: bytes | None = None
        self._commit_time: int | None = None
        self._commit_timezone: int | None = 0
        self._encoding: bytes | None = None
        self._extra: list[tuple[bytes, bytes]] = []
        self._author_timezone_neg_utc: bool | None = False
        self._commit_timezone_neg_utc: bool | None = False
        self._message: bytes | None = None

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._parents = []
        self._extra = []
        self._tree = None
        author_info: tuple[bytes | None, int | None, tuple[int | None, bool]] = (
            None,
            None,
            (None, False),
        )
        commit_info: tuple[bytes | None, int | None, tuple[int | None, bool]] = (
            None,
            None,
            (None, False),
        )
        self._encoding = None
        self._message = None
        for field, value in _parse_message(chunks):
            if field == _TREE_HEADER:
                self._tree = value
            elif field == _PARENT_HEADER:
                assert value is not None
                self._parents.append(value)
            elif field == _AUTHOR_HEADER:
                if value is None:
                    raise ObjectFormatException("missing author value")
                author_info = parse_time_entry(value)
            elif field == _COMMITTER_HEADER:
                if value is None:
                    raise ObjectFormatException("missing committer value")
                commit_info = parse_time_entry(value)
            elif field == _ENCODING_HEADER:
                self._encoding = value
            elif field is None:
                self._message = value
            else:
                # Everything else (mergetag, gpgsig, unknown headers) keeps
                # its original position relative to the other extra headers.
                self._extra.append((field, value if value is not None else b""))

        (
            self._author,
            self._author_time,
            (self._author_timezone, self._author_timezone_neg_utc),
        ) = author_info
        (
            self._committer,
            self._commit_time,
            (self._commit_timezone, self._commit_timezone_neg_utc),
        ) = commit_info

    def _serialize(self) -> list[bytes]:
        headers = []
        if self._tree is None:
            raise ObjectFormatException("missing tree in commit")
        headers.append((_TREE_HEADER, self._tree))
        for p in self._parents:
            headers.append((_PARENT_HEADER, p))
        headers.append(
            (
                _AUTHOR_HEADER,
                format_time_entry(
                    self._author,
                    self._author_time,
                    (self._author_timezone, bool(self._author_timezone_neg_utc)),
                ),
            )
        )
        headers.append(
            (
                _COMMITTER_HEADER,
                format_time_entry(
                    self._committer,
                    self._commit_time,
                    (self._commit_timezone, bool(self._commit_timezone_neg_utc)),
                ),
            )
        )
        if self.encoding:
            headers.append((_ENCODING_HEADER, self.encoding))
        for k, v in self._extra:
            headers.append((k, v))
        return list(_format_message(headers, self._message))

    tree = serializable_property("tree", "Tree that is the state of this commit")

    def _get_parents(self) -> list[ObjectID]:
        """Return a list of parents of this commit."""
        return self._parents

    def _set_parents(self, value: list[ObjectID]) -> None:
        """Set a list of parents of this commit."""
        self._needs_serialization = True
        self._parents = value

    parents = property(
        _get_parents,
        _set_parents,
        doc="Parents of this commit, by their SHA1.",
    )

    def _get_extra(self) -> list[tuple[bytes, bytes]]:
        """Return extra settings of this commit."""
        return self._extra

    def _set_extra(self, value: list[tuple[bytes, bytes]]) -> None:
        self._needs_serialization = True
        self._extra = value

    extra = property(
        _get_extra,
        _set_extra,
        doc="Extra header fields not understood (presumably added in a "
        "newer version of git). Kept verbatim so the object can be correctly "
        "reserialized. For private commit metadata, use pseudo-headers in "
        "Commit.message, rather than this field.",
    )

    @property
    def gpgsig(self) -> bytes | None:
        """The signature on this commit, if any."""
        for field, value in self._extra:
            if field in _GPGSIG_HEADERS:
                return value
        return None

    def strip_signature(self) -> bool:
        """Remove any signature headers.

        Returns: True if a signature was removed
        """
        extra = [(k, v) for (k, v) in self._extra if k not in _GPGSIG_HEADERS]
        if len(extra) == len(self._extra):
            return False
        self.extra = extra
        return True

    author = serializable_property("author", "The name of the author of the commit")

    committer = serializable_property(
        "committer", "The name of the committer of the commit"
    )

    message = serializable_property("message", "The commit message")

    commit_time = serializable_property(
        "commit_time",
        "The timestamp of the commit. As the number of seconds since the epoch.",
    )

    commit_timezone = serializable_property(
        "commit_timezone", "The zone the commit time is in"
    )

    author_time = serializable_property(
        "author_time",
        "The timestamp the commit was written. As the number of "
        "seconds since the epoch.",
    )

    author_timezone = serializable_property(
        "author_timezone", "Returns the zone the author time is in."
    )

    encoding = serializable_property("encoding", "Encoding of the commit message.")


OBJECT_CLASSES = (
    Commit,
    Tree,
    Blob,
    Tag,
)

_TYPE_MAP: dict[bytes | int, type[ShaFile]] = {}

for cls in OBJECT_CLASSES:
    _TYPE_MAP[cls.type_name] = cls
    _TYPE_MAP[cls.type_num] = cls
