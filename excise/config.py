# config.py -- Reading and writing configuration files
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

"""Reading and writing git configuration files.

Settings for excise live in the ``[excise]`` section, either in the mirror's
own ``config`` file or in a separate file::

    [excise]
        pattern = *.{zip,jar}
        pattern = big.bin
        folder = build
        stripBlobsBiggerThan = 100m
        pruneEmpty = false
        protect = refs/heads/main
        workers = 8
        keepOriginal = false
        reportDir = /var/tmp/excise-report

Section and variable names are case-insensitive, subsection names are not.
"""

__all__ = [
    "DEFAULT_WORKERS",
    "Config",
    "ConfigDict",
    "ConfigFile",
    "RewriteSettings",
    "policy_from_config",
]

import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from typing import IO

from .file import GitFile, LockedFile
from .objects import ObjectID
from .policy import DEFAULT_MAX_BLOB_SIZE, MatchPolicy, parse_size

Section = tuple[bytes, ...]
SectionLike = bytes | str | tuple[bytes | str, ...]
Name = bytes
NameLike = bytes | str
Value = bytes
ValueLike = bytes | str

SECTION = b"excise"

DEFAULT_WORKERS = min(32, (os.cpu_count() or 1) + 4)


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        If a setting occurs several times, the last value wins.

        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        """Retrieve all values of a multivar configuration setting.

        Returns: Iterator over values, in file order; empty if not set
        """
        raise NotImplementedError(self.get_multivar)

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as boolean.

        Accepts the same spellings as git: true/yes/on/1 and false/no/off/0.
        A variable without a value ("[excise] pruneEmpty") is true.
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        if value.lower() in (b"true", b"yes", b"on", b"1"):
            return True
        if value.lower() in (b"false", b"no", b"off", b"0", b""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def get_int(
        self, section: SectionLike, name: NameLike, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as integer, with k/m/g suffixes."""
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        return parse_size(value)

    def set(self, section: SectionLike, name: NameLike, value: ValueLike | bool) -> None:
        """Set a configuration value, replacing any existing values."""
        raise NotImplementedError(self.set)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Iterate over the configuration pairs for a specific section."""
        raise NotImplementedError(self.items)

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections."""
        raise NotImplementedError(self.sections)

    def has_section(self, name: SectionLike) -> bool:
        return _section_key(name) in set(self.sections())


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def _section_key(section: SectionLike) -> Section:
    if not isinstance(section, tuple):
        section = (section,)
    parts = [_to_bytes(part) for part in section]
    return (parts[0].lower(), *parts[1:])


class ConfigDict(Config):
    """Git configuration stored in a dictionary.

    Each section maps to a list of (name, value) pairs so that multivars keep
    their order and original spelling.
    """

    def __init__(self) -> None:
        self._values: dict[Section, list[tuple[Name, Value]]] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        key = _to_bytes(name).lower()
        for setting, value in self._values.get(_section_key(section), []):
            if setting.lower() == key:
                yield value

    def get(self, section: SectionLike, name: NameLike) -> Value:
        values = list(self.get_multivar(section, name))
        if not values:
            raise KeyError(name)
        return values[-1]

    def set(self, section: SectionLike, name: NameLike, value: ValueLike | bool) -> None:
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        name = _to_bytes(name)
        entries = self._values.setdefault(_section_key(section), [])
        entries[:] = [(k, v) for (k, v) in entries if k.lower() != name.lower()]
        entries.append((name, _to_bytes(value)))

    def add(self, section: SectionLike, name: NameLike, value: ValueLike | bool) -> None:
        """Add a value to a configuration setting, creating a multivar if needed."""
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        self._values.setdefault(_section_key(section), []).append(
            (_to_bytes(name), _to_bytes(value))
        )

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        return iter(list(self._values.get(_section_key(section), [])))

    def sections(self) -> Iterator[Section]:
        return iter(list(self._values.keys()))


_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_COMMENT_START = b"#;"
_BLANK = b" \t"
_UNESCAPE = {
    _BACKSLASH: b"\\",
    _QUOTE: b'"',
    ord("n"): b"\n",
    ord("t"): b"\t",
    ord("b"): b"\b",
}
_VARIABLE_NAME = re.compile(rb"[A-Za-z0-9-]+")
_SECTION_NAME = re.compile(rb"[A-Za-z0-9.-]+")
_NEEDS_QUOTES = re.compile(rb"\A[ \t]|[ \t]\Z|[#;]")


def _format_string(value: bytes) -> bytes:
    escaped = (
        value.replace(b"\\", b"\\\\")
        .replace(b"\n", b"\\n")
        .replace(b"\t", b"\\t")
        .replace(b'"', b'\\"')
    )
    if _NEEDS_QUOTES.search(value):
        return b'"' + escaped + b'"'
    return escaped


def _parse_value(raw: bytes) -> bytes:
    """Turn the right hand side of a setting into its value.

    Quotes are removed, escapes resolved and a trailing comment dropped.
    Unquoted whitespace is only kept between other characters.
    """
    out = bytearray()
    blanks = bytearray()
    quoted = False

    def emit(data: bytes) -> None:
        out.extend(blanks)
        blanks.clear()
        out.extend(data)

    chars = iter(raw.strip())
    for c in chars:
        if c == _BACKSLASH:
            escaped = next(chars, None)
            if escaped is None:
                raise ValueError("escape character at end of value")
            if escaped not in _UNESCAPE:
                raise ValueError(f"unknown escape sequence \\{chr(escaped)}")
            emit(_UNESCAPE[escaped])
        elif c == _QUOTE:
            quoted = not quoted
        elif quoted:
            emit(bytes([c]))
        elif c in _COMMENT_START:
            break
        elif c in _BLANK:
            blanks.append(c)
        else:
            emit(bytes([c]))
    if quoted:
        raise ValueError("missing end quote")
    return bytes(out)


def _strip_comment(line: bytes) -> bytes:
    quoted = False
    for i, c in enumerate(line):
        if c == _QUOTE:
            quoted = not quoted
        elif not quoted and c in _COMMENT_START:
            return line[:i]
    return line


def _parse_section_header(line: bytes) -> tuple[Section, bytes]:
    """Parse "[name]", "[name.sub]" or '[name "sub"]' at the start of line.

    Returns: tuple of (section key, rest of the line)
    """
    line = _strip_comment(line).rstrip()
    quoted = escaped = False
    for end, c in enumerate(line):
        if escaped:
            escaped = False
        elif c == _BACKSLASH:
            escaped = True
        elif c == _QUOTE:
            quoted = not quoted
        elif c == ord("]") and not quoted:
            break
    else:
        raise ValueError("expected trailing ]")
    name, sep, subsection = line[1:end].partition(b" ")
    if not _SECTION_NAME.fullmatch(name):
        raise ValueError(f"invalid section name {name!r}")
    if not sep:
        return _section_key(tuple(name.split(b".", 1))), line[end + 1 :]
    if len(subsection) < 2 or subsection[0] != _QUOTE or subsection[-1] != _QUOTE:
        raise ValueError(f"invalid subsection {subsection!r}")
    return _section_key((name, subsection[1:-1])), line[end + 1 :]


class ConfigFile(ConfigDict):
    """A Git configuration file, like a mirror's config."""

    def __init__(self) -> None:
        super().__init__()
        self.path: str | None = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Parse configuration from a file-like object.

        Raises:
          ValueError: if the file is not valid git configuration
        """
        ret = cls()
        section: Section | None = None
        # Setting whose value continues on the next line.
        pending: tuple[Name, bytes] | None = None
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0:
                line = line.removeprefix(b"\xef\xbb\xbf")
            line = line.lstrip()
            if pending is not None:
                name, value = pending
                value += line.rstrip(b"\r\n")
            else:
                if line.startswith(b"["):
                    section, line = _parse_section_header(line)
                    ret._values.setdefault(section, [])
                if not _strip_comment(line).strip():
                    continue
                if section is None:
                    raise ValueError(f"setting {line!r} without section")
                name, sep, value = line.partition(b"=")
                name = name.strip()
                if not _VARIABLE_NAME.fullmatch(name):
                    raise ValueError(f"invalid variable name {name!r}")
                # A variable without "=" is a boolean set to true.
                value = value.rstrip(b"\r\n") if sep else b"true"
            if value.endswith(b"\\"):
                pending = (name, value[:-1])
                continue
            pending = None
            assert section is not None
            ret._values[section].append((name, _parse_value(value)))
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read a configuration file from disk, remembering its path."""
        path = os.fspath(path)
        with GitFile(path, "rb") as f:
            ret = cls.from_file(f)  # type: ignore[arg-type]
        ret.path = path
        return ret

    def write_to_path(self, path: str | os.PathLike[str] | None = None) -> None:
        """Write the configuration to path, by default the one it was read from."""
        if path is None:
            path = self.path
        if path is None:
            raise ValueError("no path to write configuration to")
        with GitFile(path, "wb") as f:
            self.write_to_file(f)

    def write_to_file(self, f: "IO[bytes] | LockedFile") -> None:
        for (name, *subsection), entries in self._values.items():
            if subsection:
                f.write(b"[" + name + b' "' + subsection[0] + b'"]\n')
            else:
                f.write(b"[" + name + b"]\n")
            for key, value in entries:
                f.write(b"\t" + key + b" = " + _format_string(value) + b"\n")


def _get_multivar(config: Config, name: str) -> list[bytes]:
    return [v for v in config.get_multivar(SECTION, name) if v]


@dataclass
class RewriteSettings:
    """Settings for a rewrite run, from configuration and the command line."""

    patterns: list[bytes] = field(default_factory=list)
    folder_patterns: list[bytes] = field(default_factory=list)
    max_blob_size: int | None = DEFAULT_MAX_BLOB_SIZE
    prune_empty: bool = False
    protect: list[bytes] = field(default_factory=list)
    workers: int = DEFAULT_WORKERS
    keep_original: bool = False
    report_dir: str | None = None
    retries: int = 3

    @classmethod
    def from_config(cls, config: Config) -> "RewriteSettings":
        """Read settings from the [excise] section of a configuration.

        Raises:
          ValueError: if a setting has an invalid value
        """
        settings = cls()
        settings.patterns = _get_multivar(config, "pattern")
        settings.folder_patterns = _get_multivar(config, "folder")
        try:
            size = config.get(SECTION, "stripBlobsBiggerThan")
        except KeyError:
            pass
        else:
            if size.strip().lower() in (b"", b"none", b"off"):
                settings.max_blob_size = None
            else:
                settings.max_blob_size = parse_size(size)
        settings.prune_empty = bool(config.get_boolean(SECTION, "pruneEmpty", False))
        settings.protect = _get_multivar(config, "protect")
        workers = config.get_int(SECTION, "workers", DEFAULT_WORKERS)
        if workers is None or workers < 1:
            raise ValueError(f"invalid number of workers: {workers!r}")
        settings.workers = workers
        settings.keep_original = bool(
            config.get_boolean(SECTION, "keepOriginal", False)
        )
        try:
            settings.report_dir = os.fsdecode(config.get(SECTION, "reportDir"))
        except KeyError:
            pass
        retries = config.get_int((b"store",), "retries", 3)
        settings.retries = 3 if retries is None else retries
        return settings

    def merge(self, **overrides: object) -> "RewriteSettings":
        """Return a copy with the given (non-None) settings overridden.

        Used for command line options, which take precedence over
        configuration.
        """
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})  # type: ignore[arg-type]

    def to_policy(self, protected_blobs: Iterable[ObjectID] = frozenset()) -> MatchPolicy:
        """Build the match policy described by these settings."""
        return MatchPolicy(
            patterns=self.patterns,
            folder_patterns=self.folder_patterns,
            max_blob_size=self.max_blob_size,
            protected_blobs=protected_blobs,
            prune_empty=self.prune_empty,
        )


def policy_from_config(
    config: Config, protected_blobs: Iterable[ObjectID] = frozenset()
) -> MatchPolicy:
    """Build a match policy from the [excise] section of a configuration."""
    return RewriteSettings.from_config(config).to_policy(protected_blobs)
