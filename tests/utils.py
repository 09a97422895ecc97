# utils.py -- Test utilities for excise
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

"""Utility functions common to excise tests."""

__all__ = [
    "F",
    "build_commit_graph",
    "commit_tree",
    "make_commit",
    "make_object",
    "make_tag",
    "write_pack",
]

import os
import posixpath
import stat
import struct
import zlib
from collections.abc import Iterable, Sequence
from hashlib import sha1

from excise.object_store import BaseObjectStore
from excise.objects import Commit, ObjectID, ShaFile, Tag, Tree, hex_to_sha

# Plain files with all permission bits cleared.
F = 0o100644

DEFAULT_TIME = 1262304000  # 2010-01-01 00:00:00 UTC


def make_object(cls: type[ShaFile], **attrs: object) -> ShaFile:
    """Make an object for testing and assign some members.

    Args:
      cls: The class of the object to create
      attrs: Attributes to set on the new object
    Returns: A newly initialized object of type cls.
    """
    obj = cls()
    for name, value in attrs.items():
        setattr(obj, name, value)
    return obj


def make_commit(**attrs: object) -> Commit:
    """Make a Commit object with a default set of members.

    Args:
      attrs: dict of attributes to overwrite from the default values.
    Returns: A newly initialized Commit object.
    """
    all_attrs = {
        "author": b"Test Author <test@nodomain.com>",
        "author_time": DEFAULT_TIME,
        "author_timezone": 0,
        "committer": b"Test Committer <test@nodomain.com>",
        "commit_time": DEFAULT_TIME,
        "commit_timezone": 0,
        "message": b"Test message.",
        "parents": [],
        "tree": b"0" * 40,
    }
    all_attrs.update(attrs)
    return make_object(Commit, **all_attrs)  # type: ignore[return-value]


def make_tag(target: ShaFile, **attrs: object) -> Tag:
    """Make a Tag object with a default set of values.

    Args:
      target: object to be tagged (Commit, Blob, Tree, etc)
      attrs: dict of attributes to overwrite from the default values.
    Returns: A newly initialized Tag object.
    """
    all_attrs = {
        "tagger": b"Test Author <test@nodomain.com>",
        "tag_time": DEFAULT_TIME,
        "tag_timezone": 0,
        "message": b"Test message.",
        "object": (type(target), target.id),
        "name": b"Test Tag",
    }
    all_attrs.update(attrs)
    return make_object(Tag, **all_attrs)  # type: ignore[return-value]


def commit_tree(
    object_store: BaseObjectStore, blobs: Iterable[tuple[bytes, ObjectID, int]]
) -> ObjectID:
    """Commit a new tree built from (path, sha, mode) entries.

    Intermediate trees are created as needed and added to the store.

    Returns: identity of the root tree
    """
    trees: dict[bytes, dict] = {b"": {}}

    def add_tree(path: bytes) -> dict:
        if path in trees:
            return trees[path]
        dirname, basename = posixpath.split(path)
        parent = add_tree(dirname)
        newtree: dict = {}
        parent[basename] = newtree
        trees[path] = newtree
        return newtree

    for path, sha, mode in blobs:
        tree_path, basename = posixpath.split(path)
        add_tree(tree_path)[basename] = (mode, sha)

    def build_tree(path: bytes) -> ObjectID:
        tree = Tree()
        for basename, entry in trees[path].items():
            if isinstance(entry, dict):
                mode = stat.S_IFDIR
                sha = build_tree(posixpath.join(path, basename))
            else:
                (mode, sha) = entry
            tree.add(basename, mode, sha)
        object_store.add_object(tree)
        return tree.id

    return build_tree(b"")


def build_commit_graph(
    object_store: BaseObjectStore,
    commit_spec: Sequence[Sequence[int]],
    trees: dict[int, list] | None = None,
    attrs: dict[int, dict[str, object]] | None = None,
) -> list[Commit]:
    """Build a commit graph from a concise description.

    For example [[1], [2, 1], [3, 1, 2]] builds a root, a child of it
    and a merge of both.

    Commits are numbered with integers. Each entry of commit_spec is a list
    whose first element is the number of the commit and whose remaining
    elements are its parents; parents must appear before their children.

    Args:
      object_store: An ObjectStore to commit objects to.
      commit_spec: An iterable of iterables of ints defining the commit
        graph.
      trees: An optional dict of commit number -> tree spec for building
        trees for commits. The tree spec is an iterable of (path, blob) or
        (path, blob, mode) tuples. Blobs are added to the store.
      attrs: A dict of commit number -> (dict of attribute -> value) for
        assigning additional values to the commits.
    Returns: The list of commit objects created.
    Raises:
      ValueError: If an undefined commit identifier is listed as a parent.
    """
    if trees is None:
        trees = {}
    if attrs is None:
        attrs = {}
    commit_time = DEFAULT_TIME
    nums: dict[int, ObjectID] = {}
    commits = []

    for commit in commit_spec:
        commit_num = commit[0]
        try:
            parent_ids = [nums[pn] for pn in commit[1:]]
        except KeyError as exc:
            (missing_parent,) = exc.args
            raise ValueError(f"Unknown parent {missing_parent}") from exc

        blobs = []
        for entry in trees.get(commit_num, []):
            if len(entry) == 2:
                path, blob = entry
                mode = F
            else:
                path, blob, mode = entry
            blobs.append((path, blob.id, mode))
            object_store.add_object(blob)
        tree_id = commit_tree(object_store, blobs)

        commit_attrs: dict[str, object] = {
            "message": b"Commit %d" % commit_num,
            "parents": parent_ids,
            "tree": tree_id,
            "commit_time": commit_time,
            "author_time": commit_time,
        }
        commit_attrs.update(attrs.get(commit_num, {}))
        commit_obj = make_commit(**commit_attrs)

        commit_time = commit_attrs["commit_time"] + 100  # type: ignore[operator]
        nums[commit_num] = commit_obj.id
        object_store.add_object(commit_obj)
        commits.append(commit_obj)

    return commits


def _pack_object_header(type_num: int, size: int) -> bytes:
    byte = (type_num << 4) | (size & 0x0F)
    size >>= 4
    header = bytearray()
    while size:
        header.append(byte | 0x80)
        byte = size & 0x7F
        size >>= 7
    header.append(byte)
    return bytes(header)


def write_pack(basename: str, objects: Sequence[ShaFile]) -> str:
    """Write objects to an undeltified pack with a version 2 index.

    Args:
      basename: Path of the pack without the .pack and .idx suffixes
      objects: Objects to write; must be distinct
    Returns: the basename
    """
    data = bytearray(b"PACK" + struct.pack(">LL", 2, len(objects)))
    entries = []
    for obj in objects:
        raw = obj.as_raw_string()
        chunk = _pack_object_header(obj.type_num, len(raw)) + zlib.compress(raw)
        entries.append((hex_to_sha(obj.id), len(data), zlib.crc32(chunk)))
        data += chunk
    pack_checksum = sha1(data).digest()
    data += pack_checksum
    os.makedirs(os.path.dirname(basename), exist_ok=True)
    with open(basename + ".pack", "wb") as f:
        f.write(data)

    entries.sort()
    index = bytearray(b"\377tOc" + struct.pack(">L", 2))
    counts = [0] * 256
    for name, _, _ in entries:
        counts[name[0]] += 1
    total = 0
    for count in counts:
        total += count
        index += struct.pack(">L", total)
    for name, _, _ in entries:
        index += name
    for _, _, crc in entries:
        index += struct.pack(">L", crc & 0xFFFFFFFF)
    for _, offset, _ in entries:
        index += struct.pack(">L", offset)
    index += pack_checksum
    index += sha1(index).digest()
    with open(basename + ".idx", "wb") as f:
        f.write(index)
    return basename
