# walk.py -- Walking the object graph of a mirror
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

"""Dependency ordered traversal of an object graph.

Every object is produced after all objects it refers to: parents before
children, blobs and subtrees before the trees that contain them, trees before
their commits and targets before the tags that point at them.

Traversal is depth first with an explicit stack, so history of any length can
be walked without hitting the recursion limit. Only identities are kept
between steps; object bodies are read when an object is expanded and dropped
straight after.
"""

__all__ = [
    "GraphEntry",
    "ObjectGraphWalker",
    "find_reachable_objects",
]

import logging
import stat
from collections.abc import Iterable, Iterator, Mapping
from typing import NamedTuple

from .errors import CorruptGraph, ObjectNotFound
from .object_store import BaseObjectStore
from .objects import S_ISGITLINK, Blob, Commit, ObjectID, Tag, Tree

logger = logging.getLogger(__name__)


class GraphEntry(NamedTuple):
    """A single object produced by a walk."""

    sha: ObjectID
    type_num: int


# Markers on the work stack.
_VISIT = 0
_EMIT = 1


class ObjectGraphWalker:
    """Walk every object reachable from a set of heads.

    Iterating over the walker starts a fresh traversal each time.

    Args:
      store: Object store to read from
      heads: Identities to start from, or a mapping of ref names to
        identities (used for error messages)

    Raises:
      CorruptGraph: while iterating, when a reference points at a missing
        object, at an object of the wrong type, or when a cycle is found
    """

    def __init__(
        self,
        store: BaseObjectStore,
        heads: Iterable[ObjectID] | Mapping[bytes, ObjectID],
    ) -> None:
        self.store = store
        if isinstance(heads, Mapping):
            self._heads = list(heads.items())
        else:
            self._heads = [(None, sha) for sha in heads]

    def __iter__(self) -> Iterator[GraphEntry]:
        return self._walk(include_trees=True)

    def iter_commits(self) -> Iterator[GraphEntry]:
        """Walk commits and tags only, parents first.

        Trees and blobs are not visited, which makes this much cheaper than
        a full walk.
        """
        return self._walk(include_trees=False)

    def _head_type(self, name: bytes | None, sha: ObjectID) -> int:
        try:
            return self.store.get_object_type(sha)
        except ObjectNotFound as exc:
            label = name.decode("utf-8", "replace") if name else "head"
            raise CorruptGraph(
                f"{label} points at missing object {sha.decode('ascii', 'replace')}",
                sha=sha,
                path=[name] if name else [],
            ) from exc

    def _load(self, sha: ObjectID, type_num: int, referrer: ObjectID | None):
        try:
            obj = self.store[sha]
        except ObjectNotFound as exc:
            raise CorruptGraph(
                f"missing object {sha.decode('ascii', 'replace')}"
                + (
                    f" referenced by {referrer.decode('ascii')}"
                    if referrer is not None
                    else ""
                ),
                sha=sha,
                path=[referrer, sha] if referrer is not None else [sha],
            ) from exc
        if obj.type_num != type_num:
            raise CorruptGraph(
                f"{sha.decode('ascii')} is a {obj.type_name.decode('ascii')}, "
                f"expected type {type_num}",
                sha=sha,
                path=[referrer, sha] if referrer is not None else [sha],
            )
        return obj

    def _children(
        self, obj: Commit | Tree | Tag, include_trees: bool
    ) -> list[tuple[ObjectID, int]]:
        if isinstance(obj, Commit):
            ret = [(parent, Commit.type_num) for parent in obj.parents]
            if include_trees:
                ret.append((obj.tree, Tree.type_num))
            return ret
        if isinstance(obj, Tree):
            ret = []
            for entry in obj.iteritems():
                if S_ISGITLINK(entry.mode):
                    # Submodule commits live in another repository.
                    continue
                if stat.S_ISDIR(entry.mode):
                    ret.append((entry.sha, Tree.type_num))
                else:
                    ret.append((entry.sha, Blob.type_num))
            return ret
        target_cls, target = obj.object
        if not include_trees and target_cls in (Tree, Blob):
            return []
        return [(target, target_cls.type_num)]

    def _walk(self, include_trees: bool) -> Iterator[GraphEntry]:
        done: set[ObjectID] = set()
        in_progress: set[ObjectID] = set()
        stack: list[tuple[int, ObjectID, int, ObjectID | None]] = []
        for name, sha in reversed(self._heads):
            type_num = self._head_type(name, sha)
            if not include_trees and type_num in (Tree.type_num, Blob.type_num):
                continue
            stack.append((_VISIT, sha, type_num, None))

        while stack:
            action, sha, type_num, referrer = stack.pop()
            if action == _EMIT:
                in_progress.discard(sha)
                done.add(sha)
                yield GraphEntry(sha, type_num)
                continue
            if sha in done:
                continue
            if sha in in_progress:
                raise CorruptGraph(
                    f"cycle detected at {sha.decode('ascii')}",
                    sha=sha,
                    path=[referrer, sha] if referrer is not None else [sha],
                )
            if type_num == Blob.type_num:
                if sha not in self.store:
                    raise CorruptGraph(
                        f"missing blob {sha.decode('ascii')}"
                        + (
                            f" referenced by {referrer.decode('ascii')}"
                            if referrer is not None
                            else ""
                        ),
                        sha=sha,
                        path=[referrer, sha] if referrer is not None else [sha],
                    )
                done.add(sha)
                yield GraphEntry(sha, type_num)
                continue
            obj = self._load(sha, type_num, referrer)
            in_progress.add(sha)
            stack.append((_EMIT, sha, type_num, referrer))
            for child, child_type in reversed(self._children(obj, include_trees)):
                if child not in done:
                    stack.append((_VISIT, child, child_type, sha))


def find_reachable_objects(
    store: BaseObjectStore,
    heads: Iterable[ObjectID] | Mapping[bytes, ObjectID],
) -> set[ObjectID]:
    """Find all objects reachable from a set of heads.

    Raises:
      CorruptGraph: if a reachable object is missing
    """
    reachable = {entry.sha for entry in ObjectGraphWalker(store, heads)}
    logger.debug("%d objects reachable", len(reachable))
    return reachable
