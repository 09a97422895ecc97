# rewrite.py -- Rewriting history without unwanted blobs
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

"""Rewrite an object graph with the blobs matched by a policy removed.

A rewrite runs in two passes over the graph reachable from a set of heads:

1. A scan walks every object, which validates the whole graph before anything
   is written, and reads the sizes of all blobs on a thread pool when the
   policy has a size rule.
2. Commits and tags are rewritten strictly parents first. Trees are rewritten
   on demand, bottom up, and cached.

The result is a :class:`RewriteMap` from original identities to rewritten
identities. Objects whose content does not change keep their identity and are
not recorded. Refs are only touched afterwards, by :func:`update_refs`.
"""

__all__ = [
    "TOMBSTONE",
    "RewriteContext",
    "RewriteMap",
    "Rewriter",
    "update_refs",
]

import logging
import stat
import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from .audit import AuditLog, RewriteReport
from .config import DEFAULT_WORKERS
from .errors import (
    AmbiguousMatch,
    DanglingRef,
    ObjectFormatException,
    ObjectNotFound,
    RefUpdateConflict,
    RewriteCancelled,
    StoreUnavailable,
)
from .file import FileLocked
from .object_store import BaseObjectStore
from .objects import (
    EMPTY_TREE_ID,
    S_ISGITLINK,
    Blob,
    Commit,
    ObjectID,
    ShaFile,
    Tag,
    Tree,
    posixpath_join,
)
from .policy import MatchPolicy
from .refs import ORIGINAL_PREFIX, RefsContainer
from .walk import ObjectGraphWalker

logger = logging.getLogger(__name__)


class _Tombstone:
    """Marker for an object removed from history."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "TOMBSTONE"

    def __reduce__(self) -> str:
        return "TOMBSTONE"


TOMBSTONE = _Tombstone()


class RewriteMap:
    """Mapping of original identities to rewritten identities.

    An entry is either a new identity or :data:`TOMBSTONE`. Entries are
    written once; recording a different value for an identity that is already
    mapped is an error. Identities that are not in the map are unchanged.

    For every tombstone the map keeps the rewritten identities that replace
    it in ancestry, so lookups can follow a removed commit to its nearest
    surviving ancestors.
    """

    def __init__(self) -> None:
        self._map: dict[ObjectID, ObjectID | _Tombstone] = {}
        self._survivors: dict[ObjectID, tuple[ObjectID, ...]] = {}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} with {len(self._map)} entries>"

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, sha: object) -> bool:
        return sha in self._map

    def __getitem__(self, sha: ObjectID) -> ObjectID | _Tombstone:
        return self._map[sha]

    def get(
        self, sha: ObjectID, default: ObjectID | _Tombstone | None = None
    ) -> ObjectID | _Tombstone | None:
        return self._map.get(sha, default)

    def items(self):
        return self._map.items()

    def _check_unset(self, sha: ObjectID, value: ObjectID | _Tombstone) -> None:
        existing = self._map.get(sha)
        if existing is not None and existing != value:
            raise ValueError(
                f"{sha.decode('ascii')} is already mapped to {existing!r}, "
                f"not {value!r}"
            )

    def record(self, old: ObjectID, new: ObjectID) -> None:
        """Record that ``old`` was rewritten as ``new``."""
        if old == new:
            return
        self._check_unset(old, new)
        self._map[old] = new

    def tombstone(self, old: ObjectID, survivors: Iterable[ObjectID] = ()) -> None:
        """Record that ``old`` was removed.

        Args:
          old: Original identity
          survivors: Rewritten identities that take its place as ancestors
        """
        self._check_unset(old, TOMBSTONE)
        self._map[old] = TOMBSTONE
        self._survivors[old] = tuple(survivors)

    def is_tombstoned(self, sha: ObjectID) -> bool:
        return self._map.get(sha) is TOMBSTONE

    def resolve(self, sha: ObjectID) -> list[ObjectID]:
        """Find the rewritten identities standing in for an original one.

        Returns: a single identity for a kept or rewritten object, the
            nearest surviving ancestors for a tombstoned commit, and an empty
            list when nothing survives
        """
        new = self._map.get(sha)
        if new is None:
            return [sha]
        if new is TOMBSTONE:
            return list(self._survivors[sha])
        return [new]  # type: ignore[list-item]


@dataclass
class RewriteContext:
    """State of a single rewrite, passed explicitly between the phases.

    Attributes:
      rewrite_map: Original to rewritten identities
      audit: Audit log of removed and rewritten objects
      report: Counters for the end-of-run report
      workers: Size of the thread pool used for scanning
      keep_original: Whether updated refs are saved under refs/original/
      cancel_event: Set to stop the rewrite at the next object
      refs_pending: Whether a rewrite produced changes not yet applied to refs
      kept_blobs: Blobs removed from trees that refs still point at directly
    """

    rewrite_map: RewriteMap = field(default_factory=RewriteMap)
    audit: AuditLog = field(default_factory=AuditLog)
    report: RewriteReport = field(default_factory=RewriteReport)
    workers: int = DEFAULT_WORKERS
    keep_original: bool = False
    cancel_event: threading.Event = field(default_factory=threading.Event)
    refs_pending: bool = False
    kept_blobs: set[ObjectID] = field(default_factory=set)

    def cancel(self) -> None:
        """Ask the rewrite to stop; safe to call from any thread."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RewriteCancelled()

    def warn(self, message: str) -> None:
        logger.warning("%s", message)
        self.report.warnings.append(message)
        self.audit.warn(message)


class _TreeFrame:
    """Work item for a tree being rewritten."""

    __slots__ = ("changed", "entries", "items", "path", "position", "tree_id")

    def __init__(self, tree_id: ObjectID, path: bytes, tree: Tree) -> None:
        self.tree_id = tree_id
        self.path = path
        self.items = tree.items()
        self.position = 0
        self.entries: list[tuple[bytes, int, ObjectID]] = []
        self.changed = False


class Rewriter:
    """Rewrites commits, trees and tags according to a match policy.

    Args:
      store: Object store to read from and write rewritten objects to
      policy: Decides which blobs and folders are removed
      context: Rewrite state; a fresh one is created if not given
    """

    def __init__(
        self,
        store: BaseObjectStore,
        policy: MatchPolicy,
        context: RewriteContext | None = None,
    ) -> None:
        self.store = store
        self.policy = policy
        self.context = context if context is not None else RewriteContext()
        self._path_sensitive = policy.path_sensitive
        self._tree_cache: dict[object, ObjectID | _Tombstone] = {}
        self.oversized: dict[ObjectID, int] = {}
        self.removed: dict[ObjectID, bytes] = {}
        self._kept: set[ObjectID] = set()
        self._ambiguous: set[ObjectID] = set()
        self._empty_tree_written = False

    @property
    def rewrite_map(self) -> RewriteMap:
        return self.context.rewrite_map

    @property
    def report(self) -> RewriteReport:
        return self.context.report

    def run(self, heads: Iterable[ObjectID] | Mapping[bytes, ObjectID]) -> RewriteMap:
        """Rewrite everything reachable from heads.

        Raises:
          CorruptGraph: if the graph is broken; nothing has been written then
          RewriteCancelled: if the context was cancelled
        Returns: the rewrite map
        """
        walker = ObjectGraphWalker(self.store, heads)
        self.scan(walker)
        for entry in walker.iter_commits():
            self.context.check_cancelled()
            if entry.type_num == Commit.type_num:
                self.rewrite_commit(entry.sha)
            else:
                self.rewrite_tag(entry.sha)
        if isinstance(heads, Mapping):
            heads = heads.values()
        for sha in heads:
            # Refs can point straight at trees and blobs.
            type_num = self.store.get_object_type(sha)
            if type_num == Tree.type_num:
                self.rewrite_tree(sha)
            elif type_num == Blob.type_num:
                kept = not self._blob_matches(sha, b"")
                if kept and self.rewrite_map.is_tombstoned(sha):
                    # Removed from trees, but the ref itself keeps it.
                    self.context.kept_blobs.add(sha)
        if self.report.changed:
            self.context.refs_pending = True
        logger.info(
            "Rewrote %d commits, %d trees and %d tags; pruned %d commits",
            self.report.rewritten_commits,
            self.report.rewritten_trees,
            self.report.rewritten_tags,
            self.report.pruned_commits,
        )
        return self.rewrite_map

    def scan(self, walker: ObjectGraphWalker) -> dict[ObjectID, int]:
        """Walk the whole graph, reading blob sizes if the policy needs them.

        Errors reading individual blobs are collected on the report.

        Returns: dictionary of blobs above the size threshold, with their sizes
        """
        needs_size = self.policy.needs_size
        workers = max(1, self.context.workers)
        window = workers * 4
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="excise-scan"
        )
        in_flight: dict[Future, ObjectID] = {}
        try:
            for entry in walker:
                if self.context.cancelled:
                    raise RewriteCancelled()
                if entry.type_num != Blob.type_num:
                    continue
                self.report.scanned_blobs += 1
                if not needs_size:
                    continue
                future = executor.submit(self.store.get_object_size, entry.sha)
                in_flight[future] = entry.sha
                if len(in_flight) >= window:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    self._collect_sizes(done, in_flight)
            if in_flight:
                done, _ = wait(in_flight)
                self._collect_sizes(done, in_flight)
        finally:
            # In flight reads complete; queued ones are dropped.
            executor.shutdown(wait=True, cancel_futures=True)
        self.report.oversized_blobs = len(self.oversized)
        logger.info(
            "Scanned %d blobs, %d above the size limit",
            self.report.scanned_blobs,
            len(self.oversized),
        )
        return self.oversized

    def _collect_sizes(
        self, done: Iterable[Future], in_flight: dict[Future, ObjectID]
    ) -> None:
        limit = self.policy.max_blob_size
        assert limit is not None
        for future in done:
            sha = in_flight.pop(future)
            try:
                size = future.result()
            except (ObjectNotFound, ObjectFormatException, StoreUnavailable) as exc:
                logger.warning("Unable to read size of %s: %s", sha.decode("ascii"), exc)
                self.report.scan_errors.append((sha, str(exc)))
                continue
            if size > limit:
                self.oversized[sha] = size

    def _blob_matches(self, blob_id: ObjectID, path: bytes) -> bool:
        size = self.oversized.get(blob_id)
        if self.policy.matches(blob_id, path, size):
            self._record_removal(blob_id, path, size)
            return True
        if self.policy.patterns:
            if blob_id in self.removed:
                self._report_ambiguity(blob_id, self.removed[blob_id], path)
            self._kept.add(blob_id)
        return False

    def _record_removal(self, blob_id: ObjectID, path: bytes, size: int | None) -> None:
        if blob_id in self._kept:
            self._report_ambiguity(blob_id, path, None)
        if blob_id not in self.removed:
            self.removed[blob_id] = path
            self.report.matched_blobs += 1
            self.rewrite_map.tombstone(blob_id)
        if size is None:
            size = self.store.get_object_size(blob_id)
        if self.context.audit.record_deleted(blob_id, size, path):
            logger.info(
                "Removing %s (%s, %d bytes)",
                path.decode("utf-8", "replace"),
                blob_id.decode("ascii"),
                size,
            )

    def _report_ambiguity(
        self, blob_id: ObjectID, removed_at: bytes, kept_at: bytes | None
    ) -> None:
        if blob_id in self._ambiguous:
            return
        self._ambiguous.add(blob_id)
        message = (
            f"{AmbiguousMatch.__name__}: blob {blob_id.decode('ascii')} removed at "
            f"{removed_at.decode('utf-8', 'replace')} but kept elsewhere"
        )
        if kept_at:
            message += f" ({kept_at.decode('utf-8', 'replace')})"
        self.context.warn(message)

    def _load(self, sha: ObjectID, cls: type[ShaFile]) -> ShaFile:
        obj = self.store[sha]
        if not isinstance(obj, cls):
            raise ObjectFormatException(
                f"{sha.decode('ascii')} is not a {cls.type_name.decode('ascii')}"
            )
        return obj

    def _tree_key(self, tree_id: ObjectID, path: bytes) -> object:
        if self._path_sensitive:
            return (tree_id, path)
        return tree_id

    def _empty_tree(self) -> ObjectID:
        if not self._empty_tree_written:
            self.store.add_object(Tree())
            self._empty_tree_written = True
        return EMPTY_TREE_ID

    def rewrite_tree(self, tree_id: ObjectID, path: bytes = b"") -> ObjectID | _Tombstone:
        """Rewrite a tree mounted at a path.

        Returns: the identity of the rewritten tree (the original one if
            nothing changed), or TOMBSTONE if every entry was removed
        """
        key = self._tree_key(tree_id, path)
        try:
            return self._tree_cache[key]
        except KeyError:
            pass
        stack = [_TreeFrame(tree_id, path, self._load(tree_id, Tree))]
        while stack:
            frame = stack[-1]
            descended = False
            while frame.position < len(frame.items):
                name, mode, sha = frame.items[frame.position]
                if S_ISGITLINK(mode):
                    frame.entries.append((name, mode, sha))
                elif stat.S_ISDIR(mode):
                    child_path = posixpath_join(frame.path, name)
                    if self.policy.matches_folder(child_path):
                        self._remove_folder(sha, child_path)
                        frame.changed = True
                    else:
                        new = self._tree_cache.get(self._tree_key(sha, child_path))
                        if new is None:
                            self.context.check_cancelled()
                            stack.append(
                                _TreeFrame(sha, child_path, self._load(sha, Tree))
                            )
                            descended = True
                            break
                        if new is TOMBSTONE:
                            frame.changed = True
                        else:
                            if new != sha:
                                frame.changed = True
                            frame.entries.append((name, mode, new))  # type: ignore[arg-type]
                elif self._blob_matches(sha, posixpath_join(frame.path, name)):
                    frame.changed = True
                else:
                    frame.entries.append((name, mode, sha))
                frame.position += 1
            if descended:
                continue
            stack.pop()
            self._tree_cache[self._tree_key(frame.tree_id, frame.path)] = (
                self._finish_tree(frame)
            )
        return self._tree_cache[key]

    def _remove_folder(self, tree_id: ObjectID, path: bytes) -> None:
        if self.context.audit.record_deleted(tree_id, None, path + b"/"):
            self.report.removed_folders += 1
            logger.info(
                "Removing folder %s (%s)",
                path.decode("utf-8", "replace"),
                tree_id.decode("ascii"),
            )

    def _finish_tree(self, frame: _TreeFrame) -> ObjectID | _Tombstone:
        record = not self._path_sensitive or frame.path == b""
        if not frame.changed:
            return frame.tree_id
        if not frame.entries:
            if record:
                self.rewrite_map.tombstone(frame.tree_id)
            return TOMBSTONE
        tree = Tree()
        for name, mode, sha in frame.entries:
            tree.add(name, mode, sha)
        self.store.add_object(tree)
        self.report.rewritten_trees += 1
        if record:
            self.rewrite_map.record(frame.tree_id, tree.id)
        return tree.id

    def rewrite_commit(self, commit_id: ObjectID) -> ObjectID | _Tombstone:
        """Rewrite a single commit; its parents must have been rewritten.

        Returns: the identity of the rewritten commit, or TOMBSTONE if it was
            pruned
        """
        done = self.rewrite_map.get(commit_id)
        if done is not None:
            return done
        commit = self._load(commit_id, Commit)
        assert isinstance(commit, Commit)

        new_parents: list[ObjectID] = []
        for parent in commit.parents:
            for survivor in self.rewrite_map.resolve(parent):
                if survivor not in new_parents:
                    new_parents.append(survivor)

        new_tree = self.rewrite_tree(commit.tree)
        if new_tree is TOMBSTONE:
            new_tree = self._empty_tree()
        assert isinstance(new_tree, bytes)

        if (
            self.policy.prune_empty
            and len(commit.parents) <= 1
            and new_tree != commit.tree
            and self._is_empty_change(new_tree, new_parents)
        ):
            self.rewrite_map.tombstone(commit_id, new_parents)
            self.context.audit.record_mapping(commit_id, None)
            self.report.pruned_commits += 1
            logger.info("Pruning empty commit %s", commit_id.decode("ascii"))
            return TOMBSTONE

        if new_tree == commit.tree and new_parents == commit.parents:
            return commit_id

        new_commit = commit.copy()
        assert isinstance(new_commit, Commit)
        new_commit.tree = new_tree
        new_commit.parents = new_parents
        if new_commit.strip_signature():
            self.report.stripped_signatures += 1
            logger.debug("Dropped signature of %s", commit_id.decode("ascii"))
        self.store.add_object(new_commit)
        self.rewrite_map.record(commit_id, new_commit.id)
        self.context.audit.record_mapping(commit_id, new_commit.id)
        self.report.rewritten_commits += 1
        return new_commit.id

    def _is_empty_change(self, new_tree: ObjectID, new_parents: list[ObjectID]) -> bool:
        if not new_parents:
            return new_tree == EMPTY_TREE_ID
        parent = self._load(new_parents[0], Commit)
        assert isinstance(parent, Commit)
        return parent.tree == new_tree

    def rewrite_tag(self, tag_id: ObjectID) -> ObjectID | _Tombstone:
        """Rewrite an annotated tag; its target must have been rewritten.

        Returns: the identity of the rewritten tag, or TOMBSTONE if its
            target was removed
        """
        done = self.rewrite_map.get(tag_id)
        if done is not None:
            return done
        tag = self._load(tag_id, Tag)
        assert isinstance(tag, Tag)
        target_cls, target = tag.object
        new_target: ObjectID | _Tombstone
        if target_cls is Tree:
            new_target = self.rewrite_tree(target)
        elif target_cls is Blob:
            new_target = TOMBSTONE if self._blob_matches(target, b"") else target
        else:
            survivors = self.rewrite_map.resolve(target)
            new_target = survivors[0] if survivors else TOMBSTONE

        if new_target is TOMBSTONE:
            self.rewrite_map.tombstone(tag_id)
            self.context.audit.record_mapping(tag_id, None)
            self.report.removed_tags += 1
            logger.info(
                "Removing tag %s, its target %s was removed",
                tag.name.decode("utf-8", "replace"),
                target.decode("ascii"),
            )
            return TOMBSTONE
        if new_target == target:
            return tag_id

        new_tag = tag.copy()
        assert isinstance(new_tag, Tag)
        new_tag.object = (target_cls, new_target)  # type: ignore[assignment]
        self.store.add_object(new_tag)
        self.rewrite_map.record(tag_id, new_tag.id)
        self.context.audit.record_mapping(tag_id, new_tag.id)
        self.report.rewritten_tags += 1
        return new_tag.id


def update_refs(
    refs: RefsContainer,
    context: RewriteContext,
    ref_names: Iterable[bytes] | Mapping[bytes, ObjectID] | None = None,
) -> RewriteReport:
    """Point refs at their rewritten targets.

    Each ref is updated with a compare-and-swap against the value it had
    before the rewrite. Refs whose history was removed entirely, and refs
    that changed concurrently, are left as they are and reported.

    Args:
      refs: Refs container to update
      context: Context of a completed rewrite
      ref_names: Refs to update; defaults to all refs except symbolic refs
        and saved originals. When a mapping of ref names to the values they
        had when the rewrite started is given, a ref that has moved since is
        reported as a conflict.
    Returns: the context's report, with ref outcomes filled in
    """
    report = context.report
    rewrite_map = context.rewrite_map
    if ref_names is None:
        ref_names = refs.allkeys()
    for name in sorted(ref_names):
        if name.startswith(ORIGINAL_PREFIX):
            continue
        if refs.is_symbolic(name):
            logger.debug("Leaving symbolic ref %s", name.decode("utf-8", "replace"))
            continue
        if isinstance(ref_names, Mapping):
            old = ref_names[name]
        else:
            try:
                old = refs[name]
            except KeyError:
                logger.warning("Ref %s disappeared", name.decode("utf-8", "replace"))
                continue
        if old in context.kept_blobs:
            continue
        survivors = rewrite_map.resolve(old)
        if not survivors:
            dangling = DanglingRef(name, old)
            logger.warning("%s", dangling)
            report.dangling_refs.append(dangling)
            continue
        new = survivors[0]
        if new == old:
            continue
        try:
            updated = refs.set_if_equals(name, old, new)
        except FileLocked:
            updated = False
        if not updated:
            conflict = RefUpdateConflict(name, old, new)
            logger.warning("%s", conflict)
            report.conflicting_refs.append(conflict)
            continue
        if context.keep_original:
            refs.add_if_new(ORIGINAL_PREFIX + name, old)
        logger.info(
            "Updated %s: %s -> %s",
            name.decode("utf-8", "replace"),
            old.decode("ascii"),
            new.decode("ascii"),
        )
        report.updated_refs.append(name)
    context.refs_pending = False
    return report
