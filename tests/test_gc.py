# test_gc.py -- Tests for compaction
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

"""Tests for excise.gc."""

import os
import shutil
import tempfile

from excise.errors import CorruptGraph
from excise.gc import RefsNotUpdated, compact, find_unreachable_objects
from excise.object_store import DiskObjectStore, MemoryObjectStore
from excise.objects import Blob
from excise.policy import MatchPolicy
from excise.refs import DictRefsContainer
from excise.rewrite import RewriteContext, Rewriter, update_refs
from excise.verify import published_heads

from . import TestCase
from .utils import build_commit_graph, write_pack


class CompactTests:
    """Compaction tests shared by all object stores."""

    def make_store(self, objects):
        raise NotImplementedError(self.make_store)

    def setUp(self) -> None:
        super().setUp()
        source = MemoryObjectStore()
        self.small = Blob.from_string(b"small\n")
        self.other = Blob.from_string(b"other\n")
        self.big = Blob.from_string(b"x" * 4096)
        self.c1, self.c2, self.c3 = build_commit_graph(
            source,
            [[1], [2, 1], [3, 2]],
            trees={
                1: [(b"a", self.small)],
                2: [(b"a", self.small), (b"big.bin", self.big)],
                3: [(b"a", self.small), (b"b", self.other)],
            },
        )
        self.store = self.make_store([source[sha] for sha in source])
        self.refs = DictRefsContainer(
            {b"HEAD": b"ref: refs/heads/master", b"refs/heads/master": self.c3.id}
        )
        self.garbage = {self.big.id, self.c2.tree, self.c2.id, self.c3.id}

    def rewrite(self, keep_original: bool = False) -> RewriteContext:
        context = RewriteContext(workers=1, keep_original=keep_original)
        heads = published_heads(self.refs)
        Rewriter(self.store, MatchPolicy(patterns=[b"big.bin"]), context).run(heads)
        update_refs(self.refs, context, heads)
        return context

    def test_nothing_to_remove(self) -> None:
        stats = compact(self.store, self.refs)
        self.assertEqual(set(), stats.pruned_objects)
        self.assertEqual(0, stats.bytes_freed)
        self.assertEqual(9, stats.reachable_objects)
        self.assertEqual(9, len(set(self.store)))

    def test_find_unreachable_objects(self) -> None:
        self.rewrite()
        reachable, unreachable = find_unreachable_objects(self.store, self.refs)
        self.assertEqual(self.garbage, unreachable)
        self.assertEqual(7, len(reachable))
        self.assertIn(self.refs[b"refs/heads/master"], reachable)

    def test_removes_rewritten_history(self) -> None:
        context = self.rewrite()
        sizes = sum(self.store.get_object_size(sha) for sha in self.garbage)
        stats = compact(self.store, self.refs, context=context)
        self.assertEqual(self.garbage, stats.pruned_objects)
        self.assertEqual(sizes, stats.bytes_freed)
        self.assertEqual(7, stats.reachable_objects)
        for sha in self.garbage:
            self.assertNotIn(sha, self.store)
        self.assertEqual(7, len(set(self.store)))
        for sha in self.store:
            self.store[sha]

    def test_saved_originals_are_kept(self) -> None:
        context = self.rewrite(keep_original=True)
        stats = compact(self.store, self.refs, context=context)
        self.assertEqual(set(), stats.pruned_objects)
        self.assertIn(self.big.id, self.store)
        self.assertEqual(11, stats.reachable_objects)

    def test_refuses_before_refs_are_updated(self) -> None:
        context = RewriteContext(workers=1)
        Rewriter(self.store, MatchPolicy(patterns=[b"big.bin"]), context).run(
            published_heads(self.refs)
        )
        self.assertTrue(context.refs_pending)
        self.assertRaises(RefsNotUpdated, compact, self.store, self.refs, context=context)
        self.assertIn(self.big.id, self.store)

    def test_dry_run(self) -> None:
        context = self.rewrite()
        before = set(self.store)
        stats = compact(self.store, self.refs, dry_run=True, context=context)
        self.assertEqual(self.garbage, stats.pruned_objects)
        self.assertEqual(before, set(self.store))

    def test_missing_ref_target(self) -> None:
        self.rewrite()
        before = set(self.store)
        self.refs[b"refs/heads/broken"] = b"1" * 40
        self.assertRaises(CorruptGraph, compact, self.store, self.refs)
        self.assertEqual(before, set(self.store))

    def test_format(self) -> None:
        stats = compact(self.store, self.refs, context=self.rewrite())
        self.assertIn("Objects removed:      4\n", stats.format())


class MemoryCompactTests(CompactTests, TestCase):
    def make_store(self, objects):
        store = MemoryObjectStore()
        store.add_objects(objects)
        return store

    def test_loose_counts(self) -> None:
        stats = compact(self.store, self.refs, context=self.rewrite())
        self.assertEqual(0, stats.packs_before)
        self.assertEqual(11, stats.loose_objects_before)
        self.assertEqual(7, stats.loose_objects_after)


class DiskCompactTests(CompactTests, TestCase):
    def make_store(self, objects):
        self.store_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.store_dir)
        store = DiskObjectStore.init(self.store_dir)
        self.addCleanup(store.close)
        write_pack(os.path.join(self.store_dir, "pack", "pack-" + "a" * 40), objects)
        return store

    def test_pack_without_garbage_kept(self) -> None:
        stats = compact(self.store, self.refs)
        self.assertEqual(1, stats.packs_after)
        self.assertEqual(0, stats.exploded_objects)
        self.assertEqual(1, len(self.store.packs))

    def test_explodes_reachable_packed_objects(self) -> None:
        context = self.rewrite()
        stats = compact(self.store, self.refs, context=context)
        self.assertEqual(1, stats.packs_before)
        self.assertEqual(0, stats.packs_after)
        self.assertEqual([], self.store.packs)
        self.assertEqual(5, stats.exploded_objects)
        self.assertEqual(2, stats.loose_objects_before)
        self.assertEqual(7, stats.loose_objects_after)
        for sha in self.store:
            self.assertTrue(self.store.contains_loose(sha))

    def test_dry_run_leaves_packs(self) -> None:
        context = self.rewrite()
        stats = compact(self.store, self.refs, dry_run=True, context=context)
        self.assertEqual(0, stats.packs_after)
        self.assertEqual(5, stats.exploded_objects)
        self.assertEqual(7, stats.loose_objects_after)
        self.assertEqual(1, len(self.store.packs))
        self.assertIn(self.big.id, self.store)
