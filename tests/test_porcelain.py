# test_porcelain.py -- Tests for the porcelain layer
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

"""Tests for excise.porcelain."""

import os
import shutil
import tempfile

from excise import porcelain
from excise.audit import DELETED_FILES_NAME, OBJECT_ID_MAP_NAME, WARNINGS_NAME, DeletedFile
from excise.objects import Blob
from excise.policy import MatchPolicy
from excise.repo import MemoryRepo, NotGitRepository, Repo

from . import TestCase
from .utils import build_commit_graph


class PorcelainTestCase(TestCase):
    """A mirror where data/big.bin is added in the second of three commits."""

    def setUp(self) -> None:
        super().setUp()
        self.repo = self.make_repo()
        self.small = Blob.from_string(b"README\n")
        self.small2 = Blob.from_string(b"README, second edition\n")
        self.big = Blob.from_string(b"x" * 2000)
        self.c1, self.c2, self.c3 = build_commit_graph(
            self.repo.object_store,
            [[1], [2, 1], [3, 2]],
            trees={
                1: [(b"README", self.small)],
                2: [(b"README", self.small), (b"data/big.bin", self.big)],
                3: [(b"README", self.small2), (b"data/big.bin", self.big)],
            },
        )
        self.repo.refs[b"refs/heads/master"] = self.c3.id

    def make_repo(self):
        return MemoryRepo()

    def add_junk_branch(self):
        (c0,) = build_commit_graph(
            self.repo.object_store,
            [[0]],
            trees={0: [(b"big.bin", self.big)]},
            attrs={0: {"message": b"Only junk"}},
        )
        self.repo.refs[b"refs/heads/junk"] = c0.id
        return c0


class AuditTests(PorcelainTestCase):
    def test_audit(self) -> None:
        before = set(self.repo.object_store)
        result = porcelain.audit(self.repo, MatchPolicy(max_blob_size=1000), workers=2)
        self.assertTrue(result.matched)
        self.assertEqual(
            [DeletedFile(self.big.id, 2000, b"data/big.bin")], result.candidates
        )
        self.assertEqual(sorted([self.c2.id, self.c3.id]), result.affected_commits)
        self.assertEqual(1, result.report.matched_blobs)
        self.assertEqual(before, set(self.repo.object_store))
        self.assertEqual(self.c3.id, self.repo.refs[b"refs/heads/master"])

    def test_nothing_matched(self) -> None:
        result = porcelain.audit(self.repo, MatchPolicy(patterns=[b"*.zip"]))
        self.assertFalse(result.matched)
        self.assertEqual([], result.candidates)
        self.assertEqual([], result.affected_commits)


    def test_patterns_only(self) -> None:
        result = porcelain.audit(self.repo, MatchPolicy(patterns=[b"big.bin"]))
        self.assertTrue(result.matched)
        self.assertIn(DeletedFile(self.big.id, 2000, b"data/big.bin"), result.candidates)
        self.assertEqual(sorted([self.c2.id, self.c3.id]), result.affected_commits)
        self.assertEqual(0, result.report.oversized_blobs)


class RewriteTests(PorcelainTestCase):
    def test_rewrite_patterns_only(self) -> None:
        policy = MatchPolicy(patterns=[b"big.bin"])
        result = porcelain.rewrite(self.repo, policy)
        self.assertEqual(1, result.report.matched_blobs)
        head = self.repo[self.repo.refs[b"refs/heads/master"]]
        tree = self.repo[head.tree]
        self.assertEqual([b"README"], [entry.path for entry in tree.iteritems()])
        report = porcelain.verify(self.repo, result.baseline, policy)
        self.assertTrue(report.ok, report.failures)

    def test_records_rewrite(self) -> None:
        self.assertIsNone(porcelain.load_recorded_rewrite(self.repo))
        self.add_junk_branch()
        policy = MatchPolicy(max_blob_size=1000, prune_empty=True)
        result = porcelain.rewrite(self.repo, policy)
        recorded = porcelain.load_recorded_rewrite(self.repo)
        self.assertEqual(result.baseline, recorded.baseline)
        self.assertEqual(2, recorded.pruned_commits)
        self.assertEqual(frozenset([b"refs/heads/junk"]), recorded.dangling_refs)

    def test_recorded_rewrite_catches_lost_history(self) -> None:
        policy = MatchPolicy(max_blob_size=1000)
        porcelain.rewrite(self.repo, policy)
        self.repo.refs[b"refs/heads/master"] = self.c1.id
        recorded = porcelain.load_recorded_rewrite(self.repo)
        report = porcelain.verify(
            self.repo,
            recorded.baseline,
            policy,
            pruned_commits=recorded.pruned_commits,
            dangling_refs=recorded.dangling_refs,
        )
        self.assertIn("expected 3 commits, found 1", report.failures)

    def test_rewrite(self) -> None:
        policy = MatchPolicy(max_blob_size=1000)
        result = porcelain.rewrite(self.repo, policy, workers=2)
        self.assertTrue(result.matched)
        self.assertEqual(3, result.baseline.commit_count)
        new_head = self.repo.refs[b"refs/heads/master"]
        self.assertNotEqual(self.c3.id, new_head)
        self.assertEqual(result.context.rewrite_map[self.c3.id], new_head)
        self.assertEqual([b"refs/heads/master"], result.report.updated_refs)
        self.assertFalse(result.context.refs_pending)

        report = porcelain.verify(self.repo, result.baseline, policy)
        self.assertTrue(report.ok, report.failures)

    def test_report_dir(self) -> None:
        report_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, report_dir)
        porcelain.rewrite(
            self.repo,
            MatchPolicy(patterns=[b"big.bin"]),
            report_dir=os.path.join(report_dir, "report"),
        )
        path = os.path.join(report_dir, "report")
        self.assertEqual(
            sorted([DELETED_FILES_NAME, OBJECT_ID_MAP_NAME, WARNINGS_NAME]),
            sorted(os.listdir(path)),
        )
        with open(os.path.join(path, DELETED_FILES_NAME), "rb") as f:
            self.assertEqual(self.big.id + b" 2000 data/big.bin\n", f.read())
        with open(os.path.join(path, OBJECT_ID_MAP_NAME), "rb") as f:
            lines = f.read().splitlines()
        self.assertEqual(2, len(lines))
        self.assertEqual(
            sorted([self.c2.id, self.c3.id]), [line.split(b" ")[0] for line in lines]
        )

    def test_dangling_refs_deleted(self) -> None:
        c0 = self.add_junk_branch()
        policy = MatchPolicy(max_blob_size=1000, prune_empty=True)
        result = porcelain.rewrite(self.repo, policy)
        self.assertEqual([b"refs/heads/junk"], result.dangling_refs)
        self.assertNotIn(b"refs/heads/junk", self.repo.refs)
        self.assertTrue(result.context.rewrite_map.is_tombstoned(c0.id))
        self.assertEqual(2, result.pruned_commits)

        report = porcelain.verify(
            self.repo,
            result.baseline,
            policy,
            pruned_commits=result.pruned_commits,
            dangling_refs=result.dangling_refs,
        )
        self.assertTrue(report.ok, report.failures)

    def test_dangling_refs_kept(self) -> None:
        c0 = self.add_junk_branch()
        porcelain.rewrite(
            self.repo,
            MatchPolicy(max_blob_size=1000, prune_empty=True),
            delete_dangling=False,
        )
        self.assertEqual(c0.id, self.repo.refs[b"refs/heads/junk"])

    def test_keep_original(self) -> None:
        c0 = self.add_junk_branch()
        porcelain.rewrite(
            self.repo,
            MatchPolicy(max_blob_size=1000, prune_empty=True),
            keep_original=True,
        )
        self.assertEqual(
            self.c3.id, self.repo.refs[b"refs/original/refs/heads/master"]
        )
        self.assertEqual(c0.id, self.repo.refs[b"refs/original/refs/heads/junk"])
        self.assertNotIn(b"refs/heads/junk", self.repo.refs)

    def test_nothing_matched(self) -> None:
        result = porcelain.rewrite(self.repo, MatchPolicy(patterns=[b"*.zip"]))
        self.assertFalse(result.matched)
        self.assertEqual(self.c3.id, self.repo.refs[b"refs/heads/master"])


class ProtectedBlobsTests(PorcelainTestCase):
    def test_short_ref_name(self) -> None:
        self.assertEqual(
            frozenset([self.small2.id, self.big.id]),
            porcelain.protected_blobs(self.repo, ["master"]),
        )

    def test_full_ref_name(self) -> None:
        self.assertEqual(
            frozenset([self.small2.id, self.big.id]),
            porcelain.protected_blobs(self.repo, [b"refs/heads/master"]),
        )

    def test_unknown_ref(self) -> None:
        self.assertRaises(
            porcelain.Error, porcelain.protected_blobs, self.repo, ["nonexistent"]
        )

    def test_protected_blobs_survive(self) -> None:
        protected = porcelain.protected_blobs(self.repo, ["master"])
        result = porcelain.rewrite(
            self.repo, MatchPolicy(max_blob_size=1000, protected_blobs=protected)
        )
        self.assertFalse(result.matched)
        self.assertEqual(self.c3.id, self.repo.refs[b"refs/heads/master"])


class RewriteUntilCleanTests(PorcelainTestCase):
    def test_first_policy_passes(self) -> None:
        lenient = MatchPolicy(max_blob_size=10000)
        policy, result, report = porcelain.rewrite_until_clean(
            self.repo, [lenient, MatchPolicy(max_blob_size=1000)]
        )
        self.assertIs(lenient, policy)
        self.assertIsNone(result)
        self.assertTrue(report.ok)
        self.assertEqual(self.c3.id, self.repo.refs[b"refs/heads/master"])

    def test_rewrites(self) -> None:
        strict = MatchPolicy(max_blob_size=1000)
        policy, result, report = porcelain.rewrite_until_clean(
            self.repo, [strict], workers=1
        )
        self.assertIs(strict, policy)
        self.assertIsNotNone(result)
        self.assertTrue(report.ok)
        self.assertNotEqual(self.c3.id, self.repo.refs[b"refs/heads/master"])

    def test_no_policies(self) -> None:
        self.assertRaises(porcelain.Error, porcelain.rewrite_until_clean, self.repo, [])


class LoadSettingsTests(PorcelainTestCase):
    def test_from_repository_config(self) -> None:
        config = self.repo.get_config()
        config.set(b"excise", b"pattern", b"*.bin")
        config.set(b"excise", b"stripBlobsBiggerThan", b"1m")
        settings = porcelain.load_settings(self.repo, workers=3, report_dir=None)
        self.assertEqual([b"*.bin"], settings.patterns)
        self.assertEqual(1024 * 1024, settings.max_blob_size)
        self.assertEqual(3, settings.workers)
        self.assertIsNone(settings.report_dir)

    def test_config_path_replaces_repository_config(self) -> None:
        self.repo.get_config().set(b"excise", b"pattern", b"*.bin")
        config_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, config_dir)
        path = os.path.join(config_dir, "excise.conf")
        with open(path, "wb") as f:
            f.write(b"[excise]\n\tfolder = build\n\tpruneEmpty = true\n")
        settings = porcelain.load_settings(self.repo, path)
        self.assertEqual([], settings.patterns)
        self.assertEqual([b"build"], settings.folder_patterns)
        self.assertTrue(settings.prune_empty)


class DiskRepoTests(PorcelainTestCase):
    def make_repo(self):
        self.path = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.path)
        repo = Repo.init_bare(self.path)
        self.addCleanup(repo.close)
        return repo

    def test_rewrite_and_compact(self) -> None:
        policy = MatchPolicy(max_blob_size=1000)
        result = porcelain.rewrite(self.path, policy, workers=2)
        self.assertTrue(result.matched)
        with Repo(self.path) as repo:
            head = repo.refs[b"refs/heads/master"]
            self.assertEqual(head, repo.refs[b"HEAD"])
            self.assertNotEqual(self.c3.id, head)
            self.assertIn(self.big.id, repo.object_store)

        stats = porcelain.compact(self.path, context=result.context)
        self.assertIn(self.big.id, stats.pruned_objects)
        with Repo(self.path) as repo:
            self.assertNotIn(self.big.id, repo.object_store)
            self.assertNotIn(self.c3.id, repo.object_store)
            report = porcelain.verify(repo, result.baseline, policy)
        self.assertTrue(report.ok, report.failures)

    def test_rewrite_recorded_in_mirror(self) -> None:
        porcelain.rewrite(self.path, MatchPolicy(max_blob_size=1000))
        self.assertTrue(os.path.isfile(os.path.join(self.path, "excise", "baseline")))
        recorded = porcelain.load_recorded_rewrite(self.path)
        self.assertEqual(3, recorded.baseline.commit_count)
        self.assertEqual(frozenset([b"refs/heads/master"]), recorded.baseline.ref_names)

    def test_compact_dry_run(self) -> None:
        porcelain.rewrite(self.path, MatchPolicy(max_blob_size=1000))
        stats = porcelain.compact(self.path, dry_run=True)
        self.assertIn(self.big.id, stats.pruned_objects)
        with Repo(self.path) as repo:
            self.assertIn(self.big.id, repo.object_store)

    def test_not_a_repository(self) -> None:
        self.assertRaises(
            NotGitRepository,
            porcelain.audit,
            os.path.join(self.path, "objects"),
            MatchPolicy(max_blob_size=1000),
        )
