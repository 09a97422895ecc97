# test_verify.py -- Tests for verification of rewritten mirrors
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

"""Tests for excise.verify."""

from dataclasses import replace

from excise.errors import SizeLimitExceeded, VerificationFailed
from excise.object_store import MemoryObjectStore
from excise.objects import Blob
from excise.refs import DictRefsContainer
from excise.verify import (
    GraphSummary,
    RecordedRewrite,
    find_oversized_blobs,
    published_heads,
    summarize_graph,
    verify_rewrite,
)

from . import TestCase
from .utils import DEFAULT_TIME, build_commit_graph


class VerifyTestCase(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()
        self.small = Blob.from_string(b"small\n")
        self.big = Blob.from_string(b"x" * 1500)
        self.c1, self.c2, self.c3 = build_commit_graph(
            self.store,
            [[1], [2, 1], [3, 1]],
            trees={
                1: [(b"a", self.small)],
                2: [(b"a", self.small), (b"big", self.big)],
                3: [(b"b", self.small)],
            },
            attrs={3: {"author": b"Someone Else <else@example.com>"}},
        )
        self.refs = DictRefsContainer(
            {
                b"HEAD": b"ref: refs/heads/master",
                b"refs/heads/master": self.c2.id,
                b"refs/heads/other": self.c3.id,
                b"refs/original/refs/heads/master": self.c1.id,
            }
        )


class PublishedHeadsTests(VerifyTestCase):
    def test_skips_symbolic_and_saved_refs(self) -> None:
        self.assertEqual(
            {b"refs/heads/master": self.c2.id, b"refs/heads/other": self.c3.id},
            published_heads(self.refs),
        )


class SummarizeGraphTests(VerifyTestCase):
    def test_summary(self) -> None:
        summary = summarize_graph(self.store, self.refs)
        self.assertEqual(3, summary.commit_count)
        self.assertEqual(
            frozenset([b"refs/heads/master", b"refs/heads/other"]), summary.ref_names
        )
        self.assertEqual(
            frozenset(
                [b"Test Author <test@nodomain.com>", b"Someone Else <else@example.com>"]
            ),
            summary.authors,
        )
        self.assertEqual(DEFAULT_TIME, summary.oldest)
        self.assertEqual(DEFAULT_TIME + 200, summary.newest)

    def test_empty(self) -> None:
        summary = summarize_graph(self.store, DictRefsContainer({}))
        self.assertEqual(
            GraphSummary(0, frozenset(), frozenset(), None, None), summary
        )


class FindOversizedBlobsTests(VerifyTestCase):
    def test_strictly_greater(self) -> None:
        self.assertEqual(
            [(self.big.id, 1500)], find_oversized_blobs(self.store, self.refs, 1000)
        )
        self.assertEqual([], find_oversized_blobs(self.store, self.refs, 1500))

    def test_only_published_history(self) -> None:
        del self.refs[b"refs/heads/master"]
        self.assertEqual([], find_oversized_blobs(self.store, self.refs, 1000))


class VerifyRewriteTests(VerifyTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.baseline = summarize_graph(self.store, self.refs)

    def test_unchanged(self) -> None:
        report = verify_rewrite(self.store, self.refs, self.baseline, 2000)
        self.assertTrue(report.ok)
        report.check()
        self.assertIn("Verification passed", report.format())

    def test_no_size_check(self) -> None:
        report = verify_rewrite(self.store, self.refs, self.baseline, None)
        self.assertEqual([], report.oversized)
        self.assertTrue(report.ok)

    def test_oversized(self) -> None:
        report = verify_rewrite(self.store, self.refs, self.baseline, 1000)
        self.assertFalse(report.ok)
        self.assertEqual([(self.big.id, 1500)], report.oversized)
        self.assertEqual([], report.failures)
        with self.assertRaises(SizeLimitExceeded) as cm:
            report.check()
        self.assertEqual(1000, cm.exception.limit)
        self.assertIn("FAILED", report.format())

    def test_oversized_reported_before_other_failures(self) -> None:
        baseline = replace(self.baseline, commit_count=5)
        report = verify_rewrite(self.store, self.refs, baseline, 1000)
        self.assertRaises(SizeLimitExceeded, report.check)

    def test_commit_count(self) -> None:
        baseline = replace(self.baseline, commit_count=4)
        report = verify_rewrite(self.store, self.refs, baseline, None)
        self.assertEqual(["expected 4 commits, found 3"], report.failures)
        with self.assertRaises(VerificationFailed) as cm:
            report.check()
        self.assertEqual(report.failures, cm.exception.failures)

    def test_pruned_commits_expected(self) -> None:
        baseline = replace(self.baseline, commit_count=4)
        report = verify_rewrite(self.store, self.refs, baseline, None, pruned_commits=1)
        self.assertTrue(report.ok)

    def test_ref_removed(self) -> None:
        del self.refs[b"refs/heads/other"]
        report = verify_rewrite(self.store, self.refs, self.baseline, None)
        self.assertFalse(report.ok)
        self.assertTrue(
            any(failure.startswith("ref set changed") for failure in report.failures)
        )

    def test_dangling_ref_expected(self) -> None:
        self.refs[b"refs/heads/extra"] = self.c1.id
        baseline = summarize_graph(self.store, self.refs)
        del self.refs[b"refs/heads/extra"]
        report = verify_rewrite(
            self.store, self.refs, baseline, None, dangling_refs=[b"refs/heads/extra"]
        )
        self.assertTrue(report.ok)

    def test_authors_changed(self) -> None:
        baseline = replace(
            self.baseline, authors=self.baseline.authors | {b"Gone <gone@example.com>"}
        )
        report = verify_rewrite(self.store, self.refs, baseline, None)
        self.assertEqual(["set of authors changed"], report.failures)

    def test_time_range_changed(self) -> None:
        baseline = replace(self.baseline, oldest=DEFAULT_TIME - 1)
        report = verify_rewrite(self.store, self.refs, baseline, None)
        self.assertEqual(1, len(report.failures))
        self.assertTrue(report.failures[0].startswith("commit time range changed"))

    def test_pruning_may_narrow_history(self) -> None:
        baseline = replace(
            self.baseline,
            commit_count=4,
            oldest=DEFAULT_TIME - 100,
            authors=self.baseline.authors | {b"Gone <gone@example.com>"},
        )
        report = verify_rewrite(self.store, self.refs, baseline, None, pruned_commits=1)
        self.assertTrue(report.ok, report.failures)

    def test_pruning_never_widens_history(self) -> None:
        baseline = replace(
            self.baseline,
            commit_count=4,
            oldest=DEFAULT_TIME + 1,
            newest=DEFAULT_TIME + 100,
            authors=frozenset([b"Test Author <test@nodomain.com>"]),
        )
        report = verify_rewrite(self.store, self.refs, baseline, None, pruned_commits=1)
        self.assertEqual(
            [
                "oldest commit is older than before",
                "newest commit is newer than before",
                "authors were added",
            ],
            report.failures,
        )

    def test_without_baseline(self) -> None:
        del self.refs[b"refs/heads/other"]
        report = verify_rewrite(self.store, self.refs, None, 2000)
        self.assertTrue(report.ok)
        self.assertFalse(report.baseline_checked)
        self.assertIn("none recorded, only blob sizes checked", report.format())

        report = verify_rewrite(self.store, self.refs, None, 1000)
        self.assertEqual([(self.big.id, 1500)], report.oversized)
        self.assertEqual([], report.failures)


class RecordedRewriteTests(VerifyTestCase):
    def test_parse_written(self) -> None:
        recorded = RecordedRewrite(
            baseline=summarize_graph(self.store, self.refs),
            pruned_commits=2,
            dangling_refs=frozenset([b"refs/heads/junk"]),
        )
        raw = recorded.as_raw_string()
        self.assertIn(b"[baseline]", raw)
        self.assertIn(b"\tref = refs/heads/other\n", raw)
        self.assertEqual(recorded, RecordedRewrite.from_raw_string(raw))

    def test_empty_graph(self) -> None:
        recorded = RecordedRewrite(
            baseline=summarize_graph(self.store, DictRefsContainer({}))
        )
        parsed = RecordedRewrite.from_raw_string(recorded.as_raw_string())
        self.assertIsNone(parsed.baseline.oldest)
        self.assertEqual(recorded, parsed)

    def test_incomplete(self) -> None:
        self.assertRaises(
            ValueError, RecordedRewrite.from_raw_string, b"[baseline]\n\tcommits = 3\n"
        )
