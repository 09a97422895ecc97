# verify.py -- Checking a rewritten mirror
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

"""Read-only checks comparing a rewritten mirror with its baseline."""

__all__ = [
    "BASELINE_FILE",
    "GraphSummary",
    "RecordedRewrite",
    "VerificationReport",
    "find_oversized_blobs",
    "published_heads",
    "summarize_graph",
    "verify_rewrite",
]

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from io import BytesIO

from .config import ConfigFile
from .errors import SizeLimitExceeded, VerificationFailed
from .object_store import BaseObjectStore
from .objects import Blob, Commit, ObjectID
from .refs import ORIGINAL_PREFIX, RefsContainer
from .walk import ObjectGraphWalker

logger = logging.getLogger(__name__)

BASELINE_FILE = os.path.join("excise", "baseline")


@dataclass(frozen=True)
class GraphSummary:
    """The observable shape of a mirror's history."""

    commit_count: int
    ref_names: frozenset[bytes]
    authors: frozenset[bytes]
    oldest: int | None
    newest: int | None


@dataclass(frozen=True)
class RecordedRewrite:
    """What verify needs to know about the last rewrite of a mirror.

    Stored in the mirror's control directory in git-config format:

        [baseline]
            commits = 5
            oldest = 1262304000
            newest = 1262307600
            ref = refs/heads/master
            author = A U Thor <author@example.com>
        [rewrite]
            pruned = 1
            dangling = refs/heads/junk
    """

    baseline: GraphSummary
    pruned_commits: int = 0
    dangling_refs: frozenset[bytes] = frozenset()

    def as_raw_string(self) -> bytes:
        config = ConfigFile()
        summary = self.baseline
        config.set(b"baseline", b"commits", str(summary.commit_count))
        if summary.oldest is not None and summary.newest is not None:
            config.set(b"baseline", b"oldest", str(summary.oldest))
            config.set(b"baseline", b"newest", str(summary.newest))
        for name in sorted(summary.ref_names):
            config.add(b"baseline", b"ref", name)
        for author in sorted(summary.authors):
            config.add(b"baseline", b"author", author)
        config.set(b"rewrite", b"pruned", str(self.pruned_commits))
        for name in sorted(self.dangling_refs):
            config.add(b"rewrite", b"dangling", name)
        f = BytesIO()
        config.write_to_file(f)
        return f.getvalue()

    @classmethod
    def from_raw_string(cls, data: bytes) -> "RecordedRewrite":
        """Parse a recorded rewrite.

        Raises:
          ValueError: if the data is not a valid recorded rewrite
        """
        config = ConfigFile.from_file(BytesIO(data))
        try:
            commit_count = int(config.get(b"baseline", b"commits"))
            pruned = int(config.get(b"rewrite", b"pruned"))
        except KeyError as exc:
            raise ValueError(f"recorded rewrite lacks {exc}") from exc
        try:
            oldest: int | None = int(config.get(b"baseline", b"oldest"))
            newest: int | None = int(config.get(b"baseline", b"newest"))
        except KeyError:
            oldest = newest = None
        summary = GraphSummary(
            commit_count=commit_count,
            ref_names=frozenset(config.get_multivar(b"baseline", b"ref")),
            authors=frozenset(config.get_multivar(b"baseline", b"author")),
            oldest=oldest,
            newest=newest,
        )
        return cls(
            baseline=summary,
            pruned_commits=pruned,
            dangling_refs=frozenset(config.get_multivar(b"rewrite", b"dangling")),
        )


def published_heads(refs: RefsContainer) -> dict[bytes, ObjectID]:
    """Refs that make up the published history.

    Symbolic refs and saved originals under refs/original/ are left out.
    """
    ret = {}
    for name, sha in refs.as_dict().items():
        if name.startswith(ORIGINAL_PREFIX) or refs.is_symbolic(name):
            continue
        ret[name] = sha
    return ret


def summarize_graph(store: BaseObjectStore, refs: RefsContainer) -> GraphSummary:
    """Summarize the commits reachable from the published refs.

    Raises:
      CorruptGraph: if the graph is broken
    """
    heads = published_heads(refs)
    count = 0
    authors = set()
    oldest = newest = None
    for entry in ObjectGraphWalker(store, heads).iter_commits():
        if entry.type_num != Commit.type_num:
            continue
        commit = store[entry.sha]
        count += 1
        authors.add(commit.author)
        if oldest is None or commit.commit_time < oldest:
            oldest = commit.commit_time
        if newest is None or commit.commit_time > newest:
            newest = commit.commit_time
    return GraphSummary(
        commit_count=count,
        ref_names=frozenset(heads),
        authors=frozenset(authors),
        oldest=oldest,
        newest=newest,
    )


@dataclass
class VerificationReport:
    """Outcome of verify_rewrite."""

    summary: GraphSummary
    max_blob_size: int | None
    oversized: list[tuple[ObjectID, int]] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    baseline_checked: bool = True

    @property
    def ok(self) -> bool:
        return not self.oversized and not self.failures

    def check(self) -> None:
        """Raise if any check failed.

        Raises:
          SizeLimitExceeded: if blobs above the threshold are still reachable
          VerificationFailed: if any other check failed
        """
        if self.oversized:
            assert self.max_blob_size is not None
            raise SizeLimitExceeded(self.oversized, self.max_blob_size)
        if self.failures:
            raise VerificationFailed(self.failures)

    def format(self) -> str:
        lines = [
            f"Commits:              {self.summary.commit_count}",
            f"Refs:                 {len(self.summary.ref_names)}",
        ]
        if not self.baseline_checked:
            lines.append("Baseline:             none recorded, only blob sizes checked")
        for sha, size in self.oversized:
            lines.append(f"Oversized blob:       {sha.decode('ascii')} ({size} bytes)")
        for failure in self.failures:
            lines.append(f"Failed:               {failure}")
        lines.append("Verification " + ("passed" if self.ok else "FAILED"))
        return "\n".join(lines) + "\n"


def find_oversized_blobs(
    store: BaseObjectStore, refs: RefsContainer, max_blob_size: int
) -> list[tuple[ObjectID, int]]:
    """List reachable blobs strictly larger than max_blob_size."""
    ret = []
    for entry in ObjectGraphWalker(store, published_heads(refs)):
        if entry.type_num != Blob.type_num:
            continue
        size = store.get_object_size(entry.sha)
        if size > max_blob_size:
            ret.append((entry.sha, size))
    return sorted(ret)


def verify_rewrite(
    store: BaseObjectStore,
    refs: RefsContainer,
    baseline: GraphSummary | None,
    max_blob_size: int | None,
    pruned_commits: int = 0,
    dangling_refs: Iterable[bytes] = (),
) -> VerificationReport:
    """Check the invariants a rewrite must preserve.

    Args:
      store: Object store of the rewritten mirror
      refs: Refs of the rewritten mirror
      baseline: Summary taken before the rewrite, or None to only check
        blob sizes
      max_blob_size: Size threshold, or None to skip the size check
      pruned_commits: Number of commits the rewrite pruned
      dangling_refs: Names of refs the rewrite removed
    Returns: a VerificationReport; call check() on it to raise on failure
    """
    summary = summarize_graph(store, refs)
    report = VerificationReport(summary=summary, max_blob_size=max_blob_size)

    if max_blob_size is not None:
        report.oversized = find_oversized_blobs(store, refs, max_blob_size)

    if baseline is None:
        report.baseline_checked = False
        logger.warning("No baseline to compare with; only checking blob sizes")
        _log_outcome(report)
        return report

    expected_count = baseline.commit_count - pruned_commits
    if summary.commit_count != expected_count:
        report.failures.append(
            f"expected {expected_count} commits, found {summary.commit_count}"
        )

    expected_refs = baseline.ref_names - frozenset(dangling_refs)
    if summary.ref_names != expected_refs:
        missing = sorted(expected_refs - summary.ref_names)
        extra = sorted(summary.ref_names - expected_refs)
        report.failures.append(f"ref set changed: missing {missing!r}, extra {extra!r}")

    if pruned_commits:
        # Pruning can drop the oldest or newest commit, but never adds any.
        if (
            summary.oldest is not None
            and baseline.oldest is not None
            and summary.oldest < baseline.oldest
        ):
            report.failures.append("oldest commit is older than before")
        if (
            summary.newest is not None
            and baseline.newest is not None
            and summary.newest > baseline.newest
        ):
            report.failures.append("newest commit is newer than before")
        if not summary.authors <= baseline.authors:
            report.failures.append("authors were added")
    else:
        if (summary.oldest, summary.newest) != (baseline.oldest, baseline.newest):
            report.failures.append(
                f"commit time range changed from {baseline.oldest}..{baseline.newest} "
                f"to {summary.oldest}..{summary.newest}"
            )
        if summary.authors != baseline.authors:
            report.failures.append("set of authors changed")

    _log_outcome(report)
    return report


def _log_outcome(report: VerificationReport) -> None:
    if report.ok:
        logger.info("Verification passed")
        return
    for failure in report.failures:
        logger.error("Verification failed: %s", failure)
    if report.oversized:
        logger.error("%d blobs above the size limit", len(report.oversized))
