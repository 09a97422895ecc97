# porcelain.py -- Porcelain-like layer on top of excise
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

"""Simple wrapper that provides the high-level operations of excise.

Currently implemented:
 * audit
 * rewrite
 * verify
 * compact
 * rewrite_until_clean

These functions are meant to behave similarly to the command line tool. Each
takes a repository object or a path to a mirror.
"""

__all__ = [
    "AuditResult",
    "Error",
    "RewriteResult",
    "audit",
    "compact",
    "load_recorded_rewrite",
    "load_settings",
    "open_repo_closing",
    "protected_blobs",
    "rewrite",
    "rewrite_until_clean",
    "verify",
]

import logging
import os
import stat
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, closing, contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from . import gc
from .audit import DeletedFile, RewriteReport
from .config import DEFAULT_WORKERS, ConfigFile, RewriteSettings
from .errors import VerificationFailed
from .object_store import BaseObjectStore, OverlayObjectStore
from .objects import S_ISGITLINK, Commit, ObjectID, Tag, Tree
from .policy import MatchPolicy
from .refs import ORIGINAL_PREFIX
from .repo import BaseRepo, Repo
from .rewrite import RewriteContext, Rewriter, update_refs
from .verify import (
    BASELINE_FILE,
    GraphSummary,
    RecordedRewrite,
    VerificationReport,
    published_heads,
    summarize_graph,
    verify_rewrite,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseRepo)
RepoPath = str | os.PathLike[str] | BaseRepo


class Error(Exception):
    """Porcelain-based error."""


@contextmanager
def _noop_context_manager(obj: T) -> Iterator[T]:
    """Context manager that has the same api as closing but does nothing."""
    yield obj


def open_repo_closing(path_or_repo: RepoPath) -> AbstractContextManager[BaseRepo]:
    """Open an argument that can be a repository or a path for a repository.

    returns a context manager that will close the repo on exit if the argument
    is a path, else does nothing if the argument is a repo.
    """
    if isinstance(path_or_repo, BaseRepo):
        return _noop_context_manager(path_or_repo)
    return closing(Repo(path_or_repo))


def load_settings(
    repo: RepoPath, config_path: str | os.PathLike[str] | None = None, **overrides: object
) -> RewriteSettings:
    """Load rewrite settings for a mirror.

    Args:
      repo: Repository or path
      config_path: Configuration file whose [excise] section is used
        instead of the mirror's own configuration
      overrides: Settings that take precedence over configuration; None
        values are ignored
    """
    with open_repo_closing(repo) as r:
        if config_path is not None:
            config = ConfigFile.from_path(config_path)
        else:
            config = r.get_config()
    return RewriteSettings.from_config(config).merge(**overrides)


def _expand_ref(refs, name: bytes) -> bytes:
    for candidate in (name, b"refs/" + name, b"refs/heads/" + name, b"refs/tags/" + name):
        if candidate in refs:
            return candidate
    raise Error(f"unknown ref {name.decode('utf-8', 'replace')}")


def _iter_tree_blobs(store: BaseObjectStore, tree_id: ObjectID) -> Iterator[ObjectID]:
    pending = [tree_id]
    while pending:
        tree = store[pending.pop()]
        assert isinstance(tree, Tree)
        for entry in tree.iteritems():
            if S_ISGITLINK(entry.mode):
                continue
            if stat.S_ISDIR(entry.mode):
                pending.append(entry.sha)
            else:
                yield entry.sha


def protected_blobs(repo: RepoPath, ref_names: Iterable[bytes | str]) -> frozenset[ObjectID]:
    """Collect the blobs in the tip trees of some refs.

    Such blobs are never removed, so the current state of protected branches
    is left intact.

    Args:
      repo: Repository or path
      ref_names: Full or short ref names
    Raises:
      Error: if a ref does not exist
    """
    ret: set[ObjectID] = set()
    with open_repo_closing(repo) as r:
        store = r.object_store
        for name in ref_names:
            if isinstance(name, str):
                name = name.encode("utf-8")
            sha = r.refs[_expand_ref(r.refs, name)]
            obj = store[sha]
            while isinstance(obj, Tag):
                obj = store[obj.object[1]]
            if isinstance(obj, Commit):
                obj = store[obj.tree]
            if isinstance(obj, Tree):
                ret.update(_iter_tree_blobs(store, obj.id))
            else:
                ret.add(obj.id)
    logger.debug("Protecting %d blobs", len(ret))
    return frozenset(ret)


@dataclass
class AuditResult:
    """What a rewrite with a policy would do."""

    context: RewriteContext
    affected_commits: list[ObjectID] = field(default_factory=list)

    @property
    def report(self) -> RewriteReport:
        return self.context.report

    @property
    def candidates(self) -> list[DeletedFile]:
        """Blobs and folders that would be removed, with their paths."""
        return list(self.context.audit.deleted)

    @property
    def matched(self) -> bool:
        return bool(self.report.matched_blobs or self.report.removed_folders)


def audit(
    repo: RepoPath, policy: MatchPolicy, workers: int = DEFAULT_WORKERS
) -> AuditResult:
    """Find what a rewrite would remove, without changing the mirror.

    Rewritten objects are kept in memory and thrown away afterwards.
    """
    with open_repo_closing(repo) as r:
        context = RewriteContext(workers=workers)
        store = OverlayObjectStore(r.object_store)
        Rewriter(store, policy, context).run(published_heads(r.refs))
        affected = sorted(
            sha
            for sha in context.audit.object_map
            if r.object_store.get_object_type(sha) == Commit.type_num
        )
        logger.info(
            "%d blobs would be removed, affecting %d commits",
            context.report.matched_blobs,
            len(affected),
        )
        return AuditResult(context=context, affected_commits=affected)


@dataclass
class RewriteResult:
    """Outcome of a rewrite."""

    baseline: GraphSummary
    context: RewriteContext

    @property
    def report(self) -> RewriteReport:
        return self.context.report

    @property
    def matched(self) -> bool:
        return bool(self.report.matched_blobs or self.report.removed_folders)

    @property
    def pruned_commits(self) -> int:
        return self.report.pruned_commits

    @property
    def dangling_refs(self) -> list[bytes]:
        return [d.ref for d in self.report.dangling_refs]


def rewrite(
    repo: RepoPath,
    policy: MatchPolicy,
    *,
    workers: int = DEFAULT_WORKERS,
    keep_original: bool = False,
    report_dir: str | os.PathLike[str] | None = None,
    delete_dangling: bool = True,
    context: RewriteContext | None = None,
) -> RewriteResult:
    """Rewrite the history of a mirror, removing what the policy matches.

    The baseline, pruned commit count and dangling refs are recorded in the
    mirror, so that a later verify can compare against them.

    Args:
      repo: Repository or path
      policy: What to remove
      workers: Number of threads used to scan blob sizes
      keep_original: Save the previous value of every updated ref under
        refs/original/
      report_dir: Directory to write the audit log to
      delete_dangling: Delete refs whose whole history was removed
      context: Rewrite context to use, for example to cancel from another
        thread
    Raises:
      CorruptGraph: if the graph is broken; the mirror is unchanged
      RewriteCancelled: if cancelled; refs are unchanged
    Returns: RewriteResult
    """
    if context is None:
        context = RewriteContext(workers=workers, keep_original=keep_original)
    with open_repo_closing(repo) as r:
        baseline = summarize_graph(r.object_store, r.refs)
        heads = published_heads(r.refs)
        logger.info(
            "Rewriting %d refs, %d commits: removing %s",
            len(heads),
            baseline.commit_count,
            policy.describe(),
        )
        Rewriter(r.object_store, policy, context).run(heads)
        update_refs(r.refs, context, heads)
        if delete_dangling:
            for dangling in context.report.dangling_refs:
                if context.keep_original:
                    r.refs.add_if_new(ORIGINAL_PREFIX + dangling.ref, dangling.old_sha)
                if r.refs.remove_if_equals(dangling.ref, dangling.old_sha):
                    logger.info(
                        "Deleted %s", dangling.ref.decode("utf-8", "replace")
                    )
        if report_dir is not None:
            context.audit.write(report_dir)
        result = RewriteResult(baseline=baseline, context=context)
        recorded = RecordedRewrite(
            baseline=baseline,
            pruned_commits=result.pruned_commits,
            dangling_refs=frozenset(result.dangling_refs),
        )
        r._put_named_file(BASELINE_FILE, recorded.as_raw_string())
    return result


def load_recorded_rewrite(repo: RepoPath) -> RecordedRewrite | None:
    """Load what the last rewrite of a mirror recorded, if anything.

    Raises:
      ValueError: if the recorded data can not be parsed
    """
    with open_repo_closing(repo) as r:
        f = r.get_named_file(BASELINE_FILE)
        if f is None:
            return None
        with f:
            return RecordedRewrite.from_raw_string(f.read())


def verify(
    repo: RepoPath,
    baseline: GraphSummary | None,
    policy: MatchPolicy,
    pruned_commits: int = 0,
    dangling_refs: Iterable[bytes] = (),
) -> VerificationReport:
    """Check a rewritten mirror against the summary taken before the rewrite.

    Without a baseline only blob sizes are checked.
    """
    with open_repo_closing(repo) as r:
        return verify_rewrite(
            r.object_store,
            r.refs,
            baseline,
            policy.max_blob_size,
            pruned_commits=pruned_commits,
            dangling_refs=dangling_refs,
        )


def compact(
    repo: RepoPath, dry_run: bool = False, context: RewriteContext | None = None
) -> gc.CompactStats:
    """Remove objects no longer reachable from any ref."""
    with open_repo_closing(repo) as r:
        return gc.compact(r.object_store, r.refs, dry_run=dry_run, context=context)


def rewrite_until_clean(
    repo: RepoPath, policies: Iterable[MatchPolicy], **kwargs: object
) -> tuple[MatchPolicy, RewriteResult | None, VerificationReport]:
    """Rewrite with successive policies until verification passes.

    Each policy is audited, applied and verified in turn; the next one is
    only tried when verification fails.

    Args:
      repo: Repository or path
      policies: Policies to try, usually increasingly strict
      kwargs: Passed on to rewrite()
    Raises:
      SizeLimitExceeded: if blobs above the threshold survive every policy
      VerificationFailed: if another check fails for every policy
      Error: if no policy was given
    Returns: tuple of (policy that passed, its rewrite result or None if it
        matched nothing, verification report)
    """
    report = None
    with open_repo_closing(repo) as r:
        for attempt, policy in enumerate(policies, 1):
            logger.info("Attempt %d: removing %s", attempt, policy.describe())
            workers = kwargs.get("workers", DEFAULT_WORKERS)
            candidates = audit(r, policy, workers=workers)  # type: ignore[arg-type]
            if not candidates.matched:
                result = None
                report = verify(r, summarize_graph(r.object_store, r.refs), policy)
            else:
                result = rewrite(r, policy, **kwargs)  # type: ignore[arg-type]
                report = verify(
                    r,
                    result.baseline,
                    policy,
                    pruned_commits=result.pruned_commits,
                    dangling_refs=result.dangling_refs,
                )
            if report.ok:
                return policy, result, report
            logger.warning("Attempt %d did not pass verification", attempt)
    if report is None:
        raise Error("no policy given")
    report.check()
    raise VerificationFailed(report.failures)
