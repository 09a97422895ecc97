#!/usr/bin/env python3
#
# excise -- Remove unwanted blobs from the history of git mirrors
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

"""Command line interface for excise.

Usage: excise <command> [options] <repo>

Exit codes:
  0  success
  1  verification failed (or the run was interrupted)
  2  the mirror or its configuration could not be read, or its graph is corrupt
  3  nothing matched; the mirror was left unchanged
"""

__all__ = [
    "EXIT_CORRUPT",
    "EXIT_NO_MATCHES",
    "EXIT_OK",
    "EXIT_VERIFY_FAILED",
    "Command",
    "commands",
    "main",
]

import argparse
import logging
import os
import signal
import sys
import types
from collections.abc import Sequence

from . import porcelain
from .config import RewriteSettings
from .errors import (
    CorruptGraph,
    FileFormatException,
    RewriteCancelled,
    SizeLimitExceeded,
    StoreUnavailable,
    VerificationFailed,
)
from .gc import RefsNotUpdated
from .log_utils import default_logging_config
from .policy import MatchPolicy, parse_size
from .repo import NotGitRepository, Repo
from .rewrite import RewriteContext

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VERIFY_FAILED = 1
EXIT_CORRUPT = 2
EXIT_NO_MATCHES = 3


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting."""
    sys.exit(EXIT_VERIFY_FAILED)


def signal_quit(signal: int, frame: types.FrameType | None) -> None:
    """Handle quit signal by entering debugger."""
    import pdb

    pdb.set_trace()


def _size(value: str) -> int:
    try:
        return parse_size(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_repo_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        help="Read settings from this file instead of the mirror's config",
    )
    parser.add_argument("repo", nargs="?", default=".", help="Path to the mirror")


def _add_policy_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-D",
        "--delete-files",
        action="append",
        dest="patterns",
        metavar="GLOB",
        help="Remove files matching this pattern (may be repeated)",
    )
    parser.add_argument(
        "--delete-folders",
        action="append",
        dest="folder_patterns",
        metavar="GLOB",
        help="Remove folders matching this pattern, with their contents",
    )
    size_group = parser.add_mutually_exclusive_group()
    size_group.add_argument(
        "-b",
        "--strip-blobs-bigger-than",
        type=_size,
        dest="max_blob_size",
        metavar="SIZE",
        help="Remove blobs larger than SIZE (k, m and g suffixes allowed)",
    )
    size_group.add_argument(
        "--no-size-limit",
        action="store_true",
        help="Do not remove blobs because of their size",
    )
    parser.add_argument(
        "--protect",
        action="append",
        metavar="REF",
        help="Never remove blobs in the tip tree of this ref (may be repeated)",
    )
    parser.add_argument(
        "--prune-empty",
        action="store_true",
        default=None,
        help="Drop commits left empty by the rewrite",
    )
    parser.add_argument(
        "-j", "--workers", type=int, help="Number of threads used for scanning"
    )


def _settings_and_policy(
    repo: Repo, parsed_args: argparse.Namespace
) -> tuple[RewriteSettings, MatchPolicy]:
    settings = porcelain.load_settings(
        repo,
        parsed_args.config,
        max_blob_size=parsed_args.max_blob_size,
        prune_empty=parsed_args.prune_empty,
        workers=parsed_args.workers,
        keep_original=getattr(parsed_args, "keep_original", None),
        report_dir=getattr(parsed_args, "report_dir", None),
    )
    if parsed_args.patterns:
        settings.patterns = [p.encode("utf-8") for p in parsed_args.patterns]
    if parsed_args.folder_patterns:
        settings.folder_patterns = [
            p.encode("utf-8") for p in parsed_args.folder_patterns
        ]
    if parsed_args.protect:
        settings.protect = [p.encode("utf-8") for p in parsed_args.protect]
    if parsed_args.no_size_limit:
        settings.max_blob_size = None
    protected = porcelain.protected_blobs(repo, settings.protect)
    return settings, settings.to_policy(protected)


class Command:
    """An excise subcommand."""

    def run(self, args: Sequence[str]) -> int | None:
        """Run the command."""
        raise NotImplementedError(self.run)


class cmd_audit(Command):
    """List the blobs a rewrite would remove, without changing anything."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="excise audit")
        _add_policy_arguments(parser)
        _add_repo_argument(parser)
        parsed_args = parser.parse_args(args)
        with Repo(parsed_args.repo) as repo:
            settings, policy = _settings_and_policy(repo, parsed_args)
            result = porcelain.audit(repo, policy, workers=settings.workers)
        for entry in sorted(result.candidates, key=lambda e: (e.path, e.sha)):
            size = "-" if entry.size is None else str(entry.size)
            sys.stdout.write(
                f"{entry.sha.decode('ascii')} {size:>12} "
                f"{entry.path.decode('utf-8', 'replace')}\n"
            )
        sys.stdout.write(
            f"{len(result.candidates)} entries would be removed, "
            f"{len(result.affected_commits)} commits rewritten\n"
        )
        if not result.matched:
            return EXIT_NO_MATCHES
        return EXIT_OK


class cmd_rewrite(Command):
    """Rewrite history, removing the blobs that match the policy."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="excise rewrite")
        _add_policy_arguments(parser)
        parser.add_argument(
            "--keep-original",
            action="store_true",
            default=None,
            help="Save previous ref values under refs/original/",
        )
        parser.add_argument(
            "--report-dir", type=str, help="Directory to write the audit log to"
        )
        parser.add_argument(
            "--no-verify",
            action="store_true",
            help="Do not verify the mirror after rewriting",
        )
        _add_repo_argument(parser)
        parsed_args = parser.parse_args(args)

        with Repo(parsed_args.repo) as repo:
            settings, policy = _settings_and_policy(repo, parsed_args)
            if policy.is_empty:
                logger.error("Nothing to remove: give patterns or a size limit")
                return EXIT_NO_MATCHES
            context = RewriteContext(
                workers=settings.workers, keep_original=settings.keep_original
            )

            def cancel(signum: int, frame: types.FrameType | None) -> None:
                logger.warning("Interrupted; stopping after the current object")
                context.cancel()

            previous = signal.signal(signal.SIGINT, cancel)
            try:
                result = porcelain.rewrite(
                    repo,
                    policy,
                    report_dir=settings.report_dir,
                    context=context,
                )
            finally:
                signal.signal(signal.SIGINT, previous)
            sys.stdout.write(result.report.format())
            if not result.matched:
                return EXIT_NO_MATCHES
            if parsed_args.no_verify:
                return EXIT_OK
            report = porcelain.verify(
                repo,
                result.baseline,
                policy,
                pruned_commits=result.pruned_commits,
                dangling_refs=result.dangling_refs,
            )
        sys.stdout.write(report.format())
        report.check()
        return EXIT_OK


class cmd_verify(Command):
    """Check the mirror against the baseline recorded by the last rewrite.

    Without a recorded rewrite only the size limit is checked.
    """

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="excise verify")
        parser.add_argument(
            "-b",
            "--strip-blobs-bigger-than",
            type=_size,
            dest="max_blob_size",
            metavar="SIZE",
            help="Size limit to check (default from configuration)",
        )
        _add_repo_argument(parser)
        parsed_args = parser.parse_args(args)
        with Repo(parsed_args.repo) as repo:
            settings = porcelain.load_settings(
                repo, parsed_args.config, max_blob_size=parsed_args.max_blob_size
            )
            policy = MatchPolicy(max_blob_size=settings.max_blob_size)
            recorded = porcelain.load_recorded_rewrite(repo)
            if recorded is None:
                report = porcelain.verify(repo, None, policy)
            else:
                report = porcelain.verify(
                    repo,
                    recorded.baseline,
                    policy,
                    pruned_commits=recorded.pruned_commits,
                    dangling_refs=recorded.dangling_refs,
                )
        sys.stdout.write(report.format())
        report.check()
        return EXIT_OK


class cmd_compact(Command):
    """Remove objects that are no longer reachable from any ref."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="excise compact")
        parser.add_argument(
            "--dry-run",
            "-n",
            action="store_true",
            help="Only report what would be removed",
        )
        parser.add_argument("repo", nargs="?", default=".", help="Path to the mirror")
        parsed_args = parser.parse_args(args)
        stats = porcelain.compact(parsed_args.repo, dry_run=parsed_args.dry_run)
        if parsed_args.dry_run:
            sys.stdout.write("Dry run results:\n")
        sys.stdout.write(stats.format())
        return EXIT_OK


commands = {
    "audit": cmd_audit,
    "compact": cmd_compact,
    "rewrite": cmd_rewrite,
    "verify": cmd_verify,
}


def main(argv: Sequence[str] | None = None) -> int | None:
    """Main entry point for the excise CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="excise",
        description="Remove unwanted blobs from the history of git mirrors",
        add_help=False,
    )
    parser.add_argument("--help", "-h", action="store_true", help="Show help")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    global_args, remaining = parser.parse_known_args(argv)

    if global_args.help or not remaining:
        parser = argparse.ArgumentParser(
            prog="excise",
            description="Remove unwanted blobs from the history of git mirrors",
        )
        parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings")
        parser.add_argument(
            "-v", "--verbose", action="store_true", help="Log debug output"
        )
        parser.add_argument(
            "command",
            nargs="?",
            help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
        )
        parser.print_help()
        return 1

    if global_args.verbose:
        level = logging.DEBUG
    elif global_args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    default_logging_config(level)

    cmd = remaining[0]
    cmd_args = remaining[1:]
    try:
        cmd_kls = commands[cmd]
    except KeyError:
        logging.fatal("No such subcommand: %s", cmd)
        return 1

    try:
        return cmd_kls().run(cmd_args)
    except (SizeLimitExceeded, VerificationFailed) as exc:
        logger.error("Verification failed: %s", exc)
        return EXIT_VERIFY_FAILED
    except RewriteCancelled:
        logger.error("Rewrite cancelled; refs were not changed")
        return EXIT_VERIFY_FAILED
    except RefsNotUpdated as exc:
        logger.error("%s", exc)
        return EXIT_VERIFY_FAILED
    except (
        CorruptGraph,
        NotGitRepository,
        FileFormatException,
        StoreUnavailable,
        porcelain.Error,
        ValueError,
    ) as exc:
        logger.error("%s", exc)
        return EXIT_CORRUPT


def _main() -> None:
    if "EXCISE_PDB" in os.environ and getattr(signal, "SIGQUIT", None):
        signal.signal(signal.SIGQUIT, signal_quit)  # type: ignore[attr-defined,unused-ignore]
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()
