# audit.py -- Audit log and end-of-run report
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

"""Audit trail of a rewrite.

The audit log is written to a report directory with the same layout the BFG
uses, so existing tooling that reads those files keeps working:

- ``object-id-map.old-new.txt``: one ``<old> <new>`` line per rewritten
  commit or tag; removed commits map to the all-zero identity
- ``deleted-files.txt``: one ``<identity> <size> <path>`` line per removed
  blob or folder
- ``warnings.txt``: one warning per line
"""

__all__ = [
    "DELETED_FILES_NAME",
    "OBJECT_ID_MAP_NAME",
    "WARNINGS_NAME",
    "AuditLog",
    "DeletedFile",
    "RewriteReport",
]

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import NamedTuple

from .errors import DanglingRef, RefUpdateConflict
from .file import GitFile, ensure_dir_exists
from .objects import ZERO_SHA, ObjectID

logger = logging.getLogger(__name__)

OBJECT_ID_MAP_NAME = "object-id-map.old-new.txt"
DELETED_FILES_NAME = "deleted-files.txt"
WARNINGS_NAME = "warnings.txt"


class DeletedFile(NamedTuple):
    """A blob or folder removed from history."""

    sha: ObjectID
    size: int | None
    path: bytes


class AuditLog:
    """Accumulates everything a rewrite removed or replaced."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seen: set[tuple[ObjectID, bytes]] = set()
        self.deleted: list[DeletedFile] = []
        self.object_map: dict[ObjectID, ObjectID] = {}
        self.warnings: list[str] = []

    def record_deleted(self, sha: ObjectID, size: int | None, path: bytes) -> bool:
        """Record the removal of a blob or folder at a path.

        Returns: False if this pair was already recorded
        """
        with self._lock:
            if (sha, path) in self._seen:
                return False
            self._seen.add((sha, path))
            self.deleted.append(DeletedFile(sha, size, path))
            return True

    def record_mapping(self, old: ObjectID, new: ObjectID | None) -> None:
        """Record a rewritten commit or tag; None means it was removed."""
        with self._lock:
            self.object_map[old] = ZERO_SHA if new is None else new

    def warn(self, message: str) -> None:
        with self._lock:
            self.warnings.append(message)

    def __len__(self) -> int:
        return len(self.deleted) + len(self.object_map)

    def write(self, report_dir: str | os.PathLike[str]) -> list[str]:
        """Write the audit files into a directory, creating it if needed.

        Returns: list of paths written
        """
        report_dir = os.fspath(report_dir)
        ensure_dir_exists(report_dir)
        written = []

        path = os.path.join(report_dir, OBJECT_ID_MAP_NAME)
        with GitFile(path, "wb") as f:
            for old, new in sorted(self.object_map.items()):
                f.write(old + b" " + new + b"\n")
        written.append(path)

        path = os.path.join(report_dir, DELETED_FILES_NAME)
        with GitFile(path, "wb") as f:
            for entry in sorted(self.deleted, key=lambda e: (e.path, e.sha)):
                size = b"-" if entry.size is None else str(entry.size).encode("ascii")
                f.write(entry.sha + b" " + size + b" " + entry.path + b"\n")
        written.append(path)

        path = os.path.join(report_dir, WARNINGS_NAME)
        with GitFile(path, "wb") as f:
            for warning in self.warnings:
                f.write(warning.encode("utf-8") + b"\n")
        written.append(path)

        logger.info("Audit log written to %s", report_dir)
        return written


@dataclass
class RewriteReport:
    """Counters and outcomes of a single rewrite run."""

    scanned_blobs: int = 0
    oversized_blobs: int = 0
    matched_blobs: int = 0
    removed_folders: int = 0
    rewritten_trees: int = 0
    rewritten_commits: int = 0
    rewritten_tags: int = 0
    pruned_commits: int = 0
    removed_tags: int = 0
    stripped_signatures: int = 0
    updated_refs: list[bytes] = field(default_factory=list)
    dangling_refs: list[DanglingRef] = field(default_factory=list)
    conflicting_refs: list[RefUpdateConflict] = field(default_factory=list)
    scan_errors: list[tuple[ObjectID, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Whether the rewrite produced anything that refs must pick up."""
        return bool(
            self.rewritten_commits
            or self.rewritten_tags
            or self.pruned_commits
            or self.removed_tags
            or self.rewritten_trees
        )

    def format(self) -> str:
        """Render the report for humans."""
        lines = [
            f"Blobs scanned:        {self.scanned_blobs}",
            f"Oversized blobs:      {self.oversized_blobs}",
            f"Blobs removed:        {self.matched_blobs}",
            f"Folders removed:      {self.removed_folders}",
            f"Trees rewritten:      {self.rewritten_trees}",
            f"Commits rewritten:    {self.rewritten_commits}",
            f"Commits pruned:       {self.pruned_commits}",
            f"Tags rewritten:       {self.rewritten_tags}",
            f"Tags removed:         {self.removed_tags}",
            f"Signatures stripped:  {self.stripped_signatures}",
            f"Refs updated:         {len(self.updated_refs)}",
        ]
        for ref in self.dangling_refs:
            lines.append(f"Dangling ref:         {ref}")
        for conflict in self.conflicting_refs:
            lines.append(f"Conflicting ref:      {conflict}")
        for sha, message in self.scan_errors:
            lines.append(f"Scan error:           {sha.decode('ascii')}: {message}")
        for warning in self.warnings:
            lines.append(f"Warning:              {warning}")
        return "\n".join(lines) + "\n"
